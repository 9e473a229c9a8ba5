"""
Structured-value serializer for pipeline items.

Items are converted to JSON-compatible values before they are sent to the
engine and converted back when results arrive:

- registered dataclasses become objects tagged with ``__type``
- custom rules (see ``register_rule``) encode other kinds, such as maps
- numpy arrays and scalars become JSON lists and numbers
- lists, tuples, strings, numbers, booleans and None pass through
"""

import dataclasses
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

import numpy as np

from py2matlab.core.errors import ErrorCodes, SerializationError
from py2matlab.core.wire_codec import ESCAPED_TYPE_FIELD

logger = logging.getLogger(__name__)

TYPE_FIELD = '__type'
MAP_TYPE_NAME = 'Map'

# Keys the engine keeps unchanged as struct field names
_FIELD_NAME = re.compile(r'^[A-Za-z][A-Za-z0-9_]{0,62}$')


@dataclass(frozen=True)
class SerializationRule:
    """Encode/decode pair for one kind of value.

    ``encode(value, serialize)`` returns the tagged payload fields and
    ``decode(payload, deserialize)`` rebuilds the value. The nested
    ``serialize``/``deserialize`` callables handle inner values. When
    ``applies`` is given, only values of ``kind`` it accepts use the rule.
    """
    name: str
    kind: type
    encode: Callable[[Any, Callable[[Any], Any]], Dict[str, Any]]
    decode: Callable[[Dict[str, Any], Callable[[Any], Any]], Any]
    applies: Optional[Callable[[Any], bool]] = None

    def matches(self, value: Any) -> bool:
        if not isinstance(value, self.kind):
            return False
        return self.applies is None or self.applies(value)


class DataSerializer:
    """Converts items to and from structured (JSON-compatible) values."""

    def __init__(self):
        self._lock = threading.Lock()
        self._types: Dict[str, Type] = {}
        self._rules: List[SerializationRule] = []

    # ---- Registration ----

    def register_type(self, cls: Type) -> Type:
        """Register a dataclass so it can be rebuilt from its ``__type`` tag.

        Usable as a class decorator.
        """
        if not dataclasses.is_dataclass(cls):
            raise TypeError(f"{cls.__name__} is not a dataclass")
        with self._lock:
            existing = self._types.get(cls.__name__)
            if existing is not None and existing is not cls:
                logger.warning(f"Replacing registered type '{cls.__name__}'")
            self._types[cls.__name__] = cls
        return cls

    def register_rule(self, name: str, kind: type,
                      encode: Callable[[Any, Callable[[Any], Any]], Dict[str, Any]],
                      decode: Callable[[Dict[str, Any], Callable[[Any], Any]], Any],
                      applies: Optional[Callable[[Any], bool]] = None) -> bool:
        """Teach the serializer a new encode/decode rule.

        Returns:
            False if a rule with the same name was already registered
        """
        with self._lock:
            if any(rule.name == name for rule in self._rules):
                return False
            self._rules.append(SerializationRule(name, kind, encode, decode, applies))
        logger.debug(f"Registered serialization rule '{name}' for {kind.__name__}")
        return True

    def has_rule(self, name: str) -> bool:
        with self._lock:
            return any(rule.name == name for rule in self._rules)

    # ---- Conversion ----

    def serialize(self, item: Any) -> Any:
        """Convert an item into a structured value.

        Raises:
            SerializationError: If the item holds an unsupported value
        """
        try:
            return self._serialize(item)
        except SerializationError:
            raise
        except (TypeError, ValueError) as e:
            raise SerializationError(
                f"Cannot serialize {type(item).__name__}: {e}",
                error_code=ErrorCodes.SERIALIZATION_FAILED,
                cause=e
            )

    def deserialize(self, value: Any) -> Any:
        """Rebuild an item from a structured value.

        Raises:
            SerializationError: If a type tag is unknown or fields do not match
        """
        try:
            return self._deserialize(value)
        except SerializationError:
            raise
        except (TypeError, ValueError, KeyError) as e:
            raise SerializationError(
                f"Cannot deserialize value: {e}",
                error_code=ErrorCodes.DESERIALIZATION_FAILED,
                cause=e
            )

    def _serialize(self, value: Any) -> Any:
        if value is None or isinstance(value, (bool, str)):
            return value
        if isinstance(value, np.ndarray):
            return value.tolist()
        if isinstance(value, np.generic):
            return value.item()
        if isinstance(value, (int, float)):
            return value

        for rule in self._rules:
            if rule.matches(value):
                payload = rule.encode(value, self._serialize)
                return {TYPE_FIELD: rule.name, **payload}

        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            data = {TYPE_FIELD: type(value).__name__}
            for f in dataclasses.fields(value):
                data[f.name] = self._serialize(getattr(value, f.name))
            return data
        if isinstance(value, dict):
            result = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise TypeError(
                        f"object keys must be strings, got {type(key).__name__} "
                        f"(register the map rule to send arbitrary keys)"
                    )
                result[key] = self._serialize(item)
            return result
        if isinstance(value, (list, tuple)):
            return [self._serialize(item) for item in value]
        raise TypeError(f"unsupported value of type {type(value).__name__}")

    def _deserialize(self, value: Any) -> Any:
        if isinstance(value, list):
            return [self._deserialize(item) for item in value]
        if not isinstance(value, dict):
            return value

        type_name = value.get(TYPE_FIELD)
        if type_name is None:
            return {key: self._deserialize(item) for key, item in value.items()}

        payload = {key: item for key, item in value.items() if key != TYPE_FIELD}
        for rule in self._rules:
            if rule.name == type_name:
                return rule.decode(payload, self._deserialize)

        cls = self._types.get(type_name)
        if cls is None:
            raise SerializationError(
                f"Unknown type tag '{type_name}'",
                error_code=ErrorCodes.DESERIALIZATION_FAILED
            )
        field_names = {f.name for f in dataclasses.fields(cls)}
        kwargs = {key: self._deserialize(item) for key, item in payload.items()
                  if key in field_names}
        return cls(**kwargs)


def _encode_map(value: dict, serialize: Callable[[Any], Any]) -> Dict[str, Any]:
    return {
        'entries': [
            {'key': serialize(key), 'value': serialize(item)}
            for key, item in value.items()
        ]
    }


def _decode_map(payload: Dict[str, Any], deserialize: Callable[[Any], Any]) -> dict:
    entries = payload.get('entries') or []
    # The engine collapses a single-element array into a bare object
    if isinstance(entries, dict):
        entries = [entries]
    return {_hashable(deserialize(entry['key'])): deserialize(entry['value'])
            for entry in entries}


def _hashable(key: Any) -> Any:
    if isinstance(key, list):
        return tuple(_hashable(item) for item in key)
    return key


def _needs_entries(value: dict) -> bool:
    # The type tag alias is renamed in transit, so it can only travel as an entry key
    if ESCAPED_TYPE_FIELD in value:
        return True
    return not all(isinstance(key, str) and _FIELD_NAME.match(key) for key in value)


_map_rule_lock = threading.Lock()


def ensure_map_rule(serializer: DataSerializer) -> bool:
    """Register the map rule on a serializer once.

    Dicts whose keys are all valid engine field names travel as plain
    objects and arrive as structs. Any other dict is sent as an ordered
    ``{key, value}`` entry list because the engine's JSON decoder rewrites
    object keys that are not valid identifiers. A dict holding the type tag
    alias as a key is also sent as entries.

    Returns:
        True if the rule was registered by this call
    """
    with _map_rule_lock:
        if serializer.has_rule(MAP_TYPE_NAME):
            return False
        return serializer.register_rule(MAP_TYPE_NAME, dict, _encode_map, _decode_map,
                                        applies=_needs_entries)


# Shared serializer used when a session is not given one explicitly
default_serializer = DataSerializer()
