"""Serialization of pipeline items into structured values."""

from .data_serializer import (
    DataSerializer,
    SerializationRule,
    default_serializer,
    ensure_map_rule,
    MAP_TYPE_NAME,
    TYPE_FIELD,
)

__all__ = [
    'DataSerializer',
    'SerializationRule',
    'default_serializer',
    'ensure_map_rule',
    'MAP_TYPE_NAME',
    'TYPE_FIELD',
]
