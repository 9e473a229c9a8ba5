"""
Unit tests for the item serializer.
"""

import threading
import unittest
from dataclasses import dataclass, field
from typing import List

import numpy as np

from py2matlab.core.errors import SerializationError
from py2matlab.core.wire_codec import LineDecoder, ProtocolEncoder
from py2matlab.serialization import (
    MAP_TYPE_NAME,
    DataSerializer,
    ensure_map_rule,
)


@dataclass
class Roi:
    x: int
    y: int


@dataclass
class Frame:
    index: int
    rois: List[Roi] = field(default_factory=list)


class TestDataSerializer(unittest.TestCase):
    """Test plain values, dataclasses and numpy data."""

    def setUp(self):
        self.serializer = DataSerializer()
        self.serializer.register_type(Roi)
        self.serializer.register_type(Frame)

    def test_plain_values_pass_through(self):
        """JSON values are unchanged."""
        item = {'name': 'a', 'values': [1, 2.5, None, True]}
        self.assertEqual(self.serializer.serialize(item), item)
        self.assertEqual(self.serializer.deserialize(item), item)

    def test_tuple_becomes_list(self):
        """Tuples are sent as arrays."""
        self.assertEqual(self.serializer.serialize((1, 2)), [1, 2])

    def test_dataclass_is_tagged(self):
        """Registered dataclasses carry their type tag."""
        value = self.serializer.serialize(Frame(3, [Roi(1, 2)]))

        self.assertEqual(value, {
            '__type': 'Frame',
            'index': 3,
            'rois': [{'__type': 'Roi', 'x': 1, 'y': 2}],
        })
        self.assertEqual(self.serializer.deserialize(value), Frame(3, [Roi(1, 2)]))

    def test_extra_fields_ignored_on_decode(self):
        """Fields the engine adds are dropped when rebuilding a dataclass."""
        value = {'__type': 'Roi', 'x': 1, 'y': 2, 'area': 4}
        self.assertEqual(self.serializer.deserialize(value), Roi(1, 2))

    def test_unknown_type_tag(self):
        """Unknown tags cannot be rebuilt."""
        with self.assertRaises(SerializationError):
            self.serializer.deserialize({'__type': 'Mystery'})

    def test_missing_dataclass_field(self):
        """Missing required fields are a serialization error."""
        with self.assertRaises(SerializationError):
            self.serializer.deserialize({'__type': 'Roi', 'x': 1})

    def test_register_type_requires_dataclass(self):
        """Only dataclasses can be registered."""
        with self.assertRaises(TypeError):
            self.serializer.register_type(dict)

    def test_numpy_values(self):
        """Arrays become nested lists and scalars become numbers."""
        array = np.arange(6, dtype=np.float32).reshape(2, 3)
        value = self.serializer.serialize({'pixels': array, 'mean': np.float64(2.5),
                                           'count': np.int64(6)})

        self.assertEqual(value['pixels'], [[0.0, 1.0, 2.0], [3.0, 4.0, 5.0]])
        self.assertIsInstance(value['mean'], float)
        self.assertIsInstance(value['count'], int)

    def test_unsupported_value(self):
        """Values with no representation raise SerializationError."""
        with self.assertRaises(SerializationError):
            self.serializer.serialize({'callback': object()})

    def test_non_string_keys_need_map_rule(self):
        """Without the map rule, dict keys must be strings."""
        with self.assertRaises(SerializationError):
            self.serializer.serialize({1: 'one'})

    def test_custom_rule(self):
        """Custom rules encode and decode other kinds."""
        self.serializer.register_rule(
            'Complex', complex,
            lambda value, serialize: {'re': value.real, 'im': value.imag},
            lambda payload, deserialize: complex(payload['re'], payload['im'])
        )

        value = self.serializer.serialize([1 + 2j])

        self.assertEqual(value, [{'__type': 'Complex', 're': 1.0, 'im': 2.0}])
        self.assertEqual(self.serializer.deserialize(value), [1 + 2j])

    def test_duplicate_rule_name(self):
        """A rule name can only be registered once."""
        encode = lambda value, serialize: {}
        decode = lambda payload, deserialize: None
        self.assertTrue(self.serializer.register_rule('Thing', set, encode, decode))
        self.assertFalse(self.serializer.register_rule('Thing', set, encode, decode))


class TestMapRule(unittest.TestCase):
    """Test the associative map rule."""

    def setUp(self):
        self.serializer = DataSerializer()

    def test_registered_once(self):
        """Repeated registration is a no-op."""
        self.assertTrue(ensure_map_rule(self.serializer))
        self.assertFalse(ensure_map_rule(self.serializer))
        self.assertTrue(self.serializer.has_rule(MAP_TYPE_NAME))

    def test_concurrent_registration(self):
        """Racing sessions register the rule exactly once."""
        results = []

        def register():
            results.append(ensure_map_rule(self.serializer))

        threads = [threading.Thread(target=register) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        self.assertEqual(results.count(True), 1)

    def test_identifier_keys_stay_objects(self):
        """Dicts with field-name keys are sent as plain objects."""
        ensure_map_rule(self.serializer)
        item = {'value': 21, 'meta': {'gain': 2}}
        self.assertEqual(self.serializer.serialize(item), item)

    def test_map_round_trip(self):
        """Dicts with other keys travel as entry lists and come back equal."""
        ensure_map_rule(self.serializer)
        item = {1: 'one', 'two words': [2], (3, 4): {'nested': True}}

        value = self.serializer.serialize(item)

        self.assertEqual(value['__type'], MAP_TYPE_NAME)
        self.assertEqual(value['entries'][0], {'key': 1, 'value': 'one'})
        self.assertEqual(value['entries'][2]['key'], [3, 4])
        self.assertEqual(self.serializer.deserialize(value), item)

    def test_type_alias_key_sent_as_entries(self):
        """A dict keyed by the type tag alias is sent as a map."""
        ensure_map_rule(self.serializer)
        item = {'x__type': 'label', 'value': 3}

        value = self.serializer.serialize(item)

        self.assertEqual(value['__type'], MAP_TYPE_NAME)
        self.assertEqual(value['entries'][0], {'key': 'x__type', 'value': 'label'})

    def test_type_alias_key_survives_the_wire(self):
        """Items keyed by the type tag alias come back unchanged after framing."""
        ensure_map_rule(self.serializer)
        item = {'frame': {'x__type': 'label'}, 'count': 1}

        line = ProtocolEncoder().encode_process('r1', self.serializer.serialize(item))
        message = LineDecoder().feed(line)[0]

        self.assertEqual(self.serializer.deserialize(message['data']), item)

    def test_single_entry_collapsed_by_engine(self):
        """A one-entry list returned as a bare object still decodes."""
        ensure_map_rule(self.serializer)
        value = {'__type': MAP_TYPE_NAME, 'entries': {'key': 'a b', 'value': 1}}
        self.assertEqual(self.serializer.deserialize(value), {'a b': 1})

    def test_empty_map(self):
        """Empty entries decode to an empty dict."""
        ensure_map_rule(self.serializer)
        self.assertEqual(self.serializer.deserialize({'__type': MAP_TYPE_NAME, 'entries': []}), {})


if __name__ == '__main__':
    unittest.main()
