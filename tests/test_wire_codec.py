"""
Unit tests for the wire codec.

Tests JSON-line framing, incremental decoding, type tag escaping and
one-shot command construction.
"""

import json
import unittest
from urllib.parse import unquote

from py2matlab.core.wire_codec import (
    LineDecoder,
    ProtocolEncoder,
    build_one_shot_command,
    encode_one_shot_input,
    escape_fields,
    matlab_string,
    parse_one_shot_output,
    unescape_fields,
)


class TestProtocolEncoder(unittest.TestCase):
    """Test message framing."""

    def setUp(self):
        self.encoder = ProtocolEncoder()

    def test_process_message_is_one_line(self):
        """A request is a single newline-terminated JSON object."""
        payload = self.encoder.encode_process("r1", {'text': "line\nbreak"}, {'gain': 2})

        self.assertTrue(payload.endswith(b'\n'))
        self.assertEqual(payload.count(b'\n'), 1)
        message = json.loads(payload)
        self.assertEqual(message, {
            'id': 'r1',
            'action': 'process',
            'data': {'text': "line\nbreak"},
            'options': {'gain': 2},
        })

    def test_options_default_to_empty_object(self):
        """Missing options are sent as an empty object."""
        message = json.loads(self.encoder.encode_process("r1", 5))
        self.assertEqual(message['options'], {})

    def test_type_tag_is_escaped(self):
        """The type tag field travels under its alias."""
        data = {'__type': 'Frame', 'parts': [{'__type': 'Roi', 'x': 1}]}
        message = json.loads(self.encoder.encode_process("r1", data))

        self.assertEqual(message['data']['x__type'], 'Frame')
        self.assertEqual(message['data']['parts'][0]['x__type'], 'Roi')
        self.assertNotIn('__type', message['data'])

    def test_quit_message(self):
        """Test the teardown message."""
        self.assertEqual(self.encoder.encode_quit("q1"), b'{"id":"q1","action":"quit"}\n')

    def test_non_ascii_is_utf8(self):
        """Text is sent as UTF-8, not escaped."""
        payload = self.encoder.encode_process("r1", "µm")
        self.assertIn("µm".encode('utf-8'), payload)


class TestFieldEscaping(unittest.TestCase):
    """Test type tag escaping helpers."""

    def test_escape_and_unescape_nested(self):
        """Renaming reaches nested objects and lists."""
        value = [{'__type': 'A', 'inner': {'__type': 'B'}}, 3]
        escaped = escape_fields(value)

        self.assertEqual(escaped, [{'x__type': 'A', 'inner': {'x__type': 'B'}}, 3])
        self.assertEqual(unescape_fields(escaped), value)

    def test_other_fields_untouched(self):
        """Only the exact tag field is renamed."""
        self.assertEqual(escape_fields({'type': 1, '__typename': 2}),
                         {'type': 1, '__typename': 2})


class TestLineDecoder(unittest.TestCase):
    """Test incremental decoding."""

    def setUp(self):
        self.decoder = LineDecoder()

    def test_message_split_across_chunks(self):
        """Partial lines are buffered until complete."""
        self.assertEqual(self.decoder.feed(b'{"id":"r1","act'), [])
        self.assertGreater(self.decoder.pending_bytes, 0)

        messages = self.decoder.feed(b'ion":"process","data":1}\n')

        self.assertEqual(messages, [{'id': 'r1', 'action': 'process', 'data': 1}])
        self.assertEqual(self.decoder.pending_bytes, 0)

    def test_several_messages_in_one_chunk(self):
        """Multiple lines decode in arrival order."""
        messages = self.decoder.feed(b'{"id":"a"}\n{"id":"b"}\n{"id":')

        self.assertEqual([m['id'] for m in messages], ['a', 'b'])
        self.assertEqual(self.decoder.feed(b'"c"}\n'), [{'id': 'c'}])

    def test_malformed_line_is_dropped(self):
        """Bad lines are counted and skipped without losing later messages."""
        messages = self.decoder.feed(b'not json\n[1,2]\n{"id":"ok"}\n')

        self.assertEqual(messages, [{'id': 'ok'}])
        self.assertEqual(self.decoder.parse_errors, 2)

    def test_blank_lines_ignored(self):
        """Empty lines and CRLF endings are tolerated."""
        messages = self.decoder.feed(b'\n\r\n{"id":"x"}\r\n')
        self.assertEqual(messages, [{'id': 'x'}])
        self.assertEqual(self.decoder.parse_errors, 0)

    def test_type_tag_is_restored(self):
        """Escaped tags are restored on receipt."""
        messages = self.decoder.feed(b'{"id":"r","data":{"x__type":"Map","entries":[]}}\n')
        self.assertEqual(messages[0]['data'], {'__type': 'Map', 'entries': []})

    def test_multibyte_character_split(self):
        """A UTF-8 character split across reads decodes correctly."""
        encoded = '{"data":"µ"}\n'.encode('utf-8')
        split = encoded.index(b'\xb5')
        self.assertEqual(self.decoder.feed(encoded[:split]), [])
        self.assertEqual(self.decoder.feed(encoded[split:]), [{'data': 'µ'}])


class TestOneShotCommand(unittest.TestCase):
    """Test one-shot command construction and output parsing."""

    def test_matlab_string_escapes_quotes(self):
        """Single quotes are doubled."""
        self.assertEqual(matlab_string("it's"), "'it''s'")
        self.assertEqual(matlab_string(""), "''")

    def test_command_is_argument_list(self):
        """The command is an argument list, not a shell string."""
        command = build_one_shot_command('/opt/matlab/bin/matlab', '/tmp/py2matlab-x',
                                         'process', {'value': 1})

        self.assertEqual(command[:3], ['/opt/matlab/bin/matlab', '-nosplash', '-batch'])
        self.assertEqual(len(command), 4)
        statement = command[3]
        self.assertTrue(statement.startswith("cd('/tmp/py2matlab-x'); "))
        self.assertIn("disp(jsonencode(process(jsondecode(urldecode('", statement)
        self.assertTrue(statement.endswith("exit;"))

    def test_payload_survives_quoting(self):
        """Quotes and spaces in data are URI-encoded."""
        data = {'text': "it's a \"test\" & more"}
        encoded = encode_one_shot_input(data)

        self.assertNotIn("'", encoded)
        self.assertNotIn(" ", encoded)
        self.assertEqual(json.loads(unquote(encoded)), data)

    def test_directory_with_quote(self):
        """Directories with quotes are escaped."""
        command = build_one_shot_command('matlab', "/tmp/it's", 'process', 1)
        self.assertIn("cd('/tmp/it''s');", command[3])

    def test_parse_output(self):
        """Literal \\n sequences become line breaks before parsing."""
        stdout = '{"a":1,\\n"b":[1,2]}\n'
        self.assertEqual(parse_one_shot_output(stdout), {'a': 1, 'b': [1, 2]})

    def test_parse_output_unescapes_tag(self):
        """Type tags in output are restored."""
        self.assertEqual(parse_one_shot_output('{"x__type":"Roi"}'), {'__type': 'Roi'})

    def test_parse_empty_output(self):
        """Empty output is an error."""
        with self.assertRaises(ValueError):
            parse_one_shot_output("  \n")

    def test_parse_invalid_output(self):
        """Non-JSON output is an error."""
        with self.assertRaises(ValueError):
            parse_one_shot_output("Error: Undefined function")


if __name__ == '__main__':
    unittest.main()
