"""
Unit tests for engine script generation.
"""

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from py2matlab.core.errors import ErrorCodes, ScriptError
from py2matlab.models.engine import ScriptSource
from py2matlab.services.script_materializer import (
    SESSION_FUNCTION,
    ScriptMaterializer,
)


class TestScriptMaterializer(unittest.TestCase):
    """Test producing scripts for each mode."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        self.materializer = ScriptMaterializer(temp_root=str(self.root))

    def tearDown(self):
        self.tmpdir.cleanup()

    def _write_script(self, name='scale.m', text='function frame = scale(frame)\nend\n'):
        path = self.root / name
        path.write_text(text)
        return path

    def test_inline_one_shot(self):
        """Inline source becomes a process function file."""
        source = ScriptSource.from_content("frame.value = frame.value * 2;")

        script = self.materializer.materialize(source, persistent=False)

        self.assertTrue(script.generated)
        self.assertEqual(script.function_name, 'process')
        text = script.path.read_text()
        self.assertTrue(text.startswith("function frame = process(frame)\n"))
        self.assertIn("    frame.value = frame.value * 2;\n", text)
        self.assertTrue(text.rstrip().endswith("end"))

    def test_inline_body_is_dedented(self):
        """Indented multi-line source is normalized."""
        source = ScriptSource.from_content("""
            total = sum(frame.values);
            frame.total = total;
        """)

        text = self.materializer.render_process_function(source)

        self.assertIn("\n    total = sum(frame.values);\n    frame.total = total;\n", text)

    def test_file_one_shot_uses_file(self):
        """An existing script file is used in place."""
        path = self._write_script()

        script = self.materializer.materialize(ScriptSource.from_file(path), persistent=False)

        self.assertFalse(script.generated)
        self.assertEqual(script.path, path.resolve())
        self.assertEqual(script.function_name, 'scale')

    def test_persistent_driver(self):
        """Persistent mode writes the socket driver with a local transform function."""
        source = ScriptSource.from_content("frame.value = frame.value + 1;")

        script = self.materializer.materialize(source, persistent=True, host='127.0.0.1', port=5555)

        self.assertEqual(script.path.name, SESSION_FUNCTION + '.m')
        self.assertEqual(script.function_name, SESSION_FUNCTION)
        text = script.path.read_text()
        self.assertTrue(text.startswith(f"function {SESSION_FUNCTION}(host, port)"))
        self.assertIn("host = '127.0.0.1';", text)
        self.assertIn("port = 5555;", text)
        self.assertIn("tcpclient(host, port)", text)
        self.assertIn("case 'quit'", text)
        self.assertIn("reply.action = 'error';", text)
        self.assertIn("reply.data = py2matlab_process(message.data);", text)
        self.assertIn("function frame = py2matlab_process(frame)\n"
                      "    frame.value = frame.value + 1;", text)

    def test_persistent_driver_with_file(self):
        """A script file is put on the path and called from the driver."""
        path = self._write_script()

        text = self.materializer.render_session_driver(ScriptSource.from_file(path),
                                                       '127.0.0.1', 0)

        self.assertIn(f"addpath('{path.resolve().parent}');", text)
        self.assertIn("    frame = scale(frame);", text)

    def test_persistent_driver_with_file_named_process(self):
        """A user function called process is dispatched to, not shadowed."""
        path = self._write_script('process.m', 'function frame = process(frame)\nend\n')

        script = self.materializer.materialize(ScriptSource.from_file(path), persistent=True)

        text = script.path.read_text()
        self.assertNotIn("function frame = process(frame)", text)
        self.assertIn("function frame = py2matlab_process(frame)\n"
                      "    frame = process(frame);\nend", text)
        self.assertIn("reply.data = py2matlab_process(message.data);", text)

    def test_persistent_driver_rejects_reserved_names(self):
        """Script files named after the driver's functions are rejected."""
        for name in (SESSION_FUNCTION, 'py2matlab_process'):
            with self.subTest(name=name):
                path = self._write_script(f'{name}.m', f'function frame = {name}(frame)\nend\n')

                with self.assertRaises(ScriptError):
                    self.materializer.materialize(ScriptSource.from_file(path), persistent=True)

    def test_one_shot_file_named_process(self):
        """In one-shot mode a process.m file is called directly."""
        path = self._write_script('process.m', 'function frame = process(frame)\nend\n')

        script = self.materializer.materialize(ScriptSource.from_file(path), persistent=False)

        self.assertFalse(script.generated)
        self.assertEqual(script.function_name, 'process')

    def test_each_build_gets_own_directory(self):
        """Scripts are never shared between builds."""
        source = ScriptSource.from_content("frame = frame;")

        first = self.materializer.materialize(source, persistent=True)
        second = self.materializer.materialize(source, persistent=True)

        self.assertNotEqual(first.directory, second.directory)

    def test_cleanup_generated(self):
        """Generated directories are removed on cleanup."""
        script = self.materializer.materialize(ScriptSource.from_content("x = 1;"), persistent=False)

        script.cleanup()

        self.assertFalse(script.directory.exists())

    def test_cleanup_keeps_user_file(self):
        """User script files are never removed."""
        path = self._write_script()
        script = self.materializer.materialize(ScriptSource.from_file(path), persistent=False)

        script.cleanup()

        self.assertTrue(path.exists())

    def test_missing_script_file(self):
        """A missing file is a script error."""
        source = ScriptSource.from_file(self.root / 'missing.m')

        with self.assertRaises(ScriptError) as cm:
            self.materializer.materialize(source, persistent=False)
        self.assertEqual(cm.exception.error_code, ErrorCodes.FILE_NOT_FOUND)

    def test_invalid_function_name(self):
        """File names must be valid function names."""
        path = self._write_script(name='2-scale.m')

        with self.assertRaises(ScriptError):
            self.materializer.materialize(ScriptSource.from_file(path), persistent=True)

    def test_write_failure(self):
        """A temporary directory that cannot be created fails the build."""
        with patch('py2matlab.services.script_materializer.tempfile.mkdtemp',
                   side_effect=PermissionError("read-only")):
            with self.assertRaises(ScriptError) as cm:
                self.materializer.materialize(ScriptSource.from_content("x = 1;"), persistent=True)
        self.assertEqual(cm.exception.error_code, ErrorCodes.FILE_WRITE_ERROR)


if __name__ == '__main__':
    unittest.main()
