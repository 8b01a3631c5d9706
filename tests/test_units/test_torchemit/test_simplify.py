"""Tests for code post-processing.

This module tests:
- Wrapping of long call assignments
- Blank line normalization
- The generated file header
"""

from torchemit.simplify import add_file_header, format_code
from torchemit.simplify._formatter import MAX_LINE_LENGTH


class TestLineWrapping:
    """Test wrapping of lines longer than the limit."""

    def test_short_line_unchanged(self):
        """Test that short lines are kept as-is."""
        assert format_code("y = f(a, b)") == "y = f(a, b)\n"

    def test_long_call_wrapped(self):
        """Test that a long call is split one argument per line."""
        args = [f"argument_{i}" for i in range(10)]
        line = f"y = compute({', '.join(args)})"
        assert len(line) > MAX_LINE_LENGTH
        expected = "\n".join(["y = compute("] + [f"    {arg}," for arg in args] + [")"]) + "\n"
        assert format_code(line) == expected

    def test_indentation_kept(self):
        """Test that wrapped arguments are indented relative to the call."""
        line = (
            "        self.conv2d1 = nn.Conv2d(in_channels=2, out_channels=4, "
            "kernel_size=3, padding=1, stride=2)"
        )
        lines = format_code(line).splitlines()
        assert lines[0] == "        self.conv2d1 = nn.Conv2d("
        assert lines[1] == "            in_channels=2,"
        assert lines[-1] == "        )"

    def test_nested_brackets_respected(self):
        """Test that commas inside brackets do not split arguments."""
        names = ", ".join(f"tensor_number_{i}" for i in range(6))
        line = f"x9 = torch.cat([{names}], dim=1)"
        lines = format_code(line).splitlines()
        assert lines[1] == f"    [{names}],"
        assert lines[2] == "    dim=1,"

    def test_quoted_commas_respected(self):
        """Test that commas inside string literals do not split arguments."""
        text = '"' + ", ".join("abcdefghijklmnopqrstuvwxyz") + '"'
        line = f"y = f({text}, value=1)"
        assert len(line) > MAX_LINE_LENGTH
        lines = format_code(line).splitlines()
        assert lines[1] == f"    {text},"

    def test_long_non_call_unchanged(self):
        """Test that lines that are not call assignments are left alone."""
        line = "# " + "a" * 100
        assert format_code(line) == line + "\n"

    def test_single_argument_unchanged(self):
        """Test that a call with one argument is not wrapped."""
        line = "y = f(" + "a" * 100 + ")"
        assert format_code(line) == line + "\n"


class TestBlankLines:
    """Test blank line normalization."""

    def test_definitions_spaced(self):
        """Test blank lines around classes, methods and functions."""
        code = (
            "import torch\nclass A:\n\n    def f(self):\n        pass\n"
            "    def g(self):\n        pass\ndef new():\n    pass"
        )
        expected = (
            "import torch\n\n\nclass A:\n    def f(self):\n        pass\n\n"
            "    def g(self):\n        pass\n\n\ndef new():\n    pass\n"
        )
        assert format_code(code) == expected

    def test_extra_blank_lines_collapsed(self):
        """Test that excess blank lines before a definition are removed."""
        code = "x = 1\n\n\n\n\ndef f():\n    pass\n"
        assert format_code(code) == "x = 1\n\n\ndef f():\n    pass\n"

    def test_single_trailing_newline(self):
        """Test that trailing newlines collapse to one."""
        assert format_code("x = 1\n\n\n") == "x = 1\n"


class TestFileHeader:
    """Test the module docstring."""

    def test_header_with_source(self):
        """Test the header naming the class and source."""
        code = add_file_header("import torch\n", "Net", "models\\net.onnx")
        assert code.startswith('"""Net: PyTorch module generated by torchemit.\n')
        assert "Source: models/net.onnx\n" in code
        assert code.endswith('"""\nimport torch\n')

    def test_header_without_source(self):
        """Test that the source line is omitted without a source."""
        code = add_file_header("import torch\n", "Net")
        assert "Source:" not in code
        assert "new()" in code
