"""Format generated code to follow Black rules."""

__docformat__ = "restructuredtext"
__all__ = ["MAX_LINE_LENGTH", "format_code"]

import re

MAX_LINE_LENGTH = 88

# indent, target, callee, arguments of "target = callee(arguments)"
_CALL_ASSIGNMENT = re.compile(r"^(\s*)(\S+) = (.+?)\((.*)\)$", re.DOTALL)

_CLASS = re.compile(r"^class\s+\w+")
_FUNCTION = re.compile(r"^def\s+\w+")
_METHOD = re.compile(r"^    def\s+\w+")

# Blank lines required before each kind of definition
_BLANKS_BEFORE = {"class": 2, "function": 2, "method": 1}

_OPENERS = "([{"
_CLOSERS = ")]}"
_QUOTES = "\"'"


def format_code(code: str) -> str:
    """Apply Black-compatible formatting to generated code.

    Applies the following formatting rules:
    - Call assignments longer than 88 characters are split one argument
      per line, each with a trailing comma
    - Two blank lines before module-level classes and functions
    - One blank line between methods, none right after the class line
    - Exactly one trailing newline

    :param code: Generated PyTorch code
    :return: Formatted code
    """
    formatted: list[str] = []
    for line in _normalize_blank_lines(code.split("\n")):
        wrapped = _wrap_call(line) if len(line) > MAX_LINE_LENGTH else None
        formatted.extend(wrapped or [line])
    return "\n".join(formatted).rstrip("\n") + "\n"


def _wrap_call(line: str) -> list[str] | None:
    """Split a long ``target = callee(arguments)`` line.

    :param line: Line to wrap
    :return: Wrapped lines, or None when the line is not a call with at
        least two top-level arguments
    """
    match = _CALL_ASSIGNMENT.match(line)
    if match is None:
        return None
    indent, target, callee, arguments = match.groups()
    parts = _top_level_arguments(arguments)
    if parts is None or len(parts) < 2:
        return None
    body = [f"{indent}    {part}," for part in parts]
    return [f"{indent}{target} = {callee}(", *body, f"{indent})"]


def _top_level_arguments(arguments: str) -> list[str] | None:
    """Split a call's argument text at commas outside brackets and strings.

    :param arguments: Text between the call's outer parentheses
    :return: Stripped arguments, or None if the brackets do not balance
    """
    parts: list[str] = []
    depth = 0
    quote = None
    start = 0
    for index, char in enumerate(arguments):
        if quote:
            quote = None if char == quote else quote
        elif char in _QUOTES:
            quote = char
        elif char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            depth -= 1
            if depth < 0:
                return None
        elif char == "," and depth == 0:
            parts.append(arguments[start:index].strip())
            start = index + 1
    if depth:
        return None
    tail = arguments[start:].strip()
    if tail:
        parts.append(tail)
    return parts


def _definition_kind(line: str, in_class: bool) -> str | None:
    if _CLASS.match(line):
        return "class"
    if _FUNCTION.match(line):
        return "function"
    if in_class and _METHOD.match(line):
        return "method"
    return None


def _normalize_blank_lines(lines: list[str]) -> list[str]:
    """Set the number of blank lines in front of every definition.

    The first method of a class follows its ``class`` line directly, and
    blank lines between the two are dropped.

    :param lines: Source lines
    :return: Lines with normalized spacing
    """
    result: list[str] = []
    in_class = False
    after_class_line = False
    for line in lines:
        kind = _definition_kind(line, in_class)
        if kind is None:
            if not (after_class_line and not line.strip()):
                result.append(line)
                after_class_line = False
            continue
        if kind != "method":
            in_class = kind == "class"
        if not (kind == "method" and after_class_line) and result:
            _set_trailing_blank_lines(result, _BLANKS_BEFORE[kind])
        result.append(line)
        after_class_line = kind == "class"
    return result


def _set_trailing_blank_lines(lines: list[str], count: int) -> None:
    while lines and not lines[-1].strip():
        lines.pop()
    lines.extend([""] * count)
