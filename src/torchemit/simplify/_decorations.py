"""File header for generated modules."""

__docformat__ = "restructuredtext"
__all__ = ["add_file_header"]


def add_file_header(code: str, class_name: str, source: str | None = None) -> str:
    """Prepend a module docstring describing the generated file.

    :param code: Formatted module code
    :param class_name: Name of the generated class
    :param source: Model the code was generated from (path or graph name)
    :return: Code with header
    """
    lines = [f'"""{class_name}: PyTorch module generated by torchemit.', ""]
    if source:
        lines.append("Source: " + source.replace("\\", "/").replace('"""', ""))
    lines.extend(
        [
            "Construct with new() for fresh parameters or default() for the trained ones.",
            '"""',
            "",
        ]
    )
    return "\n".join(lines) + code
