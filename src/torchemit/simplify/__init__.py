"""Code-level post-processing.

Formats generated PyTorch code and adds the file header.
"""

__docformat__ = "restructuredtext"
__all__ = ["add_file_header", "format_code"]

from torchemit.simplify._decorations import add_file_header
from torchemit.simplify._formatter import format_code
