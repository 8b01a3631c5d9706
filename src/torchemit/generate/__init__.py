"""Stage 6: PyTorch Code Generation.

This module emits PyTorch nn.Module source and state_dicts from model
definitions.
"""

__docformat__ = "restructuredtext"
__all__ = [
    "EmittedModule",
    "emit_pytorch_module",
    "load_generated_module",
    "sanitize_identifier",
    "to_camel_case",
]

from torchemit.generate._utils import sanitize_identifier, to_camel_case
from torchemit.generate.code_generator import (
    EmittedModule,
    emit_pytorch_module,
    load_generated_module,
)
