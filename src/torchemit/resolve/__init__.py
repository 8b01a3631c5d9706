"""Stage 3: Opset Resolution.

This module maps each IR node to the operator variant of its opset version.
"""

__docformat__ = "restructuredtext"
__all__ = [
    "FLT_MAX",
    "MIN_SUPPORTED_OPSET",
    "OpVariant",
    "VARIANT_TABLE",
    "resolve_opsets",
    "select_variant",
]

from torchemit.resolve.resolver import FLT_MAX, resolve_opsets
from torchemit.resolve.variants import MIN_SUPPORTED_OPSET, VARIANT_TABLE, OpVariant, select_variant
