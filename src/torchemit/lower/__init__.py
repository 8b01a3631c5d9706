"""Stage 5: Lowering.

This module turns the resolved IR into canonical operations.
"""

__docformat__ = "restructuredtext"
__all__ = [
    "MAX_INLINE_CONSTANT_NUMEL",
    "ArgumentInfo",
    "CanonicalOp",
    "ConstantInfo",
    "ModelDefinition",
    "OpKind",
    "Operand",
    "OperatorClass",
    "ParameterInfo",
    "ScalarInfo",
    "VariableInfo",
    "lower_graph",
]

from torchemit.lower._context import MAX_INLINE_CONSTANT_NUMEL
from torchemit.lower.lowering import lower_graph
from torchemit.lower.types import (
    ArgumentInfo,
    CanonicalOp,
    ConstantInfo,
    ModelDefinition,
    Operand,
    OperatorClass,
    OpKind,
    ParameterInfo,
    ScalarInfo,
    VariableInfo,
)
