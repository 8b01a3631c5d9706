"""Utility functions for code generation.

Helper functions for formatting literals, operands and names.
"""

__docformat__ = "restructuredtext"
__all__ = [
    "format_argument",
    "format_array",
    "format_dtype",
    "operand_code",
    "sanitize_identifier",
    "tensor_code",
    "to_camel_case",
]

import keyword
import math
import re
from typing import Any

import numpy as np

from torchemit.lower import ConstantInfo, Operand, ParameterInfo, ScalarInfo, VariableInfo
from torchemit.parse import ElementType

_NON_WORD = re.compile(r"\W")
_ALNUM_RUN = re.compile(r"[^\W_]+")
_DIGITS = "0123456789"


def format_dtype(dtype: ElementType) -> str:
    """Format an element type as a torch dtype expression.

    :param dtype: Element type
    :return: Expression such as "torch.float32"
    """
    return str(dtype.torch_dtype)


def _format_float(value: float) -> str:
    if math.isnan(value):
        return 'float("nan")'
    if math.isinf(value):
        return 'float("-inf")' if value < 0 else 'float("inf")'
    return repr(value)


def format_argument(value: Any) -> str:
    """Render a value as the Python literal that recreates it.

    Numpy scalars are written like their Python counterparts, non-finite
    floats as ``float("inf")``-style calls.

    :param value: None, bool, int, float, str, or a (nested) list or tuple
        of those
    :return: Literal source text
    :raises TypeError: For any other type
    """
    if value is None:
        return "None"
    # bool before int: bool is an int subclass
    if isinstance(value, (bool, np.bool_)):
        return "True" if value else "False"
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, (float, np.floating)):
        return _format_float(float(value))
    if isinstance(value, str):
        return repr(value)
    if isinstance(value, list):
        return "[" + ", ".join(format_argument(item) for item in value) + "]"
    if isinstance(value, tuple):
        items = [format_argument(item) for item in value]
        if len(items) == 1:
            return f"({items[0]},)"
        return "(" + ", ".join(items) + ")"
    raise TypeError(f"Cannot format argument of type {type(value).__name__}: {value!r}")


def format_array(data: np.ndarray) -> str:
    """Format an array as a nested list literal (a bare scalar for rank 0)."""
    return format_argument(data.tolist())


def _scalar_literal(scalar: ScalarInfo) -> str:
    return format_argument(scalar.dtype.python_type(scalar.value))


def operand_code(operand: Operand) -> str:
    """Expression that refers to an operand inside ``forward``.

    Constant buffers live on the module, folded scalars are literals and
    runtime values are local variables.

    :param operand: Operand of a canonical operation
    :return: Code expression
    """
    if isinstance(operand, VariableInfo):
        return operand.code_name
    if isinstance(operand, ConstantInfo):
        return f"self.{operand.code_name}"
    if isinstance(operand, ScalarInfo):
        return _scalar_literal(operand)
    if isinstance(operand, ParameterInfo):
        raise ValueError(
            f"Parameter '{operand.role}' of '{operand.onnx_name}' is owned by its layer "
            f"and cannot be referenced directly"
        )
    raise TypeError(f"Unknown operand type: {type(operand).__name__}")


def tensor_code(operand: Operand) -> str:
    """Like :func:`operand_code`, but guaranteed to evaluate to a tensor.

    Python scalars are wrapped with ``torch.as_tensor`` so tensor methods
    and functions accept them.
    """
    if isinstance(operand, ScalarInfo):
        return f"torch.as_tensor({_scalar_literal(operand)}, dtype={format_dtype(operand.dtype)})"
    if isinstance(operand, VariableInfo) and operand.python_scalar:
        dtype = format_dtype(operand.descriptor.dtype)
        return f"torch.as_tensor({operand.code_name}, dtype={dtype})"
    return operand_code(operand)


def sanitize_identifier(name: str) -> str:
    """Turn an arbitrary name into a usable Python identifier.

    :param name: Name to sanitize
    :return: Identifier; "_" for an empty name and "Model" when only digits
        remain
    """
    if not name:
        return "_"
    identifier = _NON_WORD.sub("_", name).lstrip(_DIGITS) or "Model"
    return identifier + "_" if keyword.iskeyword(identifier) else identifier


def to_camel_case(name: str) -> str:
    """Class name from a file or graph name.

    Every alphanumeric run is capitalized and the runs are joined, so
    "resnet_block_2" becomes "ResnetBlock2" and "vgg16-7" becomes "Vgg167".

    :param name: File stem or graph name
    :return: CamelCase identifier, "Model" if nothing usable remains
    """
    camel = "".join(word.capitalize() for word in _ALNUM_RUN.findall(name)).lstrip(_DIGITS)
    if not camel:
        return "Model"
    camel = camel[0].upper() + camel[1:]
    return camel + "Model" if keyword.iskeyword(camel) else camel
