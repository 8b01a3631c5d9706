"""Stage 5: Canonical Operation Type Definitions.

Defines the closed set of canonical operator kinds, the typed operand
containers and the terminal, immutable ModelDefinition.
"""

__docformat__ = "restructuredtext"
__all__ = [
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
    "array_digest",
]

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

import numpy as np

from torchemit.parse.types import ElementType, TensorDescriptor


def array_digest(data: np.ndarray) -> str:
    """SHA-256 over dtype, shape and bytes of an array."""
    digest = hashlib.sha256()
    digest.update(str(data.dtype).encode())
    digest.update(str(tuple(data.shape)).encode())
    digest.update(np.ascontiguousarray(data).tobytes())
    return digest.hexdigest()


class OpKind(Enum):
    """Canonical operator kinds."""

    ADD = "Add"
    SUB = "Sub"
    MUL = "Mul"
    DIV = "Div"
    EQUAL = "Equal"
    CONV1D = "Conv1d"
    CONV2D = "Conv2d"
    MAXPOOL2D = "MaxPool2d"
    AVGPOOL2D = "AvgPool2d"
    GLOBAL_AVGPOOL = "GlobalAvgPool"
    BATCHNORM = "BatchNorm"
    LINEAR = "Linear"
    MATMUL = "MatMul"
    RESHAPE = "Reshape"
    FLATTEN = "Flatten"
    TRANSPOSE = "Transpose"
    CONCAT = "Concat"
    GATHER = "Gather"
    SOFTMAX = "Softmax"
    LOG_SOFTMAX = "LogSoftmax"
    SIGMOID = "Sigmoid"
    TANH = "Tanh"
    RELU = "Relu"
    SQRT = "Sqrt"
    RECIPROCAL = "Reciprocal"
    ERF = "Erf"
    CLIP = "Clip"
    DROPOUT = "Dropout"
    IDENTITY = "Identity"


class OperatorClass(Enum):
    """How an operation appears in the emitted module.

    :cvar LAYER: Module instance created in ``__init__`` (Conv2d, Linear)
    :cvar OPERATION: Function or method call (reshape, softmax, clamp)
    :cvar OPERATOR: Infix arithmetic or comparison (+, -, *, /, ==, @)
    """

    LAYER = "layer"
    OPERATION = "operation"
    OPERATOR = "operator"


@dataclass(frozen=True)
class VariableInfo:
    """Runtime value (graph input or output of a previous operation).

    :param onnx_name: Original tensor name
    :param code_name: Variable name in the emitted code (e.g. "x1")
    :param descriptor: Inferred element type and shape
    :param python_scalar: The value is a Python ``float``/``int``/``bool``
        at runtime instead of a tensor
    """

    onnx_name: str
    code_name: str
    descriptor: TensorDescriptor
    python_scalar: bool = False


@dataclass(frozen=True)
class ParameterInfo:
    """Learned parameter bound to an initializer.

    :param onnx_name: Initializer name the parameter was bound to
    :param role: Parameter name on the layer ("weight", "bias", "running_mean", ...)
    :param descriptor: Element type and shape of the (possibly rewritten) data
    :param data: Parameter values in the layer's expected layout
    :param digest: Content digest of ``data``
    """

    onnx_name: str
    role: str
    descriptor: TensorDescriptor
    data: np.ndarray = field(compare=False, repr=False)
    digest: str = ""


@dataclass(frozen=True)
class ConstantInfo:
    """Non-learned constant tensor operand.

    :param onnx_name: Initializer name
    :param code_name: Buffer name in the emitted module (e.g. "c0")
    :param descriptor: Element type and shape
    :param data: Constant values
    :param digest: Content digest of ``data``
    :param inline: Embedded as a literal instead of shipped in the weight bundle
    """

    onnx_name: str
    code_name: str
    descriptor: TensorDescriptor
    data: np.ndarray = field(compare=False, repr=False)
    digest: str = ""
    inline: bool = True


@dataclass(frozen=True)
class ScalarInfo:
    """Rank-0 constant folded into a literal.

    :param onnx_name: Initializer name
    :param value: Python scalar value
    :param dtype: Element type of the original constant
    """

    onnx_name: str
    value: float | int | bool
    dtype: ElementType


Operand = VariableInfo | ParameterInfo | ConstantInfo | ScalarInfo


@dataclass(frozen=True)
class ArgumentInfo:
    """Literal argument of a layer constructor or function call.

    :param onnx_name: ONNX attribute the value came from (None if derived)
    :param pytorch_name: Keyword name in the emitted call
    :param value: Literal value (int, float, bool, str, tuple)
    :param default_value: PyTorch default (None if the argument has none)
    """

    onnx_name: str | None
    pytorch_name: str
    value: Any
    default_value: Any | None = None

    def is_default(self) -> bool:
        """Check if the argument can be omitted from the emitted call."""
        return self.default_value is not None and self.value == self.default_value


@dataclass(frozen=True)
class CanonicalOp:
    """One fully concretized operation of the forward pipeline.

    :param name: Instance name for layers (e.g. "conv2d1"), else the node id
    :param node_id: Id of the IR node the operation was lowered from
    :param kind: Canonical operator kind
    :param operator_class: Layer, operation or operator
    :param inputs: Ordered operands
    :param outputs: Ordered results, None for omitted optional outputs
    :param arguments: Literal constructor/call arguments
    :param attributes: Fully resolved attributes (per-side pads, axes, bounds), read-only
    :param requires_parameters: Whether the operation binds learned parameters
    """

    name: str
    node_id: str
    kind: OpKind
    operator_class: OperatorClass
    inputs: tuple[Operand, ...]
    outputs: tuple[VariableInfo | None, ...]
    arguments: tuple[ArgumentInfo, ...] = ()
    attributes: Mapping[str, Any] = field(default_factory=dict)
    requires_parameters: bool = False

    def __post_init__(self):
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @property
    def parameters(self) -> tuple[ParameterInfo, ...]:
        return tuple(op for op in self.inputs if isinstance(op, ParameterInfo))

    @property
    def variables(self) -> tuple[VariableInfo, ...]:
        return tuple(op for op in self.inputs if isinstance(op, VariableInfo))

    def argument(self, name: str, default: Any = None) -> Any:
        for arg in self.arguments:
            if arg.pytorch_name == name:
                return arg.value
        return default


@dataclass(frozen=True)
class ModelDefinition:
    """Terminal output of the compiler.

    :param name: Graph name
    :param ops: Operations in forward order
    :param inputs: Runtime inputs of ``forward`` in declaration order
    :param outputs: Values returned by ``forward`` in declaration order
    :param parameters: Learned parameters keyed ``"<instance>.<role>"``
    :param constants: Non-learned constant tensors
    """

    name: str
    ops: tuple[CanonicalOp, ...]
    inputs: tuple[VariableInfo, ...]
    outputs: tuple[VariableInfo | ConstantInfo | ScalarInfo, ...]
    parameters: dict[str, ParameterInfo]
    constants: tuple[ConstantInfo, ...]

    @property
    def requires_weights(self) -> bool:
        """True when construction needs data beyond the emitted source."""
        return bool(self.parameters) or any(not c.inline for c in self.constants)

    def weight_bundle(self) -> dict[str, np.ndarray]:
        """Mapping from state key to array for everything shipped as weights."""
        bundle = {key: param.data for key, param in self.parameters.items()}
        bundle.update({c.code_name: c.data for c in self.constants if not c.inline})
        return bundle

    def manifest(self) -> dict[str, dict[str, Any]]:
        """Element type and shape of every weight bundle entry."""
        return {
            key: {"dtype": str(data.dtype), "shape": tuple(int(d) for d in data.shape)}
            for key, data in self.weight_bundle().items()
        }
