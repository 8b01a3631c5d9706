"""Stage 1: Parsed Graph Type Definitions.

Defines element types, tensor descriptors and the immutable records the
parser produces. No semantic interpretation happens at this stage.
"""

__docformat__ = "restructuredtext"
__all__ = [
    "DYNAMIC",
    "Dim",
    "ElementType",
    "Initializer",
    "ParsedGraph",
    "RawNode",
    "TensorDescriptor",
    "TensorSignature",
]

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

import numpy as np
import torch
from onnx import TensorProto

# Marker for a dimension whose size is unknown and unnamed
DYNAMIC = "?"

Dim = int | str


class ElementType(Enum):
    """Tensor element types accepted by the compiler.

    The value is the ONNX ``TensorProto`` data type code.
    """

    FLOAT32 = TensorProto.FLOAT
    FLOAT64 = TensorProto.DOUBLE
    INT32 = TensorProto.INT32
    INT64 = TensorProto.INT64
    BOOL = TensorProto.BOOL

    @classmethod
    def from_onnx(cls, onnx_type: int) -> "ElementType | None":
        """Map an ONNX data type code, or return None if unsupported."""
        try:
            return cls(onnx_type)
        except ValueError:
            return None

    @property
    def is_float(self) -> bool:
        return self in (ElementType.FLOAT32, ElementType.FLOAT64)

    @property
    def is_integer(self) -> bool:
        return self in (ElementType.INT32, ElementType.INT64)

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype(_NUMPY_DTYPES[self])

    @property
    def torch_dtype(self) -> torch.dtype:
        return _TORCH_DTYPES[self]

    @property
    def python_type(self) -> type:
        """Python scalar type used for rank-0 runtime values."""
        if self.is_float:
            return float
        if self.is_integer:
            return int
        return bool


_NUMPY_DTYPES = {
    ElementType.FLOAT32: np.float32,
    ElementType.FLOAT64: np.float64,
    ElementType.INT32: np.int32,
    ElementType.INT64: np.int64,
    ElementType.BOOL: np.bool_,
}

_TORCH_DTYPES = {
    ElementType.FLOAT32: torch.float32,
    ElementType.FLOAT64: torch.float64,
    ElementType.INT32: torch.int32,
    ElementType.INT64: torch.int64,
    ElementType.BOOL: torch.bool,
}


@dataclass(frozen=True)
class TensorDescriptor:
    """Element type and shape of a tensor.

    :param dtype: Element type, or None when not yet known
    :param shape: One entry per axis; ``int`` for concrete sizes, ``str`` for
        symbolic names, :data:`DYNAMIC` for unknown sizes
    """

    dtype: ElementType | None
    shape: tuple[Dim, ...]

    @property
    def rank(self) -> int:
        return len(self.shape)

    @property
    def is_scalar(self) -> bool:
        return len(self.shape) == 0

    @property
    def is_static(self) -> bool:
        return all(isinstance(dim, int) for dim in self.shape)

    @property
    def numel(self) -> int | None:
        """Number of elements, or None if any dimension is not concrete."""
        if not self.is_static:
            return None
        return math.prod(self.shape)  # type: ignore[arg-type]

    def with_shape(self, shape: tuple[Dim, ...]) -> "TensorDescriptor":
        return TensorDescriptor(self.dtype, tuple(shape))

    def with_dtype(self, dtype: ElementType) -> "TensorDescriptor":
        return TensorDescriptor(dtype, self.shape)


@dataclass(frozen=True)
class TensorSignature:
    """Declared graph input or output.

    :param name: Tensor name
    :param descriptor: Declared descriptor; output declarations may be partial
    :param has_shape: False when the declaration carries no shape at all
    """

    name: str
    descriptor: TensorDescriptor
    has_shape: bool = True


@dataclass(frozen=True)
class RawNode:
    """Structural record of a single ONNX node.

    :param node_id: Unique node id (ONNX node name, or generated)
    :param op_type: ONNX operator type (e.g. "Conv", "Clip")
    :param domain: Operator domain ("" for the default ONNX domain)
    :param opset_version: Opset version imported for the node's domain
    :param attributes: Decoded attributes (name -> Python value), read-only
    :param inputs: Input tensor names in order, "" for omitted optional inputs
    :param outputs: Output tensor names in order
    """

    node_id: str
    op_type: str
    domain: str
    opset_version: int
    attributes: Mapping[str, Any]
    inputs: tuple[str, ...]
    outputs: tuple[str, ...]

    def __post_init__(self):
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))


@dataclass(frozen=True)
class Initializer:
    """Constant tensor embedded in the graph.

    :param name: Tensor name
    :param descriptor: Element type and (concrete) shape
    :param data: Read-only array holding the values
    """

    name: str
    descriptor: TensorDescriptor
    data: np.ndarray = field(compare=False, repr=False)


@dataclass(frozen=True)
class ParsedGraph:
    """Parser output: raw nodes, initializer table and declared signature.

    :param name: Graph name
    :param nodes: Nodes in declaration order
    :param initializers: Initializers by name, in declaration order
    :param inputs: Declared runtime inputs (initializers excluded)
    :param outputs: Declared outputs
    :param opset_imports: Opset version per domain
    :param ir_version: ONNX IR version of the model
    """

    name: str
    nodes: tuple[RawNode, ...]
    initializers: dict[str, Initializer]
    inputs: tuple[TensorSignature, ...]
    outputs: tuple[TensorSignature, ...]
    opset_imports: dict[str, int]
    ir_version: int
