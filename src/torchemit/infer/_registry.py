"""Shape inference rule registry and shared dimension helpers."""

__docformat__ = "restructuredtext"
__all__ = [
    "ShapeRule",
    "broadcast_shapes",
    "get_shape_rule",
    "merge_dims",
    "normalize_axis",
    "product",
    "register_shape_inference",
    "require_float",
    "require_same_dtype",
]

from collections.abc import Callable

from torchemit.build.types import IRNode
from torchemit.errors import MalformedGraph, ShapeMismatch, TypeMismatch
from torchemit.parse.types import DYNAMIC, Dim, ElementType, TensorDescriptor

ShapeRule = Callable[[IRNode, list[TensorDescriptor | None]], list[TensorDescriptor]]

_RULES: dict[str, ShapeRule] = {}


def register_shape_inference(*op_types: str) -> Callable[[ShapeRule], ShapeRule]:
    """Register a shape rule for one or more ONNX operator types.

    :param op_types: ONNX operator types handled by the decorated rule
    :return: Decorator
    """

    def wrapper(fn: ShapeRule) -> ShapeRule:
        for op_type in op_types:
            _RULES[op_type] = fn
        return fn

    return wrapper


def get_shape_rule(op_type: str) -> ShapeRule:
    if op_type not in _RULES:
        raise KeyError(f"No shape inference rule registered for {op_type}")
    return _RULES[op_type]


def merge_dims(a: Dim, b: Dim) -> Dim:
    """Merge two dimensions that must describe the same axis size.

    Returns the concrete size if either is concrete, the shared symbol if
    both carry the same one, and DYNAMIC otherwise. Two different concrete
    sizes cannot be merged and raise ValueError.
    """
    if a == b:
        return a
    if isinstance(a, int) and isinstance(b, int):
        raise ValueError(f"{a} != {b}")
    if isinstance(a, int):
        return a
    if isinstance(b, int):
        return b
    return DYNAMIC


def _broadcast_dim(a: Dim, b: Dim) -> Dim:
    if a == b:
        return a
    if a == 1:
        return b
    if b == 1:
        return a
    return merge_dims(a, b)


def broadcast_shapes(a: tuple[Dim, ...], b: tuple[Dim, ...], node_id: str) -> tuple[Dim, ...]:
    """Multidirectional (NumPy-style) broadcast of two shapes.

    Ranks are aligned from the trailing dimension and size-1 dimensions
    stretch. A symbolic dimension against a concrete size above one takes
    the concrete size.

    :param a: First shape
    :param b: Second shape
    :param node_id: Node id reported on failure
    :return: Broadcast shape
    """
    rank = max(len(a), len(b))
    padded_a = (1,) * (rank - len(a)) + tuple(a)
    padded_b = (1,) * (rank - len(b)) + tuple(b)
    result = []
    for da, db in zip(padded_a, padded_b):
        try:
            result.append(_broadcast_dim(da, db))
        except ValueError:
            raise ShapeMismatch(
                f"Shapes {tuple(a)} and {tuple(b)} cannot be broadcast",
                tuple(a),
                tuple(b),
                node_id=node_id,
            ) from None
    return tuple(result)


def product(dims) -> Dim:
    """Product of dimensions, DYNAMIC if any of them is not concrete."""
    total = 1
    for dim in dims:
        if not isinstance(dim, int):
            return DYNAMIC
        total *= dim
    return total


def normalize_axis(axis: int, rank: int, node: IRNode, inclusive: bool = False) -> int:
    """Map a possibly negative axis into ``[0, rank)``.

    :param axis: Axis as given by the attribute
    :param rank: Rank of the tensor the axis refers to
    :param node: Node reported on failure
    :param inclusive: Accept ``rank`` itself (Flatten)
    :return: Non-negative axis
    """
    upper = rank + 1 if inclusive else rank
    normalized = axis + rank if axis < 0 else axis
    if not 0 <= normalized < upper:
        raise MalformedGraph(
            f"{node.op_type} axis {axis} is out of range for rank {rank}",
            node_id=node.node_id,
        )
    return normalized


def require_same_dtype(node: IRNode, descriptors: list[TensorDescriptor]) -> ElementType:
    first = descriptors[0].dtype
    for descriptor in descriptors[1:]:
        if descriptor.dtype != first:
            raise TypeMismatch(
                f"{node.op_type} operands must share an element type",
                first.name if first else None,
                descriptor.dtype.name if descriptor.dtype else None,
                node_id=node.node_id,
            )
    return first


def require_float(node: IRNode, descriptor: TensorDescriptor) -> None:
    if descriptor.dtype is None or not descriptor.dtype.is_float:
        raise TypeMismatch(
            f"{node.op_type} requires a floating point input",
            "FLOAT32 or FLOAT64",
            descriptor.dtype.name if descriptor.dtype else None,
            node_id=node.node_id,
        )
