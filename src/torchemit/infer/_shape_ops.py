"""Shape rules for operators that rearrange tensors."""

__docformat__ = "restructuredtext"
__all__ = ["resolve_reshape_target"]

from torchemit.build.types import IRNode
from torchemit.errors import MalformedGraph, ShapeMismatch, TypeMismatch
from torchemit.infer._registry import (
    merge_dims,
    normalize_axis,
    product,
    register_shape_inference,
    require_same_dtype,
)
from torchemit.parse.types import DYNAMIC, Dim, TensorDescriptor


def resolve_reshape_target(
    node: IRNode, input_shape: tuple[Dim, ...], target: tuple[int, ...], allowzero: bool
) -> tuple[Dim, ...]:
    """Resolve a Reshape target shape against the input shape.

    ``0`` copies the input dimension at the same index (unless
    ``allowzero``); a single ``-1`` is resolved from the element count.

    :param node: Reshape node (for error reporting)
    :param input_shape: Shape of the data input
    :param target: Raw target shape
    :param allowzero: Whether ``0`` means an actual zero-size dimension
    :return: Output shape
    """
    if any(d < -1 for d in target):
        raise MalformedGraph(f"Reshape target {target} has invalid entries", node_id=node.node_id)
    if sum(1 for d in target if d == -1) > 1:
        raise MalformedGraph(
            f"Reshape target {target} has more than one -1", node_id=node.node_id
        )
    if allowzero and 0 in target and -1 in target:
        raise MalformedGraph(
            "Reshape with allowzero cannot combine 0 and -1", node_id=node.node_id
        )

    shape: list[Dim] = []
    for index, dim in enumerate(target):
        if dim == 0 and not allowzero:
            if index >= len(input_shape):
                raise ShapeMismatch(
                    f"Reshape copies dimension {index} of a rank-{len(input_shape)} input",
                    input_shape,
                    target,
                    node_id=node.node_id,
                )
            shape.append(input_shape[index])
        else:
            shape.append(dim)

    total = product(input_shape)
    if -1 in shape:
        position = shape.index(-1)
        known = product(d for i, d in enumerate(shape) if i != position)
        if isinstance(total, int) and isinstance(known, int):
            if known == 0 or total % known != 0:
                raise ShapeMismatch(
                    "Reshape cannot infer the -1 dimension",
                    input_shape,
                    target,
                    node_id=node.node_id,
                )
            shape[position] = total // known
        else:
            shape[position] = DYNAMIC
    elif isinstance(total, int) and isinstance(product(shape), int) and product(shape) != total:
        raise ShapeMismatch(
            "Reshape must preserve the number of elements",
            input_shape,
            tuple(shape),
            node_id=node.node_id,
        )
    return tuple(shape)


@register_shape_inference("Reshape")
def infer_reshape(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    x = inputs[0]
    shape = resolve_reshape_target(
        node, x.shape, node.attributes["target_shape"], bool(node.attributes["allowzero"])
    )
    return [TensorDescriptor(x.dtype, shape)]


@register_shape_inference("Flatten")
def infer_flatten(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    x = inputs[0]
    axis = normalize_axis(node.attributes["axis"], x.rank, node, inclusive=True)
    return [TensorDescriptor(x.dtype, (product(x.shape[:axis]), product(x.shape[axis:])))]


@register_shape_inference("Transpose")
def infer_transpose(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    x = inputs[0]
    perm = node.attributes.get("perm")
    if perm is None:
        perm = tuple(reversed(range(x.rank)))
    if sorted(perm) != list(range(x.rank)):
        raise MalformedGraph(
            f"Transpose perm {tuple(perm)} is not a permutation of rank {x.rank}",
            node_id=node.node_id,
        )
    return [TensorDescriptor(x.dtype, tuple(x.shape[i] for i in perm))]


@register_shape_inference("Concat")
def infer_concat(node: IRNode, inputs: list[TensorDescriptor | None]) -> list[TensorDescriptor]:
    present = [descriptor for descriptor in inputs if descriptor is not None]
    first = present[0]
    dtype = require_same_dtype(node, present)
    axis = normalize_axis(node.attributes["axis"], first.rank, node)
    shape = list(first.shape)
    for other in present[1:]:
        if other.rank != first.rank:
            raise ShapeMismatch(
                "Concat inputs must have the same rank",
                first.shape,
                other.shape,
                node_id=node.node_id,
            )
        for index, dim in enumerate(other.shape):
            if index == axis:
                continue
            try:
                shape[index] = merge_dims(shape[index], dim)
            except ValueError:
                raise ShapeMismatch(
                    f"Concat inputs differ on axis {index}",
                    first.shape,
                    other.shape,
                    node_id=node.node_id,
                ) from None
    axis_sizes = [descriptor.shape[axis] for descriptor in present]
    shape[axis] = sum(axis_sizes) if all(isinstance(d, int) for d in axis_sizes) else DYNAMIC
    return [TensorDescriptor(dtype, tuple(shape))]


@register_shape_inference("Gather")
def infer_gather(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    data, indices = inputs
    if indices.dtype is None or not indices.dtype.is_integer:
        raise TypeMismatch(
            "Gather indices must be INT32 or INT64",
            "INT32 or INT64",
            indices.dtype.name if indices.dtype else None,
            node_id=node.node_id,
        )
    if data.rank == 0:
        raise ShapeMismatch(
            "Gather data must have rank >= 1", "rank >= 1", data.shape, node_id=node.node_id
        )
    axis = normalize_axis(node.attributes["axis"], data.rank, node)
    shape = data.shape[:axis] + indices.shape + data.shape[axis + 1 :]
    return [TensorDescriptor(data.dtype, shape)]
