"""Convolution and pooling window attributes.

Resolves kernel, strides, dilations and per-side pads (including
``auto_pad``) into one record that both shape inference and lowering use.
"""

__docformat__ = "restructuredtext"
__all__ = ["SpatialAttributes", "resolve_spatial_attributes"]

from dataclasses import dataclass

from torchemit.build.types import IRNode
from torchemit.errors import MalformedGraph, ShapeMismatch, UnsupportedOperator
from torchemit.parse.types import DYNAMIC, Dim


@dataclass(frozen=True)
class SpatialAttributes:
    """Fully resolved sliding-window attributes.

    :param kernel: Kernel size per spatial dimension
    :param strides: Stride per spatial dimension
    :param dilations: Dilation per spatial dimension
    :param pads_begin: Padding before each spatial dimension
    :param pads_end: Padding after each spatial dimension
    :param ceil_mode: Whether output sizes round up
    """

    kernel: tuple[int, ...]
    strides: tuple[int, ...]
    dilations: tuple[int, ...]
    pads_begin: tuple[int, ...]
    pads_end: tuple[int, ...]
    ceil_mode: bool = False

    @property
    def is_symmetric(self) -> bool:
        return self.pads_begin == self.pads_end

    def output_dims(self, spatial: tuple[Dim, ...], node_id: str) -> tuple[Dim, ...]:
        return tuple(
            _output_size(size, k, s, d, pb, pe, self.ceil_mode, node_id)
            for size, k, s, d, pb, pe in zip(
                spatial,
                self.kernel,
                self.strides,
                self.dilations,
                self.pads_begin,
                self.pads_end,
            )
        )


def _output_size(
    size: Dim, k: int, s: int, d: int, pb: int, pe: int, ceil_mode: bool, node_id: str
) -> Dim:
    # floor((in + pb + pe - d*(k-1) - 1) / s) + 1
    if not isinstance(size, int):
        return DYNAMIC
    span = size + pb + pe - d * (k - 1) - 1
    if span < 0:
        raise ShapeMismatch(
            f"Window of size {d * (k - 1) + 1} does not fit padded input of size {size + pb + pe}",
            size + pb + pe,
            d * (k - 1) + 1,
            node_id=node_id,
        )
    if not ceil_mode:
        return span // s + 1
    out = -(-span // s) + 1
    # The last window may not start inside the end padding
    if (out - 1) * s >= size + pb:
        out -= 1
    return out


def _int_tuple(node: IRNode, name: str, length: int, default: int) -> tuple[int, ...]:
    value = node.attributes.get(name)
    if value is None:
        return (default,) * length
    value = tuple(int(v) for v in value)
    if len(value) != length:
        raise MalformedGraph(
            f"{node.op_type} attribute '{name}' has {len(value)} entries, expected {length}",
            node_id=node.node_id,
        )
    return value


def _same_pads(
    node: IRNode,
    spatial: tuple[Dim, ...],
    kernel: tuple[int, ...],
    strides: tuple[int, ...],
    dilations: tuple[int, ...],
    upper: bool,
) -> tuple[tuple[int, ...], tuple[int, ...]]:
    begins, ends = [], []
    for size, k, s, d in zip(spatial, kernel, strides, dilations):
        if not isinstance(size, int):
            raise UnsupportedOperator(
                f"{node.op_type} auto_pad requires concrete spatial sizes, got {spatial}",
                node.op_type,
                node_id=node.node_id,
            )
        target = -(-size // s)
        total = max((target - 1) * s + d * (k - 1) + 1 - size, 0)
        small, large = total // 2, total - total // 2
        begins.append(small if upper else large)
        ends.append(large if upper else small)
    return tuple(begins), tuple(ends)


def resolve_spatial_attributes(
    node: IRNode,
    spatial: tuple[Dim, ...],
    kernel: tuple[int, ...] | None = None,
) -> SpatialAttributes:
    """Resolve window attributes of a Conv/MaxPool/AveragePool node.

    :param node: Node carrying ONNX window attributes
    :param spatial: Spatial dimensions of the input
    :param kernel: Kernel size, when not given by ``kernel_shape`` (Conv)
    :return: Resolved attributes with explicit per-side pads
    """
    n = len(spatial)
    if "kernel_shape" in node.attributes:
        kernel = _int_tuple(node, "kernel_shape", n, 1)
    if kernel is None or len(kernel) != n:
        raise MalformedGraph(
            f"{node.op_type} kernel rank does not match {n} spatial dimensions",
            node_id=node.node_id,
        )
    strides = _int_tuple(node, "strides", n, 1)
    dilations = _int_tuple(node, "dilations", n, 1)
    if any(v <= 0 for v in kernel + strides + dilations):
        raise MalformedGraph(
            f"{node.op_type} kernel, strides and dilations must be positive",
            node_id=node.node_id,
        )

    auto_pad = node.attributes.get("auto_pad", "NOTSET")
    if auto_pad in ("SAME_UPPER", "SAME_LOWER"):
        begins, ends = _same_pads(
            node, spatial, kernel, strides, dilations, upper=auto_pad == "SAME_UPPER"
        )
    elif auto_pad == "VALID":
        begins, ends = (0,) * n, (0,) * n
    elif auto_pad in ("NOTSET", ""):
        pads = _int_tuple(node, "pads", 2 * n, 0)
        begins, ends = pads[:n], pads[n:]
    else:
        raise MalformedGraph(f"Unknown auto_pad value '{auto_pad}'", node_id=node.node_id)
    if any(p < 0 for p in begins + ends):
        raise MalformedGraph(f"{node.op_type} pads must be non-negative", node_id=node.node_id)

    return SpatialAttributes(
        kernel=tuple(kernel),
        strides=strides,
        dilations=dilations,
        pads_begin=tuple(begins),
        pads_end=tuple(ends),
        ceil_mode=bool(node.attributes.get("ceil_mode", 0)),
    )
