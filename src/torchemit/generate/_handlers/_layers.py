"""LAYER handlers for code generation.

Handlers for nn.Module layers (LAYER operator class).
Generate code like: x1 = self.conv2d1(x0)
"""

__docformat__ = "restructuredtext"
__all__ = ["register_layer_handlers"]

from torchemit.generate._handlers._registry import register_handler
from torchemit.generate._utils import format_argument, operand_code
from torchemit.lower import CanonicalOp, OpKind


def _handle_generic_layer(op: CanonicalOp) -> str:
    """Generate code for a layer call.

    Produces: output = self.layer_name(input). Asymmetric padding that the
    layer cannot express is applied first with ``F.pad``; the layer itself
    was built with zero padding.

    :param op: Canonical layer operation
    :return: Generated code line
    """
    x = operand_code(op.inputs[0])
    output = op.outputs[0].code_name
    pads = op.attributes.get("explicit_pad")
    if pads:
        value = format_argument(op.attributes["pad_value"])
        x = f"F.pad({x}, {format_argument(list(pads))}, value={value})"
    return f"{output} = self.{op.name}({x})"


def register_layer_handlers() -> None:
    """Register all LAYER handlers.

    Every layer uses the pattern: output = self.layer_name(input).
    BatchNorm and global pooling pick their 1d/2d class at construction,
    so no input reshaping is needed around the call.
    """
    layer_kinds = [
        OpKind.CONV1D,
        OpKind.CONV2D,
        OpKind.MAXPOOL2D,
        OpKind.AVGPOOL2D,
        OpKind.GLOBAL_AVGPOOL,
        OpKind.BATCHNORM,
        OpKind.LINEAR,
    ]
    for kind in layer_kinds:
        register_handler(kind, _handle_generic_layer)
