"""ONNX node attribute decoding."""

__docformat__ = "restructuredtext"
__all__ = ["decode_attributes"]

from typing import Any

import numpy as np
from onnx import AttributeProto, NodeProto, numpy_helper

from torchemit.errors import UnsupportedOperator


def _decode_float(value: float) -> float:
    # Shortest decimal that round-trips through float32, so 1e-5 stays 1e-5
    return float(str(np.float32(value)))


# Attribute type decoders, keyed by AttributeProto.AttributeType
DECODE_ATTR_MAP: dict[int, Any] = {
    AttributeProto.UNDEFINED: lambda x: None,
    AttributeProto.FLOAT: lambda x: _decode_float(x.f),
    AttributeProto.INT: lambda x: int(x.i),
    AttributeProto.STRING: lambda x: x.s.decode("utf-8"),
    AttributeProto.TENSOR: lambda x: numpy_helper.to_array(x.t),
    AttributeProto.GRAPH: lambda x: x.g,
    AttributeProto.FLOATS: lambda x: tuple(_decode_float(v) for v in x.floats),
    AttributeProto.INTS: lambda x: tuple(int(v) for v in x.ints),
    AttributeProto.STRINGS: lambda x: tuple(s.decode("utf-8") for s in x.strings),
    AttributeProto.TENSORS: lambda x: None,
    AttributeProto.GRAPHS: lambda x: None,
    AttributeProto.SPARSE_TENSOR: lambda x: None,
}


def decode_attributes(node: NodeProto) -> dict[str, Any]:
    """Decode all attributes of a node into Python values.

    Attributes are returned sorted by name so that two parses of the same
    bytes produce identical records.

    :param node: ONNX node
    :return: Mapping from attribute name to decoded value
    """
    attrs: dict[str, Any] = {}
    for attr in sorted(node.attribute, key=lambda a: a.name):
        decode = DECODE_ATTR_MAP.get(attr.type)
        if decode is None:
            raise UnsupportedOperator(
                f"Attribute {attr.name} with type {attr.type} is not supported",
                node.op_type,
                node_id=node.name or None,
            )
        attrs[attr.name] = decode(attr)
    return attrs
