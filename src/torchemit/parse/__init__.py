"""Stage 1: Graph Parser.

This module deserializes ONNX byte streams into raw node records.
"""

__docformat__ = "restructuredtext"
__all__ = [
    "DYNAMIC",
    "MAX_TESTED_OPSET",
    "Dim",
    "ElementType",
    "Initializer",
    "ParsedGraph",
    "RawNode",
    "TensorDescriptor",
    "TensorSignature",
    "load_onnx_graph",
    "parse_onnx_graph",
]

from torchemit.parse.parser import MAX_TESTED_OPSET, load_onnx_graph, parse_onnx_graph
from torchemit.parse.types import (
    DYNAMIC,
    Dim,
    ElementType,
    Initializer,
    ParsedGraph,
    RawNode,
    TensorDescriptor,
    TensorSignature,
)
