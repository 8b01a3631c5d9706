"""Stage 2: IR Construction.

This module builds the typed DAG from parsed ONNX graphs.
"""

__docformat__ = "restructuredtext"
__all__ = ["EdgeSource", "IRGraph", "IRNode", "TensorEdge", "build_ir_graph"]

from torchemit.build.builder import build_ir_graph
from torchemit.build.types import EdgeSource, IRGraph, IRNode, TensorEdge
