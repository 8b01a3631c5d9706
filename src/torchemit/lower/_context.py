"""Shared state of one lowering pass.

Assigns code names (``x*`` for runtime values, ``c*`` for constant
buffers), layer instance names and binds learned parameters.
"""

__docformat__ = "restructuredtext"
__all__ = ["MAX_INLINE_CONSTANT_NUMEL", "LoweringContext"]

import numpy as np

from torchemit.build.types import EdgeSource, IRGraph, IRNode
from torchemit.errors import MissingWeights
from torchemit.infer.types import ShapeTable
from torchemit.lower.types import (
    ConstantInfo,
    OpKind,
    Operand,
    ParameterInfo,
    ScalarInfo,
    VariableInfo,
    array_digest,
)
from torchemit.parse.types import TensorDescriptor

# Code name prefixes
VAR_PREFIX = "x"
BUFFER_PREFIX = "c"

# Constants up to this many elements are embedded in the emitted source
MAX_INLINE_CONSTANT_NUMEL = 64


class LoweringContext:
    """Counters and name tables for one graph.

    :param graph: Resolved IR graph
    :param shapes: Inferred descriptors
    :param max_inline_numel: Inline threshold for constant tensors
    """

    def __init__(
        self,
        graph: IRGraph,
        shapes: ShapeTable,
        max_inline_numel: int = MAX_INLINE_CONSTANT_NUMEL,
    ):
        self.graph = graph
        self.shapes = shapes
        self.max_inline_numel = max_inline_numel
        self.variables: dict[int, VariableInfo] = {}
        self.constants: dict[int, ConstantInfo] = {}
        self.parameters: dict[str, ParameterInfo] = {}
        self._var_counter = 0
        self._layer_counters: dict[str, int] = {}

    def descriptor(self, edge_id: int) -> TensorDescriptor:
        return self.shapes[edge_id]

    def new_variable(self, edge_id: int, python_scalar: bool = False) -> VariableInfo:
        """Assign the next ``x<n>`` name to an edge."""
        variable = VariableInfo(
            onnx_name=self.graph.edges[edge_id].name,
            code_name=f"{VAR_PREFIX}{self._var_counter}",
            descriptor=self.shapes[edge_id],
            python_scalar=python_scalar,
        )
        self._var_counter += 1
        self.variables[edge_id] = variable
        return variable

    def new_outputs(
        self, node: IRNode, python_scalar: bool = False
    ) -> tuple[VariableInfo | None, ...]:
        return tuple(
            None if edge_id is None else self.new_variable(edge_id, python_scalar)
            for edge_id in node.outputs
        )

    def instance_name(self, kind: OpKind) -> str:
        base = kind.value.lower()
        self._layer_counters[base] = self._layer_counters.get(base, 0) + 1
        return f"{base}{self._layer_counters[base]}"

    def is_constant(self, edge_id: int | None) -> bool:
        return edge_id is not None and self.graph.edges[edge_id].source is EdgeSource.INITIALIZER

    def constant(self, edge_id: int) -> ConstantInfo:
        """Constant operand for an initializer edge, shared across consumers."""
        if edge_id not in self.constants:
            edge = self.graph.edges[edge_id]
            data = self.graph.initializers[edge.name].data
            self.constants[edge_id] = ConstantInfo(
                onnx_name=edge.name,
                code_name=f"{BUFFER_PREFIX}{len(self.constants)}",
                descriptor=edge.descriptor,
                data=data,
                digest=array_digest(data),
                inline=data.size <= self.max_inline_numel,
            )
        return self.constants[edge_id]

    def operand(self, edge_id: int, fold_scalar: bool = False) -> Operand:
        """Operand for an input edge.

        :param edge_id: Input edge
        :param fold_scalar: Fold rank-0 constants into :class:`ScalarInfo`
        :return: Typed operand
        """
        if self.is_constant(edge_id):
            edge = self.graph.edges[edge_id]
            data = self.graph.initializers[edge.name].data
            if fold_scalar and data.ndim == 0:
                return ScalarInfo(edge.name, data.item(), edge.descriptor.dtype)
            return self.constant(edge_id)
        return self.variables[edge_id]

    def require_constant(self, node: IRNode, position: int, role: str) -> np.ndarray:
        """Initializer data feeding an input, or MissingWeights."""
        edge_id = node.inputs[position] if position < len(node.inputs) else None
        if not self.is_constant(edge_id):
            name = "" if edge_id is None else self.graph.edges[edge_id].name
            raise MissingWeights(node.op_type, role, name, node_id=node.node_id)
        return self.graph.constant_value(edge_id)

    def parameter(
        self,
        node: IRNode,
        position: int,
        role: str,
        data: np.ndarray | None = None,
    ) -> ParameterInfo:
        """Bind a learned parameter to the initializer feeding an input.

        :param node: Node owning the parameter
        :param position: Input position of the parameter
        :param role: Parameter name on the layer
        :param data: Rewritten values (e.g. transposed); defaults to the
            initializer data
        :return: Bound parameter
        """
        source = self.require_constant(node, position, role)
        edge = self.graph.edges[node.inputs[position]]
        if data is None:
            data = source
        else:
            data = np.array(data, dtype=edge.descriptor.dtype.numpy_dtype)
            data.setflags(write=False)
        return ParameterInfo(
            onnx_name=edge.name,
            role=role,
            descriptor=TensorDescriptor(edge.descriptor.dtype, tuple(int(d) for d in data.shape)),
            data=data,
            digest=array_digest(data),
        )

    def register_parameters(self, instance: str, parameters: list[ParameterInfo]) -> None:
        for param in parameters:
            self.parameters[f"{instance}.{param.role}"] = param
