"""Stage 1: Graph Parser.

Deserializes an ONNX byte stream into raw node records, an initializer
table and the declared input/output signature. Only structural
well-formedness is checked here.
"""

__docformat__ = "restructuredtext"
__all__ = ["MAX_TESTED_OPSET", "load_onnx_graph", "parse_onnx_graph"]

import warnings
from pathlib import Path

import numpy as np
import onnx
from google.protobuf.message import DecodeError
from onnx import ModelProto, NodeProto, TensorProto, ValueInfoProto, numpy_helper

from torchemit.errors import AmbiguousBinding, MalformedGraph, UnsupportedElementType
from torchemit.parse._attributes import decode_attributes
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

MAX_TESTED_OPSET = 21
# Before IR version 4 initializers were listed among the graph inputs
_IR_VERSION_SEPARATE_INITIALIZERS = 4
_DEFAULT_DOMAINS = ("", "ai.onnx")


def _decode_model(data: bytes) -> ModelProto:
    """Decode protobuf bytes into a ModelProto.

    :param data: Serialized model
    :return: Decoded model
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise MalformedGraph(f"Expected a byte stream, got {type(data).__name__}")
    model = ModelProto()
    try:
        model.ParseFromString(bytes(data))
    except DecodeError as error:
        raise MalformedGraph(f"Cannot decode ONNX model: {error}") from error
    if not model.HasField("graph"):
        raise MalformedGraph("ONNX model has no graph (empty or truncated stream)")
    return model


def _check_model(model: ModelProto) -> None:
    """Check ONNX model validity using onnx.checker.

    :param model: Input ONNX model
    """
    try:
        onnx.checker.check_model(model)
    except (onnx.checker.ValidationError, ValueError, TypeError) as error:
        raise MalformedGraph(f"Invalid ONNX model: {error}") from error


def _extract_opset_imports(model: ModelProto) -> dict[str, int]:
    """Extract opset version per domain, normalizing "ai.onnx" to "".

    :param model: ONNX model
    :return: Mapping from domain to opset version
    """
    opsets: dict[str, int] = {}
    for opset in model.opset_import:
        domain = "" if opset.domain in _DEFAULT_DOMAINS else opset.domain
        if domain in opsets and opsets[domain] != opset.version:
            raise MalformedGraph(f"Domain '{domain}' is imported with two opset versions")
        opsets[domain] = int(opset.version)
    if "" not in opsets:
        raise MalformedGraph("Model has no primary opset (domain='' or 'ai.onnx')")
    if opsets[""] > MAX_TESTED_OPSET:
        warnings.warn(
            f"Model opset {opsets['']} is newer than the tested maximum {MAX_TESTED_OPSET}",
            UserWarning,
            stacklevel=3,
        )
    return opsets


def _to_element_type(onnx_type: int, tensor_name: str) -> ElementType:
    element_type = ElementType.from_onnx(onnx_type)
    if element_type is None:
        raise UnsupportedElementType(tensor_name, onnx_type)
    return element_type


def _make_initializer(name: str, array: np.ndarray, onnx_type: int) -> Initializer:
    """Create an initializer owning a read-only copy of the array."""
    element_type = _to_element_type(onnx_type, name)
    data = np.array(array, dtype=element_type.numpy_dtype, copy=True)
    data.setflags(write=False)
    descriptor = TensorDescriptor(element_type, tuple(int(d) for d in data.shape))
    return Initializer(name=name, descriptor=descriptor, data=data)


def _parse_initializers(model: ModelProto) -> dict[str, Initializer]:
    """Get all initializer tensors.

    :param model: ONNX model
    :return: Initializers by name, in declaration order
    """
    initializers: dict[str, Initializer] = {}
    for tensor in model.graph.initializer:
        if not tensor.name:
            raise MalformedGraph("Initializer without a name")
        if tensor.name in initializers:
            raise MalformedGraph(f"Initializer '{tensor.name}' is declared twice")
        if tensor.data_location == TensorProto.EXTERNAL:
            raise MalformedGraph(f"Initializer '{tensor.name}' uses external data")
        element_type = _to_element_type(tensor.data_type, tensor.name)
        array = numpy_helper.to_array(tensor)
        initializers[tensor.name] = _make_initializer(tensor.name, array, element_type.value)
    return initializers


def _shape_from_value_info(value_info: ValueInfoProto) -> tuple[tuple[Dim, ...], bool]:
    """Extract a declared shape, keeping symbolic dimensions as names.

    :param value_info: Declared input or output
    :return: Tuple of (shape, has_shape)
    """
    tensor_type = value_info.type.tensor_type
    if not tensor_type.HasField("shape"):
        return (), False
    dims: list[Dim] = []
    for dim in tensor_type.shape.dim:
        if dim.HasField("dim_value"):
            if dim.dim_value < 0:
                raise MalformedGraph(
                    f"Tensor '{value_info.name}' declares negative dimension {dim.dim_value}"
                )
            dims.append(int(dim.dim_value))
        elif dim.dim_param:
            dims.append(dim.dim_param)
        else:
            dims.append(DYNAMIC)
    return tuple(dims), True


def _parse_signature(value_info: ValueInfoProto, is_input: bool) -> TensorSignature:
    """Convert a declared input or output into a TensorSignature.

    :param value_info: ONNX value info
    :param is_input: Graph inputs require element type and shape
    :return: Signature record
    """
    if not value_info.name:
        raise MalformedGraph("Graph input/output without a name")
    if not value_info.type.HasField("tensor_type"):
        raise MalformedGraph(f"Graph input/output '{value_info.name}' is not a tensor")
    elem_type = value_info.type.tensor_type.elem_type
    shape, has_shape = _shape_from_value_info(value_info)
    if is_input:
        if elem_type == TensorProto.UNDEFINED:
            raise MalformedGraph(f"Graph input '{value_info.name}' has no element type")
        if not has_shape:
            raise MalformedGraph(f"Graph input '{value_info.name}' has no shape")
    dtype = (
        None if elem_type == TensorProto.UNDEFINED else _to_element_type(elem_type, value_info.name)
    )
    return TensorSignature(value_info.name, TensorDescriptor(dtype, shape), has_shape)


def _parse_inputs(
    model: ModelProto, initializers: dict[str, Initializer]
) -> tuple[TensorSignature, ...]:
    """Get declared runtime inputs.

    Inputs that repeat an initializer name are dropped for models using the
    pre-IR-4 convention and rejected otherwise.

    :param model: ONNX model
    :param initializers: Parsed initializers
    :return: Declared runtime inputs in order
    """
    legacy = model.ir_version < _IR_VERSION_SEPARATE_INITIALIZERS
    seen: set[str] = set()
    inputs = []
    for value_info in model.graph.input:
        if value_info.name in seen:
            raise MalformedGraph(f"Graph input '{value_info.name}' is declared twice")
        seen.add(value_info.name)
        if value_info.name in initializers:
            if legacy:
                continue
            raise MalformedGraph(
                f"Tensor '{value_info.name}' is declared both as initializer and graph input"
            )
        inputs.append(_parse_signature(value_info, is_input=True))
    return tuple(inputs)


def _parse_outputs(model: ModelProto) -> tuple[TensorSignature, ...]:
    seen: set[str] = set()
    outputs = []
    for value_info in model.graph.output:
        if value_info.name in seen:
            raise MalformedGraph(f"Graph output '{value_info.name}' is declared twice")
        seen.add(value_info.name)
        outputs.append(_parse_signature(value_info, is_input=False))
    return tuple(outputs)


def _make_node_id(node: NodeProto, index: int, used: set[str]) -> str:
    """Generate a unique node id.

    Uses the ONNX node name, falling back to the first output name, then to
    the operator type and position.
    """
    base = node.name or (node.output[0] if node.output and node.output[0] else "")
    if not base:
        base = f"{node.op_type.lower()}_{index}"
    node_id = base
    if node_id in used:
        node_id = f"{base}_{index}"
    used.add(node_id)
    return node_id


def _fold_constant(node: RawNode) -> Initializer:
    """Convert a Constant node into an initializer.

    :param node: Raw Constant node
    :return: Initializer named after the node output
    """
    if len(node.outputs) != 1 or not node.outputs[0]:
        raise MalformedGraph("Constant must have exactly one output", node_id=node.node_id)
    name = node.outputs[0]
    attrs = node.attributes
    if "value" in attrs:
        array = np.asarray(attrs["value"])
        element_type = ElementType.from_onnx(
            onnx.helper.np_dtype_to_tensor_dtype(array.dtype)
        )
        if element_type is None:
            raise UnsupportedElementType(
                name, onnx.helper.np_dtype_to_tensor_dtype(array.dtype), node.node_id
            )
        return _make_initializer(name, array, element_type.value)
    if "value_float" in attrs:
        return _make_initializer(name, np.array(attrs["value_float"]), TensorProto.FLOAT)
    if "value_floats" in attrs:
        return _make_initializer(name, np.array(attrs["value_floats"]), TensorProto.FLOAT)
    if "value_int" in attrs:
        return _make_initializer(name, np.array(attrs["value_int"]), TensorProto.INT64)
    if "value_ints" in attrs:
        return _make_initializer(name, np.array(attrs["value_ints"]), TensorProto.INT64)
    raise MalformedGraph(
        f"Constant carries no supported value attribute (got {sorted(attrs)})",
        node_id=node.node_id,
    )


def _parse_nodes(model: ModelProto, opsets: dict[str, int]) -> list[RawNode]:
    """Convert ONNX nodes into raw node records.

    :param model: ONNX model
    :param opsets: Opset version per domain
    :return: Raw nodes in declaration order
    """
    used_ids: set[str] = set()
    nodes = []
    for index, node in enumerate(model.graph.node):
        if not node.op_type:
            raise MalformedGraph(f"Node {index} has no operator type")
        domain = "" if node.domain in _DEFAULT_DOMAINS else node.domain
        node_id = _make_node_id(node, index, used_ids)
        if domain not in opsets:
            raise MalformedGraph(
                f"{node.op_type} uses domain '{domain}' which the model does not import",
                node_id=node_id,
            )
        nodes.append(
            RawNode(
                node_id=node_id,
                op_type=node.op_type,
                domain=domain,
                opset_version=opsets[domain],
                attributes=decode_attributes(node),
                inputs=tuple(node.input),
                outputs=tuple(node.output),
            )
        )
    return nodes


def _fold_constant_nodes(
    nodes: list[RawNode], initializers: dict[str, Initializer], input_names: set[str]
) -> list[RawNode]:
    """Move Constant nodes into the initializer table.

    :param nodes: Raw nodes
    :param initializers: Initializer table, extended in place
    :param input_names: Declared graph input names
    :return: Remaining nodes
    """
    remaining = []
    for node in nodes:
        if node.op_type != "Constant" or node.domain != "":
            remaining.append(node)
            continue
        initializer = _fold_constant(node)
        if initializer.name in initializers or initializer.name in input_names:
            raise AmbiguousBinding(
                initializer.name, ["Constant node", "initializer or graph input"], node.node_id
            )
        initializers[initializer.name] = initializer
    return remaining


def parse_onnx_graph(
    data: bytes,
    check_model: bool = False,
    fold_constants: bool = True,
) -> ParsedGraph:
    """Parse a serialized ONNX model.

    Parsing steps:
    1. Decode the protobuf byte stream
    2. Validate with ONNX checker (if enabled)
    3. Collect opset imports, initializers and the declared signature
    4. Decode every node into a RawNode
    5. Convert Constant nodes to initializers (if enabled)

    :param data: Serialized ONNX model
    :param check_model: Whether to validate the model with onnx.checker
    :param fold_constants: Whether to convert Constant nodes to initializers
    :return: Parsed graph
    """
    model = _decode_model(data)

    if check_model:
        _check_model(model)

    opsets = _extract_opset_imports(model)
    initializers = _parse_initializers(model)
    inputs = _parse_inputs(model, initializers)
    outputs = _parse_outputs(model)
    nodes = _parse_nodes(model, opsets)

    if fold_constants:
        nodes = _fold_constant_nodes(nodes, initializers, {sig.name for sig in inputs})

    return ParsedGraph(
        name=model.graph.name,
        nodes=tuple(nodes),
        initializers=initializers,
        inputs=inputs,
        outputs=outputs,
        opset_imports=opsets,
        ir_version=int(model.ir_version),
    )


def load_onnx_graph(onnx_path: str | Path, **kwargs) -> ParsedGraph:
    """Read an ONNX file and parse it.

    :param onnx_path: Path to ONNX file
    :param kwargs: Forwarded to :func:`parse_onnx_graph`
    :return: Parsed graph
    """
    return parse_onnx_graph(Path(onnx_path).read_bytes(), **kwargs)
