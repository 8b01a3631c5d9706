"""Tests for the error taxonomy and failures reported by the facade.

This module tests:
- The exception hierarchy and message formatting
- Errors raised end to end through TorchEmit
- That failed conversions write no files
"""

from pathlib import Path

import pytest

from tests.test_units.test_torchemit.fixtures.synthetic_models import SyntheticONNXModels
from torchemit import TorchEmit
from torchemit.errors import (
    AmbiguousBinding,
    CompilationError,
    CyclicGraph,
    DanglingReference,
    GraphConstructionError,
    InvalidNodeArity,
    MalformedGraph,
    MissingWeights,
    ShapeMismatch,
    TypeMismatch,
    UnsupportedElementType,
    UnsupportedFeature,
    UnsupportedOperator,
    UnsupportedOpsetVersion,
)


class TestHierarchy:
    """Test the exception classes."""

    @pytest.mark.parametrize(
        "error",
        [
            MalformedGraph,
            InvalidNodeArity,
            GraphConstructionError,
            CyclicGraph,
            DanglingReference,
            AmbiguousBinding,
            UnsupportedFeature,
            UnsupportedOperator,
            UnsupportedOpsetVersion,
            UnsupportedElementType,
            ShapeMismatch,
            TypeMismatch,
            MissingWeights,
        ],
    )
    def test_all_are_compilation_errors(self, error):
        """Test that every error derives from CompilationError and ValueError."""
        assert issubclass(error, CompilationError)
        assert issubclass(error, ValueError)

    def test_unsupported_is_not_implemented(self):
        """Test that limitations are also NotImplementedError."""
        for error in (UnsupportedOperator, UnsupportedOpsetVersion, UnsupportedElementType):
            assert issubclass(error, NotImplementedError)

    def test_arity_is_malformed(self):
        """Test that arity errors are malformed graphs."""
        assert issubclass(InvalidNodeArity, MalformedGraph)
        assert issubclass(TypeMismatch, ShapeMismatch)


class TestMessages:
    """Test message formatting."""

    def test_message_with_node_and_context(self):
        """Test that node id and context follow the message."""
        error = CompilationError("bad", node_id="n1", context={"k": 1})
        assert str(error) == "bad [node: n1] [k: 1]"
        assert error.message == "bad"

    def test_message_without_node(self):
        """Test a graph-level error."""
        error = MalformedGraph("bad graph")
        assert str(error) == "bad graph"
        assert error.node_id is None
        assert error.context == {}

    def test_cyclic_graph(self):
        """Test the cycle message and context."""
        error = CyclicGraph(["a", "b"])
        assert error.node_id == "a"
        assert str(error) == "Graph contains a cycle through 2 node(s) [node: a] [nodes: a, b]"

    def test_ambiguous_binding(self):
        """Test the ambiguous binding context."""
        error = AmbiguousBinding("Y", ["node first", "node second"], node_id="second")
        assert "Tensor 'Y' has more than one producer" in str(error)
        assert "[sources: node first, node second]" in str(error)

    def test_unsupported_opset_version(self):
        """Test the opset version fields."""
        error = UnsupportedOpsetVersion("Add", 6, node_id="Z")
        assert error.op_type == "Add"
        assert error.version == 6
        assert "[opset: 6]" in str(error)

    def test_shape_mismatch(self):
        """Test that both shapes are reported."""
        error = ShapeMismatch("conflict", (2, 3), (2, 4), node_id="n")
        assert error.expected == (2, 3)
        assert error.actual == (2, 4)
        assert str(error) == "conflict [node: n] [expected: (2, 3)] [actual: (2, 4)]"

    def test_missing_weights(self):
        """Test the missing weights fields."""
        error = MissingWeights("Conv", "weight", "W", node_id="Y")
        assert error.role == "weight"
        assert error.tensor_name == "W"
        assert "Conv requires its weight 'W' to be an initializer" in str(error)


class TestFacadeErrors:
    """Test errors raised through TorchEmit."""

    def test_garbage_bytes(self):
        """Test that undecodable input is a malformed graph."""
        with pytest.raises(MalformedGraph, match="Cannot decode ONNX model"):
            TorchEmit().compile(b"\xff\xfe not a model")

    def test_cycle(self):
        """Test that a cyclic graph fails to compile."""
        with pytest.raises(CyclicGraph):
            TorchEmit().compile(SyntheticONNXModels.create_cycle_model())

    def test_dangling(self):
        """Test that a dangling reference fails to compile."""
        with pytest.raises(DanglingReference):
            TorchEmit().compile(SyntheticONNXModels.create_dangling_model())

    def test_unsupported_operator(self):
        """Test that an unknown operator fails with its node id."""
        with pytest.raises(UnsupportedOperator) as exc_info:
            TorchEmit().compile(SyntheticONNXModels.create_unsupported_op_model())
        assert exc_info.value.op_type == "Hardmax"
        assert exc_info.value.node_id == "unsupported"

    def test_missing_weights(self):
        """Test that a Conv with a runtime weight fails."""
        with pytest.raises(MissingWeights):
            TorchEmit().compile(SyntheticONNXModels.create_conv_no_weights_model())

    def test_catch_as_value_error(self):
        """Test that callers can handle every failure as ValueError."""
        with pytest.raises(ValueError):
            TorchEmit().compile(SyntheticONNXModels.create_duplicate_output_model())

    def test_failed_convert_writes_nothing(self, cycle_model):
        """Test that no files are written when compilation fails."""
        with pytest.raises(CyclicGraph):
            TorchEmit().convert(cycle_model)
        assert not Path(cycle_model).with_suffix(".py").exists()
        assert not Path(cycle_model).with_suffix(".pth").exists()

    def test_missing_file(self, tmp_path):
        """Test that a missing model file is reported by the OS."""
        with pytest.raises(FileNotFoundError):
            TorchEmit().convert(tmp_path / "missing.onnx")
