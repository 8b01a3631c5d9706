"""End-to-end tests for the TorchEmit facade.

This module tests:
- File conversion and the written artifacts
- Verbose progress output
- Numerical equivalence with ONNX Runtime across the supported operators
- Python scalar and integer semantics of the generated code
"""

from pathlib import Path

import numpy as np
import pytest
import torch
from onnx import TensorProto

from tests.test_units.test_torchemit.fixtures.synthetic_models import SyntheticONNXModels
from torchemit import TorchEmit
from torchemit.generate import load_generated_module

RTOL = 1e-4
ATOL = 1e-5


def _compare_with_onnxruntime(model, inputs, onnx_runner, torch_runner, numerical_validator, name):
    names = [value.name for value in model.graph.input]
    expected = onnx_runner(model, dict(zip(names, inputs)))
    actual = torch_runner(model, inputs)
    assert len(actual) == len(expected)
    for onnx_output, torch_output in zip(expected, actual):
        numerical_validator(onnx_output, torch_output, rtol=RTOL, atol=ATOL, name=name)


class TestTorchEmitFacade:
    """Test the TorchEmit class."""

    def test_defaults(self):
        """Test the default configuration."""
        converter = TorchEmit()
        assert converter.verbose is False
        assert converter.check_model is False
        assert converter.max_inline_numel == 64

    def test_compile_accepts_bytes_and_proto(self):
        """Test that compile takes a ModelProto or its serialization."""
        model = SyntheticONNXModels.create_linear_model()
        from_proto = TorchEmit().compile(model)
        from_bytes = TorchEmit().compile(model.SerializeToString())
        assert from_proto.code == from_bytes.code
        assert from_proto.class_name == "Linearmodel"

    def test_compile_definition(self):
        """Test that compile_definition stops before emission."""
        definition = TorchEmit().compile_definition(SyntheticONNXModels.create_mlp_model())
        assert [op.name for op in definition.ops] == ["linear1", "R", "linear2"]

    def test_max_inline_numel_forwarded(self):
        """Test that the inline threshold reaches the lowering pass."""
        model = SyntheticONNXModels.create_large_constant_model()
        assert TorchEmit().compile(model).requires_weights
        assert not TorchEmit(max_inline_numel=100).compile(model).requires_weights

    def test_check_model_accepts_valid_model(self):
        """Test compilation with the ONNX checker enabled."""
        emitted = TorchEmit(check_model=True).compile(SyntheticONNXModels.create_mlp_model())
        assert emitted.requires_weights


class TestConvert:
    """Test converting ONNX files."""

    def test_convert_writes_next_to_model(self, linear_model):
        """Test the default output paths."""
        emitted = TorchEmit().convert(linear_model)
        py_path = linear_model.replace(".onnx", ".py")
        pth_path = linear_model.replace(".onnx", ".pth")
        with open(py_path) as f:
            assert f.read() == emitted.code
        assert emitted.class_name == "Linear"
        assert "Source: linear.onnx" in emitted.code
        state_dict = torch.load(pth_path, weights_only=True)
        assert set(state_dict) == {"linear1.weight", "linear1.bias"}

    def test_convert_explicit_paths(self, mlp_model, tmp_path):
        """Test custom output paths and class name."""
        py_path = tmp_path / "out" / "net.py"
        py_path.parent.mkdir()
        pth_path = tmp_path / "weights.pth"
        TorchEmit().convert(mlp_model, py_path, pth_path, class_name="Net")
        assert pth_path.exists()
        module = load_generated_module(py_path)
        model = module.default(pth_path)
        assert isinstance(model, module.Net)

    def test_convert_weightless(self, identity_model):
        """Test that a model without weights writes no state dict."""
        emitted = TorchEmit().convert(identity_model)
        assert not emitted.requires_weights
        assert "def default() -> Identity:" in emitted.code
        assert Path(identity_model).with_suffix(".py").exists()
        assert not Path(identity_model).with_suffix(".pth").exists()

    def test_converted_module_matches_onnxruntime(self, cnn_model, onnx_runner, random_input_generator):
        """Test the saved module against ONNX Runtime."""
        TorchEmit().convert(cnn_model)
        module = load_generated_module(cnn_model.replace(".onnx", ".py"))
        model = module.default()
        x = random_input_generator((2, 1, 8, 8))
        expected = onnx_runner(cnn_model, {"X": x})[0]
        with torch.no_grad():
            actual = model(torch.from_numpy(x))
        np.testing.assert_allclose(actual.numpy(), expected, rtol=RTOL, atol=ATOL)

    def test_large_constant_saved(self, large_constant_model):
        """Test that a bundled constant is written to the state dict."""
        TorchEmit().convert(large_constant_model)
        state_dict = torch.load(large_constant_model.replace(".onnx", ".pth"), weights_only=True)
        assert list(state_dict) == ["c0"]
        assert state_dict["c0"].shape == (10, 10)


class TestVerbose:
    """Test progress output."""

    def test_silent_by_default(self, linear_model, capsys):
        """Test that nothing is printed unless verbose."""
        TorchEmit().convert(linear_model)
        assert capsys.readouterr().out == ""

    def test_verbose_convert(self, linear_model, capsys):
        """Test the stage and file lines."""
        TorchEmit(verbose=True).convert(linear_model)
        out = capsys.readouterr().out
        assert "Parsed graph 'LinearModel'" in out
        assert "Resolved opsets" in out
        assert "Generated: " in out
        assert "Saved state dict: " in out

    def test_verbose_weightless(self, identity_model, capsys):
        """Test that no state dict line is printed without weights."""
        TorchEmit(verbose=True).convert(identity_model)
        out = capsys.readouterr().out
        assert "Generated: " in out
        assert "Saved state dict" not in out


class TestLayerEquivalence:
    """Compare layers against ONNX Runtime."""

    @pytest.mark.parametrize(
        ("factory", "shape"),
        [
            (SyntheticONNXModels.create_mlp_model, (2, 4)),
            (SyntheticONNXModels.create_conv_bn_relu_pool_model, (2, 1, 8, 8)),
            (SyntheticONNXModels.create_matmul_constant_model, (2, 3)),
            (SyntheticONNXModels.create_global_avgpool_model, (2, 3, 4, 4)),
            (SyntheticONNXModels.create_batchnorm_model, (2, 3, 4, 4)),
            (SyntheticONNXModels.create_conv1d_model, (1, 2, 8)),
        ],
    )
    def test_models(
        self, factory, shape, random_input_generator, onnx_runner, torch_runner, numerical_validator
    ):
        """Test a model with default parameters."""
        x = random_input_generator(shape)
        _compare_with_onnxruntime(
            factory(), [x], onnx_runner, torch_runner, numerical_validator, factory.__name__
        )

    @pytest.mark.parametrize("shape", [(2, 3, 8), (1, 2, 3, 4, 5)])
    def test_global_avgpool_ranks(
        self, shape, random_input_generator, onnx_runner, torch_runner, numerical_validator
    ):
        """Test GlobalAveragePool over one and three spatial dimensions."""
        model = SyntheticONNXModels.create_global_avgpool_model(input_shape=shape)
        x = random_input_generator(shape)
        _compare_with_onnxruntime(
            model, [x], onnx_runner, torch_runner, numerical_validator, "global_avgpool"
        )

    @pytest.mark.parametrize(
        ("trans_b", "alpha", "beta"),
        [(1, 1.0, 1.0), (0, 1.0, 1.0), (1, 0.5, 2.0)],
    )
    def test_gemm_variants(
        self, trans_b, alpha, beta, random_input_generator, onnx_runner, torch_runner, numerical_validator
    ):
        """Test Gemm with transposed weights and scaling factors."""
        model = SyntheticONNXModels.create_linear_model(trans_b=trans_b, alpha=alpha, beta=beta)
        x = random_input_generator((1, 3))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "gemm")

    @pytest.mark.parametrize(
        ("pads", "strides", "bias"),
        [
            ((1, 1, 1, 1), (1, 1), True),
            ((0, 0, 1, 1), (1, 1), True),
            ((1, 0, 1, 0), (2, 2), False),
            ((0, 0, 0, 0), (2, 1), True),
        ],
    )
    def test_conv(
        self, pads, strides, bias, random_input_generator, onnx_runner, torch_runner, numerical_validator
    ):
        """Test Conv with symmetric and asymmetric padding."""
        model = SyntheticONNXModels.create_conv_model(pads=pads, strides=strides, bias=bias)
        x = random_input_generator((1, 2, 6, 6))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "conv")

    @pytest.mark.parametrize(
        ("shape", "kernel", "strides", "pads", "ceil_mode"),
        [
            ((1, 1, 4, 4), 2, (2, 2), None, 0),
            ((1, 1, 5, 5), 2, (2, 2), None, 1),
            ((1, 1, 4, 4), 3, (1, 1), (1, 1, 1, 1), 0),
            ((1, 1, 5, 5), 2, (2, 2), (0, 0, 1, 1), 0),
        ],
    )
    def test_maxpool(
        self,
        shape,
        kernel,
        strides,
        pads,
        ceil_mode,
        random_input_generator,
        onnx_runner,
        torch_runner,
        numerical_validator,
    ):
        """Test MaxPool with padding and ceil mode."""
        model = SyntheticONNXModels.create_maxpool_model(
            input_shape=shape, kernel=kernel, strides=strides, pads=pads, ceil_mode=ceil_mode
        )
        x = random_input_generator(shape)
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "maxpool")

    @pytest.mark.parametrize(
        ("shape", "kernel", "strides", "pads", "count_include_pad"),
        [
            ((1, 2, 4, 4), 2, (2, 2), None, 0),
            ((1, 2, 4, 4), 3, (1, 1), (1, 1, 1, 1), 0),
            ((1, 2, 4, 4), 3, (1, 1), (1, 1, 1, 1), 1),
            ((1, 2, 5, 5), 2, (2, 2), (0, 0, 1, 1), 1),
        ],
    )
    def test_avgpool(
        self,
        shape,
        kernel,
        strides,
        pads,
        count_include_pad,
        random_input_generator,
        onnx_runner,
        torch_runner,
        numerical_validator,
    ):
        """Test AveragePool with and without counted padding."""
        model = SyntheticONNXModels.create_avgpool_model(
            input_shape=shape,
            kernel=kernel,
            strides=strides,
            pads=pads,
            count_include_pad=count_include_pad,
        )
        x = random_input_generator(shape)
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "avgpool")


class TestOperationEquivalence:
    """Compare functional operations against ONNX Runtime."""

    @pytest.mark.parametrize("op_type", ["Relu", "Sigmoid", "Tanh", "Erf", "Identity"])
    def test_unary(self, op_type, random_input_generator, onnx_runner, torch_runner, numerical_validator):
        """Test elementwise unary operators."""
        model = SyntheticONNXModels.create_unary_model(op_type)
        x = random_input_generator((2, 3, 4))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, op_type)

    @pytest.mark.parametrize("op_type", ["Sqrt", "Reciprocal"])
    def test_positive_unary(
        self, op_type, random_input_generator, onnx_runner, torch_runner, numerical_validator
    ):
        """Test unary operators on positive inputs."""
        model = SyntheticONNXModels.create_unary_model(op_type)
        x = np.abs(random_input_generator((2, 3, 4))) + 0.5
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, op_type)

    @pytest.mark.parametrize(
        ("op_type", "shape_a", "shape_b", "out_shape"),
        [
            ("Add", (2, 3), (2, 3), (2, 3)),
            ("Sub", (2, 3), (3,), (2, 3)),
            ("Mul", (2, 1, 4), (3, 1), (2, 3, 4)),
            ("Div", (2, 3), (1, 3), (2, 3)),
        ],
    )
    def test_binary(
        self,
        op_type,
        shape_a,
        shape_b,
        out_shape,
        random_input_generator,
        onnx_runner,
        torch_runner,
        numerical_validator,
    ):
        """Test broadcasting binary operators."""
        model = SyntheticONNXModels.create_binary_model(op_type, shape_a, shape_b, out_shape)
        a = random_input_generator(shape_a, seed=1)
        b = random_input_generator(shape_b, seed=2)
        if op_type == "Div":
            b = np.abs(b) + 0.5
        _compare_with_onnxruntime(model, [a, b], onnx_runner, torch_runner, numerical_validator, op_type)

    def test_equal(self, onnx_runner, torch_runner):
        """Test that Equal produces a boolean tensor."""
        model = SyntheticONNXModels.create_binary_model("Equal", (4,), (4,), (4,))
        a = np.array([1.0, 2.0, 3.0, 4.0], dtype=np.float32)
        b = np.array([1.0, 0.0, 3.0, 0.0], dtype=np.float32)
        expected = onnx_runner(model, {"A": a, "B": b})[0]
        (actual,) = torch_runner(model, [a, b])
        assert actual.dtype == torch.bool
        np.testing.assert_array_equal(actual.numpy(), expected)

    def test_matmul_runtime_operands(self, random_input_generator, onnx_runner, torch_runner, numerical_validator):
        """Test MatMul between two runtime inputs."""
        model = SyntheticONNXModels.create_binary_model("Add", (2, 3), (2, 3), (2, 3))
        model.graph.node[0].op_type = "MatMul"
        model.graph.input[1].type.tensor_type.shape.dim[0].dim_value = 3
        model.graph.input[1].type.tensor_type.shape.dim[1].dim_value = 4
        model.graph.output[0].type.tensor_type.shape.dim[1].dim_value = 4
        a = random_input_generator((2, 3), seed=1)
        b = random_input_generator((3, 4), seed=2)
        _compare_with_onnxruntime(model, [a, b], onnx_runner, torch_runner, numerical_validator, "matmul")

    @pytest.mark.parametrize(
        ("opset", "axis", "log"),
        [(11, None, False), (13, None, False), (11, 2, False), (13, 1, False), (13, None, True), (11, None, True)],
    )
    def test_softmax(
        self, opset, axis, log, random_input_generator, onnx_runner, torch_runner, numerical_validator
    ):
        """Test Softmax and LogSoftmax across opset semantics."""
        model = SyntheticONNXModels.create_softmax_model(opset=opset, axis=axis, log=log)
        x = random_input_generator((2, 3, 4))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "softmax")

    @pytest.mark.parametrize(
        ("target", "output_shape"),
        [((0, -1), (2, 12)), ((4, 6), (4, 6)), ((-1,), (24,)), ((2, 3, 2, 2), (2, 3, 2, 2))],
    )
    def test_reshape(
        self, target, output_shape, random_input_generator, onnx_runner, torch_runner, numerical_validator
    ):
        """Test Reshape with copied and inferred dimensions."""
        model = SyntheticONNXModels.create_reshape_model(target=target, output_shape=output_shape)
        x = random_input_generator((2, 3, 4))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "reshape")

    @pytest.mark.parametrize("axis", [0, 1, 2, 3, -1])
    def test_flatten(self, axis, random_input_generator, onnx_runner, torch_runner, numerical_validator):
        """Test Flatten at every split point."""
        model = SyntheticONNXModels.create_flatten_model(axis=axis)
        x = random_input_generator((2, 3, 4))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "flatten")

    @pytest.mark.parametrize("perm", [(0, 2, 1), (2, 0, 1), None])
    def test_transpose(self, perm, random_input_generator, onnx_runner, torch_runner, numerical_validator):
        """Test Transpose with explicit and default permutations."""
        model = SyntheticONNXModels.create_transpose_model(perm=perm)
        x = random_input_generator((2, 3, 4))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "transpose")

    def test_concat_constant(self, random_input_generator, onnx_runner, torch_runner, numerical_validator):
        """Test Concat with an inline constant."""
        model = SyntheticONNXModels.create_concat_model()
        x = random_input_generator((2, 3))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "concat")

    def test_concat_inputs(self, random_input_generator, onnx_runner, torch_runner, numerical_validator):
        """Test Concat of runtime inputs along a negative axis."""
        model = SyntheticONNXModels.create_concat_inputs_model(axis=-1)
        a = random_input_generator((2, 3), seed=1)
        b = random_input_generator((2, 4), seed=2)
        _compare_with_onnxruntime(model, [a, b], onnx_runner, torch_runner, numerical_validator, "concat")

    @pytest.mark.parametrize(
        ("indices", "axis"),
        [(1, 0), (2, 1), ([0, 2], 0), ([[0], [3]], 1), (-1, 0)],
    )
    def test_gather(self, indices, axis, random_input_generator, onnx_runner, torch_runner, numerical_validator):
        """Test Gather with scalar and tensor indices."""
        model = SyntheticONNXModels.create_gather_model(indices, axis=axis)
        x = random_input_generator((3, 4))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "gather")

    def test_clip_variants_agree(self, random_input_generator, onnx_runner, torch_runner, numerical_validator):
        """Test that attribute and input bounds give the same result."""
        x = random_input_generator((2, 5))
        attribute_model = SyntheticONNXModels.create_clip_attribute_model()
        input_model = SyntheticONNXModels.create_clip_input_model()
        _compare_with_onnxruntime(
            attribute_model, [x], onnx_runner, torch_runner, numerical_validator, "clip"
        )
        _compare_with_onnxruntime(input_model, [x], onnx_runner, torch_runner, numerical_validator, "clip")
        torch.testing.assert_close(torch_runner(attribute_model, [x]), torch_runner(input_model, [x]))

    @pytest.mark.parametrize(("min_value", "max_value"), [(None, 0.5), (-0.5, None), (None, None)])
    def test_clip_one_sided(
        self, min_value, max_value, random_input_generator, onnx_runner, torch_runner, numerical_validator
    ):
        """Test Clip with missing bounds."""
        model = SyntheticONNXModels.create_clip_input_model(min_value=min_value, max_value=max_value)
        x = random_input_generator((2, 5))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "clip")

    def test_dropout_mask(self, random_input_generator, torch_runner):
        """Test that Dropout passes data through with an all-true mask."""
        x = random_input_generator((2, 3))
        output, mask = torch_runner(SyntheticONNXModels.create_dropout_model(), [x])
        torch.testing.assert_close(output, torch.from_numpy(x))
        assert mask.dtype == torch.bool
        assert bool(mask.all())

    def test_large_constant(self, random_input_generator, onnx_runner, torch_runner, numerical_validator):
        """Test a constant loaded from the state dict."""
        model = SyntheticONNXModels.create_large_constant_model()
        x = random_input_generator((10, 10))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "constant")

    def test_constant_node(self, random_input_generator, onnx_runner, torch_runner, numerical_validator):
        """Test a folded Constant node."""
        model = SyntheticONNXModels.create_constant_node_model()
        x = random_input_generator((2, 3))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "constant")

    def test_scalar_constant(self, random_input_generator, onnx_runner, torch_runner, numerical_validator):
        """Test a rank-0 initializer used as a Python literal."""
        model = SyntheticONNXModels.create_scalar_constant_model("Sub", value=0.25)
        x = random_input_generator((2, 3))
        _compare_with_onnxruntime(model, [x], onnx_runner, torch_runner, numerical_validator, "scalar")


class TestScalarSemantics:
    """Test Python scalar inputs and integer arithmetic."""

    def test_float_scalar_inputs(self):
        """Test that rank-0 inputs are plain Python floats."""
        model = TorchEmit().compile(SyntheticONNXModels.create_scalar_input_model()).instantiate()
        result = model(1.5, 2.25)
        assert isinstance(result, torch.Tensor)
        assert result.dtype == torch.float32
        assert result.item() == 3.75

    def test_integer_scalar_division(self):
        """Test that integer division of Python scalars truncates toward zero."""
        model = SyntheticONNXModels.create_scalar_input_model("Div", TensorProto.INT64)
        module = TorchEmit().compile(model).instantiate()
        result = module(-7, 2)
        assert result.dtype == torch.int64
        assert result.item() == -3

    def test_integer_tensor_division(self, onnx_runner, torch_runner):
        """Test that integer tensor division truncates toward zero."""
        model = SyntheticONNXModels.create_integer_div_model()
        x = np.array([-7, 7, 5, -4], dtype=np.int64)
        (actual,) = torch_runner(model, [x])
        assert actual.tolist() == [-3, 3, 2, -2]
        np.testing.assert_array_equal(actual.numpy(), onnx_runner(model, {"X": x})[0])

    def test_scalar_equal(self):
        """Test that comparing Python scalars yields a boolean tensor."""
        model = SyntheticONNXModels.create_scalar_input_model("Equal")
        module = TorchEmit().compile(model).instantiate()
        assert module(1.0, 1.0).dtype == torch.bool
        assert bool(module(1.0, 1.0))
        assert not bool(module(1.0, 2.0))
