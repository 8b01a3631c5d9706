"""Shared pytest configuration and fixtures for torchemit unit tests.

This module provides:
- Saved model fixtures built from the synthetic model factory
- ONNX Runtime and PyTorch runners
- Numerical validation utilities
"""

import numpy as np
import onnx
import onnxruntime as ort
import pytest
import torch

from tests.test_units.test_torchemit.fixtures.synthetic_models import SyntheticONNXModels
from torchemit import TorchEmit

# ===== Model Fixtures =====


@pytest.fixture
def mlp_model(tmp_path):
    """Create and save 2-layer MLP ONNX model."""
    model = SyntheticONNXModels.create_mlp_model()
    path = tmp_path / "mlp.onnx"
    onnx.save(model, str(path))
    return str(path)


@pytest.fixture
def cnn_model(tmp_path):
    """Create and save a small CNN ONNX model."""
    model = SyntheticONNXModels.create_conv_bn_relu_pool_model()
    path = tmp_path / "small_cnn.onnx"
    onnx.save(model, str(path))
    return str(path)


@pytest.fixture
def large_constant_model(tmp_path):
    """Create and save a model with a constant that is not inlined."""
    model = SyntheticONNXModels.create_large_constant_model()
    path = tmp_path / "large_constant.onnx"
    onnx.save(model, str(path))
    return str(path)


@pytest.fixture
def cycle_model(tmp_path):
    """Create and save a model whose nodes form a cycle."""
    model = SyntheticONNXModels.create_cycle_model()
    path = tmp_path / "cycle.onnx"
    onnx.save(model, str(path))
    return str(path)


# ===== Utility Fixtures =====


@pytest.fixture
def random_input_generator():
    """Generate random test inputs.

    Returns a function that creates random numpy arrays.
    """

    def _generate(shape, dtype=np.float32, seed=42):
        rng = np.random.default_rng(seed)
        return rng.standard_normal(shape).astype(dtype)

    return _generate


@pytest.fixture
def onnx_runner():
    """Create ONNX Runtime inference sessions.

    Returns a function that runs ONNX models.
    """

    def _run(model, inputs):
        """Run ONNX model with given inputs.

        :param model: ONNX ModelProto or path to an ONNX file
        :param inputs: Dictionary of input names to numpy arrays
        :return: List of output arrays
        """
        if isinstance(model, onnx.ModelProto):
            model = model.SerializeToString()
        session = ort.InferenceSession(model, providers=["CPUExecutionProvider"])
        return session.run(None, inputs)

    return _run


@pytest.fixture
def torch_runner():
    """Compile ONNX models and run the generated module.

    Returns a function that compiles a model in memory and runs forward.
    """

    def _run(model, inputs):
        """Compile and run a model.

        :param model: ONNX ModelProto
        :param inputs: Input arrays in declaration order
        :return: Tuple of output tensors
        """
        emitted = TorchEmit().compile(model)
        module = emitted.instantiate()
        with torch.no_grad():
            outputs = module(*(torch.from_numpy(np.asarray(x)) for x in inputs))
        if isinstance(outputs, torch.Tensor):
            return (outputs,)
        return tuple(outputs)

    return _run


@pytest.fixture
def numerical_validator():
    """Validate numerical equivalence between ONNX and PyTorch.

    Returns a function that compares outputs with configurable tolerances.
    """

    def _compare(onnx_output, pytorch_output, rtol=1e-5, atol=1e-6, name=""):
        """Compare ONNX and PyTorch outputs.

        :param onnx_output: Output from ONNX model
        :param pytorch_output: Output from PyTorch model
        :param rtol: Relative tolerance
        :param atol: Absolute tolerance
        :param name: Name of the test (for error messages)
        """
        if isinstance(pytorch_output, torch.Tensor):
            pytorch_output = pytorch_output.detach().numpy()
        assert pytorch_output.shape == np.asarray(onnx_output).shape, name
        np.testing.assert_allclose(
            pytorch_output,
            onnx_output,
            rtol=rtol,
            atol=atol,
            err_msg=f"Output mismatch for {name}",
        )

    return _compare
