"""State dict generation from a model definition.

Builds the PyTorch state_dict directly from the definition's weight bundle.
"""

__docformat__ = "restructuredtext"
__all__ = ["build_manifest", "build_state_dict"]

from typing import Any

import numpy as np
import torch

from torchemit.lower import ModelDefinition, OpKind


def _to_tensor(data: np.ndarray) -> torch.Tensor:
    # Bundle arrays are read-only; torch needs its own writable copy
    return torch.from_numpy(np.array(data, copy=True))


def build_state_dict(definition: ModelDefinition) -> dict[str, torch.Tensor]:
    """Build PyTorch state_dict from a model definition.

    Maps learned parameters and non-inline constants to their keys:
    - Layer parameters: "{instance}.{role}" (e.g., "conv2d1.weight")
    - Constant buffers: "{code_name}" (e.g., "c0")

    BatchNorm layers also carry a ``num_batches_tracked`` buffer, which
    ``load_state_dict`` requires.

    :param definition: Model definition from the lowering pass
    :return: PyTorch state_dict mapping
    """
    state_dict = {key: _to_tensor(data) for key, data in definition.weight_bundle().items()}
    for op in definition.ops:
        if op.kind is OpKind.BATCHNORM:
            state_dict[f"{op.name}.num_batches_tracked"] = torch.tensor(0, dtype=torch.long)
    return state_dict


def build_manifest(state_dict: dict[str, torch.Tensor]) -> dict[str, dict[str, Any]]:
    """Element type and shape of every state_dict entry.

    :param state_dict: State dict built by :func:`build_state_dict`
    :return: Mapping from key to ``{"dtype": ..., "shape": ...}``
    """
    return {
        key: {"dtype": str(tensor.dtype).removeprefix("torch."), "shape": tuple(tensor.shape)}
        for key, tensor in state_dict.items()
    }
