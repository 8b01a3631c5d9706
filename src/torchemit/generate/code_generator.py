"""Stage 6: Model Emitter.

Assembles a complete PyTorch module source and its state_dict from a
model definition.
"""

__docformat__ = "restructuredtext"
__all__ = ["EmittedModule", "emit_pytorch_module", "load_generated_module"]

import importlib.util
import tempfile
import types
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import torch
from torch import nn

from torchemit.generate._forward_gen import generate_forward_method
from torchemit.generate._init_gen import generate_init_method
from torchemit.generate._state_dict_gen import build_manifest, build_state_dict
from torchemit.generate._templates import (
    DEFAULT_WEIGHTS_TEMPLATE,
    INDENT,
    MODULE_TEMPLATE,
    NEW_TEMPLATE,
    NO_WEIGHTS_DEFAULT_TEMPLATE,
)
from torchemit.generate._utils import sanitize_identifier
from torchemit.lower import ConstantInfo, ModelDefinition, OpKind, VariableInfo
from torchemit.simplify import add_file_header, format_code


@dataclass(frozen=True)
class EmittedModule:
    """Generated source plus the weights it loads.

    :param class_name: Name of the generated ``nn.Module`` subclass
    :param code: Formatted module source
    :param state_dict: Weights keyed as the generated module expects
    :param manifest: Element type and shape per state_dict key
    :param inputs: ``forward`` arguments in order
    :param outputs: ``forward`` results in order
    :param requires_weights: ``default()`` needs the state_dict file
    """

    class_name: str
    code: str
    state_dict: dict[str, torch.Tensor] = field(compare=False, repr=False)
    manifest: dict[str, dict[str, Any]]
    inputs: tuple[VariableInfo, ...]
    outputs: tuple[VariableInfo | ConstantInfo, ...]
    requires_weights: bool

    def save(self, py_path: str | Path, pth_path: str | Path | None = None) -> None:
        """Write the source and, when there are weights, the state dict.

        :param py_path: Target ``.py`` path
        :param pth_path: Target ``.pth`` path; defaults to ``py_path`` with a
            ``.pth`` suffix, which is where ``default()`` looks
        """
        py_path = Path(py_path)
        py_path.write_text(self.code)
        if self.state_dict:
            if pth_path is None:
                pth_path = py_path.with_suffix(".pth")
            torch.save(self.state_dict, str(pth_path))

    def instantiate(self, load_weights: bool = True) -> nn.Module:
        """Import the generated source from a temporary file and build the model.

        :param load_weights: Load :attr:`state_dict` into the model
        :return: Model in eval mode
        :raises ValueError: If weights are required but not loaded
        """
        if self.requires_weights and not load_weights:
            raise ValueError(
                f"{self.class_name} requires trained weights; "
                f"construct it with load_weights=True"
            )
        with tempfile.TemporaryDirectory() as tmp:
            py_path = Path(tmp) / f"{self.class_name}.py"
            py_path.write_text(self.code)
            module = load_generated_module(py_path)
        model = module.new()
        if load_weights and self.state_dict:
            model.load_state_dict(self.state_dict)
        return model


def load_generated_module(py_path: str | Path) -> types.ModuleType:
    """Import a saved generated module from its file.

    :param py_path: Path written by :meth:`EmittedModule.save`
    :return: The imported module (exposes the class, ``new`` and ``default``)
    """
    py_path = Path(py_path)
    spec = importlib.util.spec_from_file_location(py_path.stem, py_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Failed to load module spec from {py_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _generate_imports(definition: ModelDefinition) -> str:
    """Generate import statements based on operations used.

    :param definition: Model definition
    :return: Import statements string
    """
    imports = []
    if definition.requires_weights:
        imports.extend(["from pathlib import Path", ""])
    imports.extend(["import torch", "import torch.nn as nn"])

    needs_functional = any(
        op.kind in (OpKind.SOFTMAX, OpKind.LOG_SOFTMAX) or op.attributes.get("explicit_pad")
        for op in definition.ops
    )
    if needs_functional:
        imports.append("import torch.nn.functional as F")

    return "\n".join(imports)


def _generate_factories(definition: ModelDefinition, class_name: str) -> str:
    factories = [NEW_TEMPLATE.format(indent=INDENT, class_name=class_name)]
    if definition.requires_weights:
        factories.append(DEFAULT_WEIGHTS_TEMPLATE.format(indent=INDENT, class_name=class_name))
    else:
        factories.append(NO_WEIGHTS_DEFAULT_TEMPLATE.format(indent=INDENT, class_name=class_name))
    return "\n\n".join(factories)


def emit_pytorch_module(
    definition: ModelDefinition,
    class_name: str = "ONNXModel",
    source: str | None = None,
) -> EmittedModule:
    """Generate complete PyTorch module from a model definition.

    Creates a module with:
    - Imports and ``__all__``
    - The ``nn.Module`` subclass with ``__init__`` and a typed ``forward``
    - ``new()`` and ``default()`` construction functions

    Emission is deterministic: the same definition always yields the same
    source text and state_dict.

    :param definition: Model definition from the lowering pass
    :param class_name: Name for the generated class
    :param source: Origin recorded in the file header (defaults to the graph name)
    :return: Emitted module
    """
    class_name = sanitize_identifier(class_name)

    module_code = MODULE_TEMPLATE.format(
        exports=", ".join(f'"{name}"' for name in (class_name, "new", "default")),
        imports=_generate_imports(definition),
        class_name=class_name,
        init_method=generate_init_method(definition),
        forward_method=generate_forward_method(definition),
        factories=_generate_factories(definition, class_name),
    )
    code = add_file_header(format_code(module_code), class_name, source or definition.name)

    state_dict = build_state_dict(definition)
    return EmittedModule(
        class_name=class_name,
        code=code,
        state_dict=state_dict,
        manifest=build_manifest(state_dict),
        inputs=definition.inputs,
        outputs=definition.outputs,
        requires_weights=definition.requires_weights,
    )
