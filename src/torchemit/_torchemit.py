__docformat__ = "restructuredtext"
__all__ = ["TorchEmit"]

from pathlib import Path

import onnx

from torchemit.build import build_ir_graph
from torchemit.generate import EmittedModule, emit_pytorch_module, to_camel_case
from torchemit.infer import infer_shapes
from torchemit.lower import MAX_INLINE_CONSTANT_NUMEL, ModelDefinition, lower_graph
from torchemit.parse import load_onnx_graph, parse_onnx_graph
from torchemit.parse.types import ParsedGraph
from torchemit.resolve import resolve_opsets


class TorchEmit:
    """Compile ONNX models into PyTorch modules.

    :param verbose: Print one line per compilation stage and the written paths
    :param check_model: Validate models with onnx.checker before parsing
    :param max_inline_numel: Constants up to this size are embedded in the source
    """

    def __init__(
        self,
        verbose: bool = False,
        check_model: bool = False,
        max_inline_numel: int = MAX_INLINE_CONSTANT_NUMEL,
    ):
        self.verbose = verbose
        self.check_model = check_model
        self.max_inline_numel = max_inline_numel

    def _log(self, message: str) -> None:
        if self.verbose:
            print(message)

    def _parse(self, data: bytes | onnx.ModelProto) -> ParsedGraph:
        if isinstance(data, onnx.ModelProto):
            data = data.SerializeToString()
        return parse_onnx_graph(data, check_model=self.check_model)

    def _compile_parsed(self, parsed: ParsedGraph) -> ModelDefinition:
        self._log(
            f"Parsed graph '{parsed.name}': {len(parsed.nodes)} nodes, "
            f"{len(parsed.initializers)} initializers"
        )

        # Stage 2: Build the typed DAG
        graph = build_ir_graph(parsed)
        self._log(f"Built IR: {len(graph.nodes)} nodes, {len(graph.edges)} edges")

        # Stage 3: Bind operator variants
        graph = resolve_opsets(graph)
        self._log(f"Resolved opsets: {graph.opset_imports}")

        # Stage 4: Shape and type inference
        shapes = infer_shapes(graph)
        self._log(f"Inferred {len(shapes)} tensor descriptors")

        # Stage 5: Canonical operations
        definition = lower_graph(graph, shapes, max_inline_numel=self.max_inline_numel)
        self._log(
            f"Lowered to {len(definition.ops)} operations, "
            f"{len(definition.parameters)} parameters, {len(definition.constants)} constants"
        )
        return definition

    def compile_definition(self, data: bytes | onnx.ModelProto) -> ModelDefinition:
        """Run the compiler up to the model definition.

        :param data: Serialized ONNX model or a ModelProto
        :return: Model definition
        """
        return self._compile_parsed(self._parse(data))

    def compile(
        self,
        data: bytes | onnx.ModelProto,
        class_name: str | None = None,
        source: str | None = None,
    ) -> EmittedModule:
        """Compile a model into PyTorch source and a state dict.

        :param data: Serialized ONNX model or a ModelProto
        :param class_name: Generated class name; defaults to the CamelCase graph name
        :param source: Origin recorded in the file header
        :return: Emitted module
        """
        definition = self.compile_definition(data)
        class_name = class_name or to_camel_case(definition.name)
        emitted = emit_pytorch_module(definition, class_name, source=source)
        self._log(f"Emitted class {emitted.class_name}")
        return emitted

    def convert(
        self,
        onnx_path: str | Path,
        target_py_path: str | Path | None = None,
        target_pth_path: str | Path | None = None,
        class_name: str | None = None,
    ) -> EmittedModule:
        """Convert an ONNX file to a PyTorch module file and state dict file.

        :param onnx_path: Path to input ONNX model
        :param target_py_path: Path to save generated Python module
            (defaults to the model path with a ``.py`` suffix)
        :param target_pth_path: Path to save state dict
            (defaults to the module path with a ``.pth`` suffix)
        :param class_name: Generated class name; defaults to the CamelCase file stem
        :return: Emitted module
        """
        onnx_path = Path(onnx_path)
        parsed = load_onnx_graph(onnx_path, check_model=self.check_model)
        definition = self._compile_parsed(parsed)
        class_name = class_name or to_camel_case(onnx_path.stem)
        emitted = emit_pytorch_module(definition, class_name, source=onnx_path.name)

        if target_py_path is None:
            target_py_path = onnx_path.with_suffix(".py")
        if target_pth_path is None:
            target_pth_path = Path(target_py_path).with_suffix(".pth")
        emitted.save(target_py_path, target_pth_path)

        self._log(f"Generated: {target_py_path}")
        if emitted.state_dict:
            self._log(f"Saved state dict: {target_pth_path}")
        return emitted
