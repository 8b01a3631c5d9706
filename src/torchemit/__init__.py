__docformat__ = "restructuredtext"
__version__ = "2026.1.0"
__all__ = [
    "CompilationError",
    "EmittedModule",
    "ModelDefinition",
    "TorchEmit",
]

from torchemit._torchemit import TorchEmit
from torchemit.errors import CompilationError
from torchemit.generate import EmittedModule
from torchemit.lower import ModelDefinition
