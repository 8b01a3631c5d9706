"""Code templates and constants for PyTorch code generation.

This module provides string templates and constants used throughout
the code generation process.
"""

__docformat__ = "restructuredtext"
__all__ = [
    "DEFAULT_WEIGHTS_TEMPLATE",
    "FORWARD_TEMPLATE",
    "INDENT",
    "INIT_TEMPLATE",
    "MODULE_TEMPLATE",
    "NEW_TEMPLATE",
    "NO_WEIGHTS_DEFAULT_TEMPLATE",
]

# Naming constants
INDENT = "    "

# Module template
MODULE_TEMPLATE = """\
__all__ = [{exports}]

{imports}


class {class_name}(nn.Module):
{init_method}

{forward_method}

{factories}
"""

# __init__ method template
INIT_TEMPLATE = """\
{indent}def __init__(self):
{indent}{indent}super().__init__()
{body}"""

# forward() method template
FORWARD_TEMPLATE = """\
{indent}def forward(self{input_args}){return_annotation}:
{body}
{indent}{indent}return {output_return}"""

# Construction functions
NEW_TEMPLATE = """\
def new() -> {class_name}:
{indent}\"\"\"Build the model with freshly initialized parameters.\"\"\"
{indent}return {class_name}().eval()
"""

DEFAULT_WEIGHTS_TEMPLATE = """\
def default(weights_path: str | Path | None = None) -> {class_name}:
{indent}\"\"\"Build the model and load its trained weights.

{indent}:param weights_path: State dict file; defaults to the ``.pth`` file
{indent}    next to this module
{indent}\"\"\"
{indent}if weights_path is None:
{indent}{indent}weights_path = Path(__file__).with_suffix(".pth")
{indent}model = {class_name}()
{indent}model.load_state_dict(torch.load(weights_path, weights_only=True))
{indent}return model.eval()
"""

NO_WEIGHTS_DEFAULT_TEMPLATE = """\
def default() -> {class_name}:
{indent}\"\"\"Build the model; it carries no trained weights.\"\"\"
{indent}return new()
"""
