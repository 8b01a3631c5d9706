"""Stage 4: Shape/Type Inference.

This module computes the descriptor of every tensor edge.
"""

__docformat__ = "restructuredtext"
__all__ = [
    "ShapeTable",
    "SpatialAttributes",
    "infer_shapes",
    "register_shape_inference",
    "resolve_reshape_target",
    "resolve_spatial_attributes",
]

from torchemit.infer._registry import register_shape_inference
from torchemit.infer._shape_ops import resolve_reshape_target
from torchemit.infer._spatial import SpatialAttributes, resolve_spatial_attributes
from torchemit.infer.engine import infer_shapes
from torchemit.infer.types import ShapeTable
