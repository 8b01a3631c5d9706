"""Operator variants and their opset ranges."""

__docformat__ = "restructuredtext"
__all__ = ["MIN_SUPPORTED_OPSET", "OpVariant", "VARIANT_TABLE", "select_variant"]

from enum import Enum


class OpVariant(Enum):
    """Closed enumeration of (ONNX operator, opset range) cases.

    The value is ``(op_type, since_version)``. A variant covers every opset
    from its ``since_version`` up to (excluding) the next variant of the
    same operator.
    """

    ADD_V7 = ("Add", 7)
    SUB_V7 = ("Sub", 7)
    MUL_V7 = ("Mul", 7)
    DIV_V7 = ("Div", 7)
    EQUAL_V7 = ("Equal", 7)
    CONV_V1 = ("Conv", 1)
    MAXPOOL_V1 = ("MaxPool", 1)
    MAXPOOL_V8 = ("MaxPool", 8)
    AVGPOOL_V1 = ("AveragePool", 1)
    AVGPOOL_V7 = ("AveragePool", 7)
    GLOBAL_AVGPOOL_V1 = ("GlobalAveragePool", 1)
    BATCHNORM_V1 = ("BatchNormalization", 1)
    BATCHNORM_V9 = ("BatchNormalization", 9)
    GEMM_V1 = ("Gemm", 1)
    GEMM_V11 = ("Gemm", 11)
    MATMUL_V1 = ("MatMul", 1)
    RESHAPE_V1 = ("Reshape", 1)
    RESHAPE_V5 = ("Reshape", 5)
    FLATTEN_V1 = ("Flatten", 1)
    FLATTEN_V11 = ("Flatten", 11)
    TRANSPOSE_V1 = ("Transpose", 1)
    CONCAT_V1 = ("Concat", 1)
    CONCAT_V4 = ("Concat", 4)
    GATHER_V1 = ("Gather", 1)
    SOFTMAX_V1 = ("Softmax", 1)
    SOFTMAX_V13 = ("Softmax", 13)
    LOG_SOFTMAX_V1 = ("LogSoftmax", 1)
    LOG_SOFTMAX_V13 = ("LogSoftmax", 13)
    RELU_V1 = ("Relu", 1)
    SIGMOID_V1 = ("Sigmoid", 1)
    TANH_V1 = ("Tanh", 1)
    SQRT_V1 = ("Sqrt", 1)
    RECIPROCAL_V1 = ("Reciprocal", 1)
    ERF_V1 = ("Erf", 1)
    IDENTITY_V1 = ("Identity", 1)
    CLIP_V1 = ("Clip", 1)
    CLIP_V11 = ("Clip", 11)
    DROPOUT_V1 = ("Dropout", 1)
    DROPOUT_V7 = ("Dropout", 7)
    DROPOUT_V12 = ("Dropout", 12)

    @property
    def op_type(self) -> str:
        return self.value[0]

    @property
    def since_version(self) -> int:
        return self.value[1]


def _build_variant_table() -> dict[str, tuple[OpVariant, ...]]:
    table: dict[str, list[OpVariant]] = {}
    for variant in OpVariant:
        table.setdefault(variant.op_type, []).append(variant)
    return {
        op_type: tuple(sorted(variants, key=lambda v: v.since_version, reverse=True))
        for op_type, variants in table.items()
    }


# Variants per operator, newest first
VARIANT_TABLE: dict[str, tuple[OpVariant, ...]] = _build_variant_table()

MIN_SUPPORTED_OPSET = min(variant.since_version for variant in OpVariant)


def select_variant(op_type: str, opset_version: int) -> OpVariant | None:
    """Return the newest variant whose range starts at or below the version.

    :param op_type: ONNX operator type, which must be in :data:`VARIANT_TABLE`
    :param opset_version: Opset version of the node's domain
    :return: Matching variant, or None if the version predates all variants
    """
    for variant in VARIANT_TABLE[op_type]:
        if opset_version >= variant.since_version:
            return variant
    return None
