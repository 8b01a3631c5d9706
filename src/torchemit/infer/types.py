"""Stage 4: Shape Table Type Definition."""

__docformat__ = "restructuredtext"
__all__ = ["ShapeTable"]

from collections.abc import Iterator, Mapping
from dataclasses import dataclass

from torchemit.parse.types import TensorDescriptor


@dataclass(frozen=True)
class ShapeTable(Mapping):
    """Inferred descriptor of every edge, keyed by edge id.

    :param descriptors: Descriptor per edge id
    """

    descriptors: dict[int, TensorDescriptor]

    def __getitem__(self, edge_id: int) -> TensorDescriptor:
        return self.descriptors[edge_id]

    def __iter__(self) -> Iterator[int]:
        return iter(self.descriptors)

    def __len__(self) -> int:
        return len(self.descriptors)
