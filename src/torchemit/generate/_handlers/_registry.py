"""Handler registry for operation code generation.

Provides dispatcher for kind-specific code generators.
"""

__docformat__ = "restructuredtext"
__all__ = [
    "HANDLERS",
    "Handler",
    "get_handler",
    "register_handler",
]

from collections.abc import Callable

from torchemit.lower import CanonicalOp, OpKind

# Handler type: takes a CanonicalOp, returns one or more code lines joined by "\n"
Handler = Callable[[CanonicalOp], str]

# Global handler registry
HANDLERS: dict[OpKind, Handler] = {}


def register_handler(kind: OpKind, handler: Handler) -> None:
    """Register handler for a canonical operator kind.

    :param kind: Canonical operator kind
    :param handler: Handler function
    """
    HANDLERS[kind] = handler


def get_handler(kind: OpKind) -> Handler | None:
    """Get handler for a canonical operator kind.

    :param kind: Canonical operator kind
    :return: Handler function or None if not found
    """
    return HANDLERS.get(kind)
