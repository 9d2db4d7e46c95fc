from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Sequence


class ContainerError(RuntimeError):
    pass


class UnregisteredServiceError(KeyError, AttributeError):
    """Raised for a name that is neither registered, a group, nor resolved.

    Also an `AttributeError`, so `hasattr(container, name)` and
    `getattr(container, name, default)` work on unresolved names.
    """

    def __init__(self, name: str, msg: str | None = None) -> None:
        self.name = name
        self.msg = msg or f"No resolver for service {name!r} registered in the container."
        super().__init__(self.msg)

    def __str__(self) -> str:
        return self.msg


class DuplicateGroupConflictError(ContainerError):
    """Raised when a name is used both as a group and as a plain service."""

    def __init__(self, name: str, msg: str) -> None:
        self.name = name
        super().__init__(msg)


class CircularDependencyError(ContainerError):
    def __init__(self, path: Sequence[str]) -> None:
        self.path = tuple(path)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.path)}")
