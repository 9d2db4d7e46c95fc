"""Minimal asynchronous service container.

This package provides a lightweight service container for asyncio applications,
allowing registration of named resolvers (plain or async factories) that are
constructed once, on first use, after their declared dependencies.

Exports:
- `Container`: Service container with resolution, caching, resolved callbacks and groups.
- `DefaultExport`: Module-like resolver result whose `default` becomes the service value.
- `Bootstrap`: The `register`/`resolved` pair handed to bootstrap callbacks.
- `RegistrationHandle`: Returned by `Container.register`, used to add services to groups.
- `UnregisteredServiceError`, `DuplicateGroupConflictError`, `CircularDependencyError`,
  `ContainerError`: Errors raised by the container.
"""

from ._container import Bootstrap, Container, RegistrationHandle
from ._errors import (
    CircularDependencyError,
    ContainerError,
    DuplicateGroupConflictError,
    UnregisteredServiceError,
)
from ._registry import DefaultExport


__all__ = [
    "Bootstrap",
    "CircularDependencyError",
    "Container",
    "ContainerError",
    "DefaultExport",
    "DuplicateGroupConflictError",
    "RegistrationHandle",
    "UnregisteredServiceError",
]
