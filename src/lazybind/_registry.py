from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ._errors import DuplicateGroupConflictError


logger = logging.getLogger(__name__)

T = TypeVar("T")

if TYPE_CHECKING:
    from collections.abc import Callable

    Resolver = Callable[..., Any]
    Callback = Callable[[Any, Any], object]


@dataclass(frozen=True)
class DefaultExport(Generic[T]):
    """Module-like factory result; the container stores `default` as the service value."""

    default: T


@dataclass(frozen=True)
class ServiceSpec:
    name: str
    dependencies: tuple[str, ...]
    resolver: Resolver


@dataclass
class Group:
    name: str
    members: list[str] = field(default_factory=list)

    def add(self, service_name: str) -> bool:
        if service_name in self.members:
            return False
        self.members.append(service_name)
        return True


Entry = ServiceSpec | Group


class Registry:
    """Name -> entry mapping plus the per-name observer lists.

    Service and group names share one namespace. Observers are kept apart from
    entries so that re-registering a service does not drop them.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Entry] = {}
        self._callbacks: dict[str, list[Callback]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, name: str) -> Entry | None:
        return self._entries.get(name)

    def add_service(self, spec: ServiceSpec) -> None:
        if isinstance(self._entries.get(spec.name), Group):
            msg = f"Cannot register service {spec.name!r}: the name is already used by a group."
            raise DuplicateGroupConflictError(spec.name, msg)

        if spec.name in self._entries:
            logger.debug("Replacing registration for service %r", spec.name)

        self._entries[spec.name] = spec
        self._callbacks.setdefault(spec.name, [])

    def add_to_group(self, group_name: str, service_name: str) -> None:
        if group_name == service_name:
            msg = f"Group {group_name!r} cannot be a member of itself."
            raise ValueError(msg)

        entry = self._entries.get(group_name)
        if isinstance(entry, ServiceSpec):
            msg = f"Cannot use {group_name!r} as a group: the name is already registered as a service."
            raise DuplicateGroupConflictError(group_name, msg)

        if entry is None:
            entry = self._entries[group_name] = Group(group_name)

        if entry.add(service_name):
            logger.debug("Added %r to group %r", service_name, group_name)

    def add_callback(self, name: str, callback: Callback) -> None:
        self._callbacks.setdefault(name, []).append(callback)

    def callbacks(self, name: str) -> list[Callback]:
        """Snapshot of the observers registered for `name`, in registration order."""
        return list(self._callbacks.get(name, ()))
