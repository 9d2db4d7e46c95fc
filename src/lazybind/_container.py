from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, overload

from ._errors import (
    CircularDependencyError,
    DuplicateGroupConflictError,
    UnregisteredServiceError,
)
from ._registry import DefaultExport, Group, Registry, ServiceSpec


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Iterable, Sequence

    Resolver = Callable[..., Any]
    Callback = Callable[["Container", Any], object]

# Names being resolved along the current await chain; checked only with detect_cycles
_resolution_path: ContextVar[tuple[str, ...]] = ContextVar("lazybind_resolution_path", default=())


@dataclass(frozen=True)
class Bootstrap:
    """What a bootstrap callback receives: `register` and `resolved` bound to a container."""

    register: Callable[..., RegistrationHandle]
    resolved: Callable[[str, Callback], None]


class RegistrationHandle:
    """Returned by `Container.register`; lets the caller file the new service(s) into groups."""

    def __init__(self, container: Container, names: tuple[str, ...]) -> None:
        self._container = container
        self.names = names

    def add_to_group(self, group_name: str) -> RegistrationHandle:
        for name in self.names:
            self._container.add_to_group(group_name, name)
        return self

    def __repr__(self) -> str:
        return f"RegistrationHandle(names={self.names!r})"


class Container:
    """Asynchronous service container.

    - register named factories, optionally with dependencies resolved first
    - resolve once, cache, hand the cached value back afterwards
    - `resolved` observers fire once, when a name first becomes resolved
    - groups resolve all of their members.

    Resolved services are also readable as attributes (`container.db`) and
    items (`container["db"]`); assigning either way stores an already-resolved value.

    A container belongs to a single event loop. The lock only keeps synchronous
    registry updates whole; resolution itself is not thread-safe.
    """

    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        *,
        detect_cycles: bool = False,
        fire_late_callbacks: bool = False,
    ) -> None:
        self._registry = Registry()
        self._resolved: dict[str, Any] = {}
        self._pending: dict[str, asyncio.Task[Any]] = {}
        self._resolved_groups: dict[str, dict[str, Any]] = {}
        self._config: dict[str, Any] = dict(config or {})
        self._detect_cycles = detect_cycles
        self._fire_late_callbacks = fire_late_callbacks
        self._lock = threading.RLock()

    # -- configuration -------------------------------------------------------

    @property
    def config(self) -> dict[str, Any]:
        return self._config

    @config.setter
    def config(self, value: Mapping[str, Any]) -> None:
        self._config = dict(value)

    # -- registration --------------------------------------------------------

    @overload
    def register(self, name: Mapping[str, Resolver]) -> RegistrationHandle: ...

    @overload
    def register(self, name: str, dependencies: Resolver) -> RegistrationHandle: ...

    @overload
    def register(self, name: str, dependencies: Sequence[str], resolver: Resolver) -> RegistrationHandle: ...

    def register(
        self,
        name: str | Mapping[str, Resolver],
        dependencies: Sequence[str] | Resolver | None = None,
        resolver: Resolver | None = None,
    ) -> RegistrationHandle:
        """Register a resolver for a service name.

        Example:
          container.register("http", make_http_client)
          container.register("api", ["http", "settings"], make_api)
          container.register({"clock": lambda: time.monotonic}).add_to_group("core")

        The resolver is called with the container when it accepts a positional
        argument and may return an awaitable. A mapping registers each entry
        without dependencies and resolves it on the spot; those resolvers must
        not return awaitables.
        """
        if isinstance(name, Mapping):
            if dependencies is not None or resolver is not None:
                msg = "Bulk registration takes a single mapping of name -> resolver."
                raise TypeError(msg)
            return self._register_bulk(name)

        if resolver is None:
            if dependencies is None:
                msg = f"A resolver must be provided for service {name!r}."
                raise TypeError(msg)
            resolver, dependencies = dependencies, ()  # type: ignore[assignment]

        _check_name(name)
        if not callable(resolver):
            msg = f"Resolver for service {name!r} must be callable, got {type(resolver).__name__}."
            raise TypeError(msg)

        spec = ServiceSpec(name=name, dependencies=_as_dependencies(name, dependencies), resolver=resolver)
        with self._lock:
            self._registry.add_service(spec)

        logger.debug("Registered service %r (dependencies: %s)", name, list(spec.dependencies))
        return RegistrationHandle(self, (name,))

    def _register_bulk(self, services: Mapping[str, Resolver]) -> RegistrationHandle:
        names: list[str] = []
        for name, resolver in services.items():
            self.register(name, resolver)
            names.append(name)

            if name in self._resolved:
                continue

            value = _call_resolver(resolver, self)
            if inspect.isawaitable(value):
                if inspect.iscoroutine(value):
                    value.close()
                msg = f"Bulk-registered resolver for {name!r} returned an awaitable; it must return the value itself."
                raise TypeError(msg)

            self._complete(name, _unwrap(value))

        return RegistrationHandle(self, tuple(names))

    def add_to_group(self, group_name: str, service_name: str) -> None:
        """Append a service to a group, creating the group on first use. Duplicates are ignored."""
        _check_name(group_name)
        _check_name(service_name)
        with self._lock:
            if group_name in self._resolved and not self.is_group(group_name):
                msg = f"Cannot use {group_name!r} as a group: a value is already assigned under that name."
                raise DuplicateGroupConflictError(group_name, msg)
            self._registry.add_to_group(group_name, service_name)

    def resolved(self, name: str, callback: Callback) -> None:
        """Register a callback run once, with `(container, value)`, when `name` first resolves.

        Registering after the fact does nothing unless the container was built
        with `fire_late_callbacks=True`, in which case the callback runs now.
        """
        if not callable(callback):
            msg = f"Callback for {name!r} must be callable, got {type(callback).__name__}."
            raise TypeError(msg)

        with self._lock:
            self._registry.add_callback(name, callback)
            late = self._fire_late_callbacks
            if late and name in self._resolved_groups:
                value = self._resolved_groups[name]
            elif late and name in self._resolved:
                value = self._resolved[name]
            else:
                return

        callback(self, value)

    def bootstrap(self, callbacks: Callable[[Bootstrap], object] | Iterable[Callable[[Bootstrap], object]]) -> None:
        """Run one or more setup callbacks, each handed the container's `register` and `resolved`."""
        if callable(callbacks):
            callbacks = [callbacks]

        context = Bootstrap(register=self.register, resolved=self.resolved)
        for callback in callbacks:
            callback(context)

    # -- resolution ----------------------------------------------------------

    async def resolve(self, name: str) -> Any:
        """Resolve `name`, constructing it on first use.

        Resolution order:
        1. group -> resolve every member
        2. cached value
        3. resolution already in flight -> wait for it
        4. registered resolver, after its dependencies
        5. error.
        """
        entry = self._registry.get(name)
        if isinstance(entry, Group):
            return await self._resolve_group(entry)

        if name in self._resolved:
            return self._resolved[name]

        pending = self._pending.get(name)
        if pending is not None:
            self._check_cycle(name)
        elif isinstance(entry, ServiceSpec):
            # the resolution runs in its own task; cancelling one caller never cancels it for the others
            pending = self._pending[name] = asyncio.ensure_future(self._resolve_service(entry))
            pending.add_done_callback(_consume_exception)
        else:
            raise UnregisteredServiceError(name)

        return await asyncio.shield(pending)

    def __call__(self, name: str) -> Coroutine[Any, Any, Any]:
        return self.resolve(name)

    async def _resolve_service(self, spec: ServiceSpec) -> Any:
        name = spec.name
        # runs in a task with its own copy of the context, so there is nothing to reset
        _resolution_path.set((*_resolution_path.get(), name))
        logger.debug("Resolving service %r", name)

        try:
            await self._resolve_dependencies(spec)
            value = _call_resolver(spec.resolver, self)
            if inspect.isawaitable(value):
                value = await value
            value = _unwrap(value)
        finally:
            self._pending.pop(name, None)

        return self._complete(name, value)

    async def _resolve_dependencies(self, spec: ServiceSpec) -> None:
        # one at a time: each dependency, transitive ones included, is done before the next starts
        for dependency in spec.dependencies:
            await self.resolve(dependency)

    async def _resolve_group(self, group: Group) -> dict[str, Any]:
        self._check_cycle(group.name)
        token = _resolution_path.set((*_resolution_path.get(), group.name))
        logger.debug("Resolving group %r (%d members)", group.name, len(group.members))

        results: dict[str, Any] = {}
        try:
            for member in list(group.members):
                results[member] = await self.resolve(member)
        finally:
            _resolution_path.reset(token)

        with self._lock:
            first = group.name not in self._resolved_groups
            self._resolved_groups[group.name] = results

        if first:
            self._fire_callbacks(group.name, results)
        return results

    def _complete(self, name: str, value: Any) -> Any:
        """Cache `value` unless `name` already holds one, then return the cached value."""
        with self._lock:
            if name in self._resolved:
                logger.debug("Service %r was resolved meanwhile; keeping the cached value", name)
                return self._resolved[name]
            self._resolved[name] = value

        logger.debug("Resolved service %r", name)
        self._fire_callbacks(name, value)
        return value

    def _fire_callbacks(self, name: str, value: Any) -> None:
        callbacks = self._registry.callbacks(name)
        if callbacks:
            logger.debug("Firing %d resolved callback(s) for %r", len(callbacks), name)
        for callback in callbacks:
            callback(self, value)

    def _check_cycle(self, name: str) -> None:
        if not self._detect_cycles:
            return
        path = _resolution_path.get()
        if name in path:
            raise CircularDependencyError((*path[path.index(name) :], name))

    # -- direct access -------------------------------------------------------

    def get(self, name: str) -> Any:
        """Return an already-resolved service without resolving anything."""
        try:
            return self._resolved[name]
        except KeyError:
            msg = f"Attempting to access a service that has not been resolved: {name!r}."
            raise UnregisteredServiceError(name, msg) from None

    def set(self, name: str, value: Any) -> None:
        """Store `value` as resolved under `name`, bypassing resolvers and callbacks."""
        _check_name(name)
        with self._lock:
            if self.is_group(name):
                msg = f"Cannot assign a value to {name!r}: the name is used by a group."
                raise DuplicateGroupConflictError(name, msg)
            self._resolved[name] = value

    def is_resolved(self, name: str) -> bool:
        return name in self._resolved

    def is_registered(self, name: str) -> bool:
        return isinstance(self._registry.get(name), ServiceSpec)

    def is_group(self, name: str) -> bool:
        return isinstance(self._registry.get(name), Group)

    def members(self, group_name: str) -> list[str]:
        entry = self._registry.get(group_name)
        if not isinstance(entry, Group):
            raise UnregisteredServiceError(group_name, f"{group_name!r} is not a group.")
        return list(entry.members)

    def dependencies(self, name: str) -> tuple[str, ...]:
        entry = self._registry.get(name)
        if not isinstance(entry, ServiceSpec):
            raise UnregisteredServiceError(name)
        return entry.dependencies

    def __getattr__(self, name: str) -> Any:
        # only reached for names missing on the instance and the class
        if name.startswith("_"):
            raise AttributeError(name)
        return self.get(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or name == "config":
            object.__setattr__(self, name, value)
            return
        if name in _RESERVED_NAMES:
            msg = f"{name!r} is a reserved container attribute; use container.set({name!r}, value) instead."
            raise AttributeError(msg)
        self.set(name, value)

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def __contains__(self, name: object) -> bool:
        return name in self._resolved

    def __repr__(self) -> str:
        return f"Container(registered={len(self._registry)}, resolved={len(self._resolved)})"


_RESERVED_NAMES = frozenset(name for name in dir(Container) if not name.startswith("_"))


def _check_name(name: object) -> None:
    if not isinstance(name, str):
        msg = f"Service names must be strings, got {type(name).__name__}."
        raise TypeError(msg)
    if not name:
        msg = "Service names must not be empty."
        raise ValueError(msg)


def _as_dependencies(name: str, dependencies: object) -> tuple[str, ...]:
    if dependencies is None:
        return ()
    # a bare string is a sequence too, but never a list of names
    if isinstance(dependencies, str) or not isinstance(dependencies, (list, tuple)):
        msg = f"Dependencies of {name!r} must be a list or tuple of names, got {type(dependencies).__name__}."
        raise TypeError(msg)
    for dependency in dependencies:
        _check_name(dependency)
    return tuple(dependencies)


def _accepts_container(resolver: Resolver) -> bool:
    try:
        sig = inspect.signature(resolver)
    except (TypeError, ValueError):
        # builtins without introspectable signatures are called bare
        return False

    return any(
        p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL) for p in sig.parameters.values()
    )


def _call_resolver(resolver: Resolver, container: Container) -> Any:
    if _accepts_container(resolver):
        return resolver(container)
    return resolver()


def _consume_exception(task: asyncio.Task[Any]) -> None:
    # callers that were cancelled stop listening; don't log the failure as never retrieved
    if not task.cancelled():
        task.exception()


def _unwrap(value: Any) -> Any:
    if isinstance(value, DefaultExport):
        return value.default
    return value
