import pytest

from lazybind import CircularDependencyError, Container, DuplicateGroupConflictError, UnregisteredServiceError


@pytest.mark.asyncio
async def test_resolving_group_resolves_members_then_fires_group_callbacks():
    c = Container()
    events = []

    def make(name):
        async def factory():
            events.append(f"make:{name}")
            return f"{name}-service"

        return factory

    c.register("foo", make("foo")).add_to_group("admin")
    c.register("bar", make("bar")).add_to_group("admin")
    c.resolved("foo", lambda _c, _v: events.append("resolved:foo"))
    c.resolved("admin", lambda _c, members: events.append(("resolved:admin", dict(members))))

    result = await c.resolve("admin")

    assert result == {"foo": "foo-service", "bar": "bar-service"}
    assert events == [
        "make:foo",
        "resolved:foo",
        "make:bar",
        ("resolved:admin", {"foo": "foo-service", "bar": "bar-service"}),
    ]
    assert c.foo == "foo-service"
    assert c.bar == "bar-service"


@pytest.mark.asyncio
async def test_group_members_resolve_once_and_group_callbacks_fire_once():
    c = Container()
    calls = 0
    group_calls = []

    def make():
        nonlocal calls
        calls += 1
        return "svc"

    c.register("svc", make).add_to_group("grp")
    c.resolved("grp", lambda _c, members: group_calls.append(members))

    await c.resolve("svc")
    await c.resolve("grp")
    await c("grp")

    assert calls == 1
    assert len(group_calls) == 1


@pytest.mark.asyncio
async def test_group_through_bootstrap():
    c = Container()
    resolved = []

    def bootstrapper(app):
        app.register("foo", lambda: "foo").add_to_group("admin")
        app.register("bar", lambda: "bar").add_to_group("admin")
        app.resolved("admin", lambda _c, _members: resolved.append("admin"))

    c.bootstrap(bootstrapper)
    await c.resolve("admin")

    assert resolved == ["admin"]


def test_duplicate_group_add_is_ignored():
    c = Container()
    c.add_to_group("admin", "foo")
    c.add_to_group("admin", "foo")

    assert c.members("admin") == ["foo"]


def test_handle_adds_to_several_groups():
    c = Container()
    c.register("foo", lambda: 1).add_to_group("a").add_to_group("b")

    assert c.members("a") == ["foo"]
    assert c.members("b") == ["foo"]


def test_bulk_handle_adds_every_name():
    c = Container()
    c.register({"x": lambda: 1, "y": lambda: 2}).add_to_group("xy")

    assert c.members("xy") == ["x", "y"]


@pytest.mark.asyncio
async def test_group_created_before_member_registration():
    c = Container()
    c.add_to_group("admin", "foo")
    c.register("foo", lambda: 1)

    assert c.is_group("admin")
    assert not c.is_registered("admin")
    assert await c.resolve("admin") == {"foo": 1}


@pytest.mark.asyncio
async def test_group_with_unregistered_member_raises():
    c = Container()
    c.add_to_group("admin", "ghost")

    with pytest.raises(UnregisteredServiceError, match="ghost"):
        await c.resolve("admin")


@pytest.mark.asyncio
async def test_nested_group():
    c = Container()
    c.register("db", lambda: "db").add_to_group("storage")
    c.add_to_group("app", "storage")
    c.register("web", lambda: "web").add_to_group("app")

    assert await c.resolve("app") == {"storage": {"db": "db"}, "web": "web"}


def test_registering_service_under_group_name_raises():
    c = Container()
    c.add_to_group("admin", "foo")

    with pytest.raises(DuplicateGroupConflictError) as ctx:
        c.register("admin", lambda: 1)
    assert ctx.value.name == "admin"


def test_using_service_name_as_group_raises():
    c = Container()
    c.register("foo", lambda: 1)

    with pytest.raises(DuplicateGroupConflictError):
        c.add_to_group("foo", "bar")


def test_assigning_value_under_group_name_raises():
    c = Container()
    c.add_to_group("admin", "foo")

    with pytest.raises(DuplicateGroupConflictError):
        c.admin = "value"


def test_using_assigned_name_as_group_raises():
    c = Container()
    c.set("token", "secret")

    with pytest.raises(DuplicateGroupConflictError):
        c.add_to_group("token", "foo")


def test_group_cannot_contain_itself():
    c = Container()
    with pytest.raises(ValueError, match="member of itself"):
        c.add_to_group("admin", "admin")


def test_members_of_unknown_group_raises():
    c = Container()
    with pytest.raises(UnregisteredServiceError):
        c.members("nope")


@pytest.mark.asyncio
async def test_strict_mode_detects_group_cycle():
    c = Container(detect_cycles=True)
    c.add_to_group("g1", "g2")
    c.add_to_group("g2", "g1")

    with pytest.raises(CircularDependencyError) as ctx:
        await c.resolve("g1")
    assert ctx.value.path == ("g1", "g2", "g1")
