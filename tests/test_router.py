import pytest

from relaychat.router import (
    Broadcast,
    Multicast,
    Unicast,
    format_message,
    format_unicast,
    format_unicast_echo,
    parse_intent,
)


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("hello", Broadcast("hello")),
        ("", Broadcast("")),
        ("a > b", Broadcast("a > b")),
        ("bob>>secret", Unicast("bob", "secret")),
        ("bob,>>secret", Unicast("bob", "secret")),
        ("bob,carol>>hi", Multicast(("bob", "carol"), "hi")),
        ("bob, carol ,>>hi", Multicast(("bob", "carol"), "hi")),
        ("bob,bob>>hi", Unicast("bob", "hi")),
        ("bob,carol,bob>>hi", Multicast(("bob", "carol"), "hi")),
        ("bob>>a>>b", Unicast("bob", "a>>b")),
        ("bob>>", Unicast("bob", "")),
        (">>hi", Broadcast("hi")),
        (",>>hi", Broadcast("hi")),
    ],
)
def test_parse_intent(line, expected) -> None:
    assert parse_intent(line) == expected


def test_formats() -> None:
    assert format_message("alice", "hi") == "MESSAGE alice: hi"
    assert format_unicast("alice", "bob", "s") == "MESSAGE alice >> bob(UNICAST): s"
    assert format_unicast_echo("alice", "bob", "s") == "alice>> bob(UNICAST): s"


@pytest.fixture
def chatters(registry, sink_factory):
    sinks = {}
    for name in ("alice", "bob", "carol"):
        sinks[name] = sink_factory(name)
        registry.try_register(name, sinks[name])
    for sink in sinks.values():
        sink.take()
    return sinks


def test_broadcast_reaches_everyone_including_sender(router, chatters, stats) -> None:
    assert router.route("alice", "hello") == 3
    for sink in chatters.values():
        assert sink.lines == ["MESSAGE alice: hello"]
    assert stats.get("broadcasts") == 1


def test_unicast_delivers_and_echoes(router, chatters, stats) -> None:
    assert router.route("alice", "bob>>secret") == 2
    assert chatters["bob"].lines == ["MESSAGE alice >> bob(UNICAST): secret"]
    assert chatters["alice"].lines == ["alice>> bob(UNICAST): secret"]
    assert chatters["carol"].lines == []
    assert stats.get("unicasts") == 1


def test_unicast_to_self(router, chatters) -> None:
    router.route("alice", "alice>>note")
    assert chatters["alice"].lines == [
        "MESSAGE alice >> alice(UNICAST): note",
        "alice>> alice(UNICAST): note",
    ]


def test_multicast_reaches_targets_only(router, chatters, stats) -> None:
    assert router.route("alice", "bob,carol>>hi") == 2
    assert chatters["bob"].lines == ["MESSAGE alice: hi"]
    assert chatters["carol"].lines == ["MESSAGE alice: hi"]
    assert chatters["alice"].lines == []
    assert stats.get("multicasts") == 1


def test_multicast_may_include_sender(router, chatters) -> None:
    router.route("alice", "alice,bob>>hi")
    assert chatters["alice"].lines == ["MESSAGE alice: hi"]
    assert chatters["bob"].lines == ["MESSAGE alice: hi"]
    assert chatters["carol"].lines == []


def test_multicast_skips_unknown_targets(router, chatters, stats) -> None:
    assert router.route("alice", "ghost,carol,phantom>>hi") == 1
    assert chatters["carol"].lines == ["MESSAGE alice: hi"]
    assert chatters["bob"].lines == []
    assert stats.get("recipients_unreachable") == 2


def test_unicast_to_unknown_target_is_dropped(router, chatters, stats) -> None:
    assert router.route("alice", "ghost>>hi") == 0
    for sink in chatters.values():
        assert sink.lines == []
    assert stats.get("recipients_unreachable") == 1


def test_route_does_not_touch_membership(router, registry, chatters) -> None:
    router.route("alice", "ghost>>hi")
    router.route("alice", "hello")
    assert registry.snapshot_names() == ["alice", "bob", "carol"]
