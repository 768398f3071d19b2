from __future__ import annotations

import pytest


def test_append_and_list_oldest_first(history, alice):
    history.append(alice.id, "user", "hi")
    history.append(alice.id, "assistant", "hello")
    history.append(alice.id, "user", "how much should I save?")
    log = history.list(alice.id)
    assert [(m.role, m.content) for m in log] == [
        ("user", "hi"),
        ("assistant", "hello"),
        ("user", "how much should I save?"),
    ]


def test_content_is_stored_verbatim(history, alice):
    raw = "  spaced\n\tcontent  "
    history.append(alice.id, "user", raw)
    assert history.list(alice.id)[0].content == raw


def test_rejects_unknown_role(history, alice):
    with pytest.raises(ValueError):
        history.append(alice.id, "system", "nope")


def test_clear_returns_count_and_is_owner_scoped(history, alice, bob):
    history.append(alice.id, "user", "a")
    history.append(alice.id, "assistant", "b")
    history.append(bob.id, "user", "c")
    assert history.clear(alice.id) == 2
    assert history.list(alice.id) == []
    assert [m.content for m in history.list(bob.id)] == ["c"]


def test_export_text(history, alice):
    history.append(alice.id, "user", "hi")
    history.append(alice.id, "assistant", "hello")
    assert history.export_text(alice.id) == "user: hi\nassistant: hello\n"
    assert history.export_text(alice.id, limit_chars=4) == "user"


def test_empty_log(history, alice):
    assert history.list(alice.id) == []
