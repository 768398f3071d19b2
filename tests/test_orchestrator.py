from __future__ import annotations

import pytest

from finance_chat.context import MEMORY_HEADER
from finance_chat.orchestrator import CONFIGURATION_NOTICE, UPSTREAM_APOLOGY, ConversationOrchestrator

from conftest import FakeChatClient


def _orchestrator(memory, history, client) -> ConversationOrchestrator:
    return ConversationOrchestrator(memory, history, client, persona="You are a finance bot.")


def test_turn_extracts_memory_and_logs_visible_reply(memory, history, alice):
    client = FakeChatClient(["Noted. [MEMORY: Location | Moved to Berlin] Let me know more."])
    result = _orchestrator(memory, history, client).run_turn(alice.id, "I moved to Berlin", api_key="k")

    assert result.reply == "Noted.  Let me know more."
    assert result.fact.category == "Location"
    assert [(f.category, f.content) for f in memory.list(alice.id)] == [("Location", "Moved to Berlin")]
    assert [(m.role, m.content) for m in history.list(alice.id)] == [
        ("user", "I moved to Berlin"),
        ("assistant", "Noted.  Let me know more."),
    ]


def test_prompt_has_system_context_prior_turns_and_new_text(memory, history, alice):
    memory.add(alice.id, "Salary 5000", category="Income")
    client = FakeChatClient(["first", "second"])
    orch = _orchestrator(memory, history, client)
    orch.run_turn(alice.id, "Hi there", api_key="k")
    orch.run_turn(alice.id, "How are you?", api_key="k")

    messages = client.calls[-1]["messages"]
    assert messages[0]["role"] == "system"
    assert messages[0]["content"].startswith("You are a finance bot.")
    assert MEMORY_HEADER in messages[0]["content"]
    assert "- [Income] Salary 5000" in messages[0]["content"]
    assert messages[1:] == [
        {"role": "user", "content": "Hi there"},
        {"role": "assistant", "content": "first"},
        {"role": "user", "content": "How are you?"},
    ]
    assert client.calls[-1]["config"].temperature == 0.7


def test_round_trip_keeps_relative_order(memory, history, alice):
    client = FakeChatClient(["r"])
    orch = _orchestrator(memory, history, client)
    texts = [f"message {i}" for i in range(5)]
    for t in texts:
        orch.run_turn(alice.id, t, api_key="k")
    users = [m.content for m in history.list(alice.id) if m.role == "user"]
    assert users == texts


def test_prior_working_set_overrides_stored_log(memory, history, alice):
    history.append(alice.id, "user", "stored turn")
    client = FakeChatClient(["ok"])
    prior = [{"role": "user", "content": "from client"}, {"role": "assistant", "content": "ack"}]
    _orchestrator(memory, history, client).run_turn(alice.id, "next", api_key="k", prior=prior)
    contents = [m["content"] for m in client.calls[0]["messages"][1:]]
    assert contents == ["from client", "ack", "next"]


def test_missing_key_returns_configuration_notice(memory, history, alice):
    client = FakeChatClient(["never"])
    result = _orchestrator(memory, history, client).run_turn(alice.id, "hello", api_key=None)
    assert result.reply == CONFIGURATION_NOTICE
    assert result.model_called is False
    assert client.calls == []


def test_upstream_failure_becomes_apology(memory, history, alice, upstream_down):
    client = FakeChatClient([upstream_down])
    result = _orchestrator(memory, history, client).run_turn(alice.id, "hello", api_key="k")
    assert result.reply == UPSTREAM_APOLOGY
    assert history.list(alice.id)[-1].content == UPSTREAM_APOLOGY


def test_memory_write_failure_does_not_block_reply(memory, history, alice, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(memory, "add", boom)
    client = FakeChatClient(["Sure. [MEMORY: Goal | Retire at 50]"])
    result = _orchestrator(memory, history, client).run_turn(alice.id, "I want to retire at 50", api_key="k")
    assert result.reply == "Sure."
    assert result.fact is None
    assert history.list(alice.id)[-1].content == "Sure."


def test_log_failure_does_not_abort_turn(memory, history, alice, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("log unavailable")

    monkeypatch.setattr(history, "append", boom)
    client = FakeChatClient(["still here"])
    result = _orchestrator(memory, history, client).run_turn(alice.id, "hello", api_key="k")
    assert result.reply == "still here"


def test_blank_text_rejected(memory, history, alice):
    with pytest.raises(ValueError):
        _orchestrator(memory, history, FakeChatClient()).run_turn(alice.id, "   ", api_key="k")


def test_directive_only_reply_falls_back_to_placeholder(memory, history, alice):
    client = FakeChatClient(["[MEMORY: Goal | Retire at 50]"])
    result = _orchestrator(memory, history, client).run_turn(alice.id, "I want to retire at 50", api_key="k")
    assert result.reply == "No response generated."
    assert result.fact.content == "Retire at 50"
    assert history.list(alice.id)[-1].content == "No response generated."
