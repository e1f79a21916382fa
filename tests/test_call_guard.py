# tests/test_call_guard.py
from __future__ import annotations

from toolrelay.orchestration.call_guard import CallGuard


def test_identical_call_refused_on_third_attempt() -> None:
    guard = CallGuard()
    args = {"query": "python asyncio"}
    assert guard.check("web_search", args).permitted
    assert guard.check("web_search", args).permitted
    third = guard.check("web_search", args)
    assert not third.permitted
    assert third.reason == "duplicate"
    assert third.message.startswith("Duplicate call refused")
    # refusal does not count
    assert guard.exact[guard.key("web_search", args)] == 2
    assert guard.by_name["web_search"] == 2


def test_argument_key_order_does_not_matter() -> None:
    guard = CallGuard(duplicate_limit=1)
    assert guard.check("t", {"a": 1, "b": 2}).permitted
    assert not guard.check("t", {"b": 2, "a": 1}).permitted


def test_different_arguments_are_independent() -> None:
    guard = CallGuard()
    for q in ("a", "b", "c", "d"):
        assert guard.check("web_search", {"query": q}).permitted


def test_name_cap_refuses_with_budget_message() -> None:
    guard = CallGuard(caps={"fetch_url": 2})
    assert guard.check("fetch_url", {"url": "https://a"}).permitted
    assert guard.check("fetch_url", {"url": "https://b"}).permitted
    refused = guard.check("fetch_url", {"url": "https://c"})
    assert not refused.permitted
    assert refused.reason == "budget"
    assert "at most 2" in refused.message
    assert guard.by_name["fetch_url"] == 2
    # other names are unaffected
    assert guard.check("web_search", {"query": "x"}).permitted


def test_duplicate_is_checked_before_budget() -> None:
    guard = CallGuard(duplicate_limit=1, caps={"fetch_url": 1})
    assert guard.check("fetch_url", {"url": "https://a"}).permitted
    assert guard.check("fetch_url", {"url": "https://a"}).reason == "duplicate"
    assert guard.check("fetch_url", {"url": "https://b"}).reason == "budget"


def test_zero_cap_refuses_first_call() -> None:
    guard = CallGuard(caps={"send_email": 0})
    decision = guard.check("send_email", {})
    assert not decision.permitted
    assert decision.reason == "budget"
