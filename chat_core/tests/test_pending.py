import pytest

from chat_core.domain.exceptions import EmptyResultError, NetworkError
from chat_core.engine.pending import IDLE, Failed, PendingGeneration, Streaming


def test_idle_view_is_none():
    pending = PendingGeneration()
    assert pending.view() is None
    assert pending.is_idle()


def test_append_merges_role_and_text_in_order():
    pending = PendingGeneration()
    attempt = pending.begin()
    pending.append(attempt, "assistant", "Hel")
    pending.append(attempt, None, "lo")
    view = pending.view()
    assert view.text == "Hello"
    assert view.role == "assistant"
    assert not view.is_error


def test_stale_attempt_cannot_write():
    pending = PendingGeneration()
    old = pending.begin()
    pending.reset()
    assert not pending.append(old, None, "late")
    assert not pending.fail(old, NetworkError(code="NETWORK_ERROR", message="x"))
    assert pending.commit(old, lambda state: state.content) is None
    assert pending.state == IDLE


def test_fail_keeps_error_visible():
    pending = PendingGeneration()
    attempt = pending.begin()
    pending.fail(attempt, NetworkError(code="NETWORK_ERROR", message="connection refused"))
    view = pending.view()
    assert view.is_error
    assert view.text == "connection refused"


def test_commit_returns_to_idle():
    pending = PendingGeneration()
    attempt = pending.begin()
    pending.append(attempt, None, "done")
    assert pending.commit(attempt, lambda state: state.content) == "done"
    assert pending.view() is None


def test_commit_failure_becomes_failed():
    pending = PendingGeneration()
    attempt = pending.begin()

    def refuse(state: Streaming):
        raise EmptyResultError(code="EMPTY_RESULT", message="No text generated")

    with pytest.raises(EmptyResultError):
        pending.commit(attempt, refuse)
    assert isinstance(pending.state, Failed)


def test_discard_only_clears_matching_attempt():
    pending = PendingGeneration()
    first = pending.begin()
    second = pending.begin()
    assert not pending.discard(first)
    assert isinstance(pending.state, Streaming)
    assert pending.discard(second)
    assert pending.is_idle()
