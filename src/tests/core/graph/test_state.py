"""Tests for run-time state helpers."""

import time

import pytest

from graphflow.core.errors import ExecutionCancelledError, NodeInterrupt
from graphflow.core.graph import CancellationToken, RunContext, interrupt


class TestCancellationToken:
    """Test suite for CancellationToken."""

    def test_fresh_token(self):
        """Test that a new token is not cancelled."""
        token = CancellationToken()
        assert not token.cancelled
        assert token.reason is None
        token.raise_if_cancelled()

    def test_cancel(self):
        """Test cancelling with a reason."""
        token = CancellationToken()
        token.cancel("user request")
        assert token.cancelled
        assert token.reason == "user request"
        with pytest.raises(ExecutionCancelledError, match="user request"):
            token.raise_if_cancelled()

    def test_first_reason_wins(self):
        """Test that later cancels keep the first reason."""
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"

    def test_deadline(self):
        """Test that a timeout expires the token."""
        token = CancellationToken(timeout=0.01)
        assert not token.cancelled
        time.sleep(0.02)
        assert token.reason == "deadline exceeded"

    def test_child_follows_parent(self):
        """Test that cancelling a parent cancels its children."""
        parent = CancellationToken()
        child = parent.child()
        parent.cancel("shutdown")
        assert child.cancelled
        assert child.reason == "shutdown"

    def test_parent_ignores_child(self):
        """Test that cancelling a child leaves the parent alone."""
        parent = CancellationToken()
        parent.child().cancel()
        assert not parent.cancelled


class TestInterrupt:
    """Test suite for interrupt()."""

    def test_raises_without_resume_value(self):
        """Test that the first pass raises NodeInterrupt."""
        ctx = RunContext(execution_id="e-1", node="review")
        with pytest.raises(NodeInterrupt) as exc_info:
            interrupt(ctx, {"question": "ok?"})
        assert exc_info.value.value == {"question": "ok?"}
        assert exc_info.value.node == "review"

    def test_returns_resume_value(self):
        """Test that a resumed pass returns the answer."""
        ctx = RunContext(execution_id="e-1", node="review", resume_value="yes")
        assert interrupt(ctx, "ok?") == "yes"

    def test_context_cancellation(self):
        """Test the context's view of its token."""
        token = CancellationToken()
        ctx = RunContext(execution_id="e-1", token=token)
        assert not ctx.cancelled
        token.cancel()
        assert ctx.cancelled
        with pytest.raises(ExecutionCancelledError):
            ctx.raise_if_cancelled()
