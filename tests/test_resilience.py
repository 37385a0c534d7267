"""Tests for supervised_task and with_deadline."""

from __future__ import annotations

import asyncio

import pytest
from loguru import logger

from desperados.net.resilience import supervised_task, with_deadline


# ---------------------------------------------------------------------------
# supervised_task
# ---------------------------------------------------------------------------

class TestSupervisedTask:
    @pytest.mark.asyncio
    async def test_normal_completion(self):
        async def good():
            return 42

        task = supervised_task(good(), name="test-good")
        assert await task == 42
        assert task.get_name() == "test-good"

    @pytest.mark.asyncio
    async def test_exception_is_retrievable(self):
        async def bad():
            raise RuntimeError("boom")

        task = supervised_task(bad(), name="test-bad")
        with pytest.raises(RuntimeError, match="boom"):
            await task

    @pytest.mark.asyncio
    async def test_cancellation(self):
        async def forever():
            await asyncio.sleep(3600)

        task = supervised_task(forever())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_failure_is_logged_under_component(self):
        messages: list[str] = []
        sink = logger.add(messages.append, format="{level} {message}")
        try:
            async def bad():
                raise ValueError("bad reply")

            task = supervised_task(bad(), name="ranger-10.0.0", component="Ranger")
            with pytest.raises(ValueError):
                await task
            await asyncio.sleep(0)
        finally:
            logger.remove(sink)

        assert len(messages) == 1
        assert messages[0].startswith("ERROR [Desp/Ranger] loop 'ranger-10.0.0' died")
        assert "bad reply" in messages[0]


# ---------------------------------------------------------------------------
# with_deadline
# ---------------------------------------------------------------------------

class TestWithDeadline:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def quick():
            return "ok"

        assert await with_deadline(quick(), 1.0) == "ok"

    @pytest.mark.asyncio
    async def test_timeout_yields_none(self):
        assert await with_deadline(asyncio.sleep(10), 0.01) is None

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        async def broken():
            raise ConnectionRefusedError("nope")

        with pytest.raises(ConnectionRefusedError):
            await with_deadline(broken(), 1.0)
