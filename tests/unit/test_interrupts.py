"""Tests for the HITL interrupt protocol."""

import asyncio

import pytest

from delegationAgent.hitl import HumanResponse, InterruptManager, InterruptStatus
from delegationAgent.utils.errors import InterruptTimeout, InvalidTransition

PAYLOAD = {"type": "tool_approval", "reason": "High-risk shell operation"}


class TestWaitForResponse:
    @pytest.mark.asyncio
    async def test_timeout_leaves_interrupt_raised(self):
        manager = InterruptManager()
        manager.raise_interrupt("exec_1", "t1", PAYLOAD)

        with pytest.raises(InterruptTimeout):
            await manager.wait_for_response("exec_1", timeout_s=0.2)

        assert manager.get("exec_1").status == InterruptStatus.RAISED
        assert [i.execution_id for i in manager.pending()] == ["exec_1"]

    @pytest.mark.asyncio
    async def test_resolve_wakes_waiter(self):
        manager = InterruptManager()
        manager.raise_interrupt("exec_1", "t1", PAYLOAD)

        waiter = asyncio.create_task(manager.wait_for_response("exec_1", timeout_s=5))
        await asyncio.sleep(0.01)
        manager.resolve("exec_1", {"approved": True})

        response = await waiter
        assert response.kind == "accept"
        assert manager.get("exec_1").resolved
        assert manager.pending() == []

    @pytest.mark.asyncio
    async def test_already_resolved_returns_immediately(self):
        manager = InterruptManager()
        manager.raise_interrupt("exec_1", "t1", PAYLOAD)
        manager.resolve("exec_1", "reject")

        response = await manager.wait_for_response("exec_1", timeout_s=0.01)

        assert response.kind == "reject"

    @pytest.mark.asyncio
    async def test_expire_wakes_waiter_with_timeout(self):
        manager = InterruptManager()
        manager.raise_interrupt("exec_1", "t1", PAYLOAD)

        waiter = asyncio.create_task(manager.wait_for_response("exec_1", timeout_s=5))
        await asyncio.sleep(0.01)
        manager.expire("exec_1")

        with pytest.raises(InterruptTimeout):
            await waiter
        assert manager.get("exec_1").status == InterruptStatus.TIMED_OUT

    @pytest.mark.asyncio
    async def test_unknown_execution(self):
        with pytest.raises(KeyError):
            await InterruptManager().wait_for_response("missing", timeout_s=0.01)


class TestLifecycle:
    def test_second_raise_while_pending_is_rejected(self):
        manager = InterruptManager()
        manager.raise_interrupt("exec_1", "t1", PAYLOAD)

        with pytest.raises(InvalidTransition):
            manager.raise_interrupt("exec_1", "t1", PAYLOAD)

    def test_raise_again_after_resolution(self):
        manager = InterruptManager()
        manager.raise_interrupt("exec_1", "t1", PAYLOAD)
        manager.resolve("exec_1", True)

        again = manager.raise_interrupt("exec_1", "t1", PAYLOAD)

        assert again.status == InterruptStatus.RAISED

    def test_resolve_twice_is_rejected(self):
        manager = InterruptManager()
        manager.raise_interrupt("exec_1", "t1", PAYLOAD)
        manager.resolve("exec_1", True)

        with pytest.raises(InvalidTransition):
            manager.resolve("exec_1", False)
        assert manager.get("exec_1").summary()["response"]["kind"] == "accept"

    def test_clear(self):
        manager = InterruptManager()
        manager.raise_interrupt("exec_1", "t1", PAYLOAD)
        manager.clear("exec_1")
        assert manager.get("exec_1") is None

    def test_summary(self):
        manager = InterruptManager()
        interrupt = manager.raise_interrupt("exec_1", "t1", PAYLOAD, inline=True)

        summary = interrupt.summary()

        assert summary["status"] == "raised"
        assert summary["response"] is None
        assert summary["payload"]["type"] == "tool_approval"
        assert interrupt.inline


class TestHumanResponseCoerce:
    @pytest.mark.parametrize(
        "value, kind",
        [
            (True, "accept"),
            (False, "reject"),
            ("approve", "accept"),
            ("ignore", "reject"),
            ({"approved": False, "reason": "no"}, "reject"),
            ({"type": "edit", "args": {"command": "ls"}}, "edit"),
            ({"kind": "response", "response": "use staging"}, "response"),
        ],
    )
    def test_shapes(self, value, kind):
        assert HumanResponse.coerce(value).kind == kind

    def test_response_text_becomes_message(self):
        response = HumanResponse.coerce({"type": "response", "response": "use staging"})
        assert response.message == "use staging"

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            HumanResponse.coerce({"type": "maybe"})
        with pytest.raises(ValueError):
            HumanResponse(kind="maybe")
