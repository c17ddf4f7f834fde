"""Human-in-the-loop interrupt protocol.

Interrupt 状态机：none → raised → (resolved | timed_out)

- raise_interrupt: 执行暂停时登记一个待审批的中断
- wait_for_response: 只阻塞显式等待的调用方，始终有超时上限
- resolve: 人工响应到达，唤醒等待方
- expire: 预算耗尽，中断标记为 timed_out
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from delegationAgent.utils.errors import InterruptTimeout, InvalidTransition

LOGGER = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT_S = 300.0


class InterruptStatus(str, Enum):
    RAISED = "raised"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"


# 响应类型映射（兼容 agent-inbox 风格的 type 字段）
_KIND_ALIASES = {
    "accept": "accept",
    "approve": "accept",
    "approved": "accept",
    "reject": "reject",
    "ignore": "reject",
    "deny": "reject",
    "edit": "edit",
    "response": "response",
}


@dataclass(frozen=True)
class HumanResponse:
    """Human answer to an interrupt.

    Attributes:
        kind: ``accept`` run the calls, ``reject`` skip them, ``edit`` run them with
            edited arguments, ``response`` answer on the tools' behalf with ``message``
        edits: Edited arguments keyed by tool_call_id (kind=edit)
        args: Edited arguments when exactly one call is pending (kind=edit)
        message: Reviewer note, or the answer itself for kind=response
    """

    kind: str = "accept"
    edits: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    args: Optional[Dict[str, Any]] = None
    message: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in ("accept", "reject", "edit", "response"):
            raise ValueError(f"Unknown response kind: {self.kind}")

    @property
    def approved(self) -> bool:
        return self.kind != "reject"

    @classmethod
    def coerce(cls, value: Union["HumanResponse", Mapping[str, Any], bool, str]) -> "HumanResponse":
        """Normalize the accepted response shapes.

        Examples:
            >>> HumanResponse.coerce({"approved": True}).kind
            'accept'
            >>> HumanResponse.coerce({"type": "ignore"}).kind
            'reject'
            >>> HumanResponse.coerce({"type": "edit", "args": {"command": "ls"}}).args
            {'command': 'ls'}
        """
        if isinstance(value, HumanResponse):
            return value
        if isinstance(value, bool):
            return cls(kind="accept" if value else "reject")
        if isinstance(value, str):
            kind = _KIND_ALIASES.get(value.lower())
            if kind is None:
                raise ValueError(f"Unknown response kind: {value}")
            return cls(kind=kind)
        if not isinstance(value, Mapping):
            raise ValueError(f"Unsupported response: {value!r}")

        message = value.get("message") or value.get("reason")
        if "approved" in value and "type" not in value and "kind" not in value:
            return cls(kind="accept" if value["approved"] else "reject", message=message)

        raw_kind = str(value.get("type") or value.get("kind") or "accept").lower()
        kind = _KIND_ALIASES.get(raw_kind)
        if kind is None:
            raise ValueError(f"Unknown response kind: {raw_kind}")
        return cls(
            kind=kind,
            edits=dict(value.get("edits") or {}),
            args=value.get("args"),
            message=message or (value.get("response") if kind == "response" else None),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "edits": self.edits, "args": self.args, "message": self.message}


@dataclass
class Interrupt:
    """A pause awaiting human input."""

    interrupt_id: str
    execution_id: str
    thread_id: str
    payload: Dict[str, Any]
    created_at: float = field(default_factory=time.time)
    status: InterruptStatus = InterruptStatus.RAISED
    response: Optional[HumanResponse] = None
    resolved_at: Optional[float] = None
    inline: bool = False  # The execution itself is waiting (delegated child)
    _event: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    @property
    def resolved(self) -> bool:
        return self.status == InterruptStatus.RESOLVED

    def summary(self) -> Dict[str, Any]:
        return {
            "interrupt_id": self.interrupt_id,
            "execution_id": self.execution_id,
            "thread_id": self.thread_id,
            "payload": self.payload,
            "status": self.status.value,
            "created_at": self.created_at,
            "response": self.response.to_dict() if self.response else None,
        }


class InterruptManager:
    """中断管理器：登记、等待、解决待审批的中断"""

    def __init__(self, default_timeout_s: float = DEFAULT_WAIT_TIMEOUT_S):
        self.default_timeout_s = default_timeout_s
        self._interrupts: Dict[str, Interrupt] = {}

    def raise_interrupt(
        self,
        execution_id: str,
        thread_id: str,
        payload: Dict[str, Any],
        *,
        inline: bool = False,
    ) -> Interrupt:
        """登记中断

        Raises:
            InvalidTransition: 该 execution 已有未解决的中断
        """
        existing = self._interrupts.get(execution_id)
        if existing is not None and existing.status == InterruptStatus.RAISED:
            raise InvalidTransition(f"Execution {execution_id} already has a pending interrupt")

        interrupt = Interrupt(
            interrupt_id=f"int_{uuid.uuid4().hex[:10]}",
            execution_id=execution_id,
            thread_id=thread_id,
            payload=dict(payload),
            inline=inline,
        )
        self._interrupts[execution_id] = interrupt
        LOGGER.info(f"Interrupt raised for {execution_id}: {payload.get('reason', payload.get('type', ''))}")
        return interrupt

    def get(self, execution_id: str) -> Optional[Interrupt]:
        return self._interrupts.get(execution_id)

    def pending(self) -> List[Interrupt]:
        """所有未解决的中断"""
        return [i for i in self._interrupts.values() if i.status == InterruptStatus.RAISED]

    async def wait_for_response(self, execution_id: str, timeout_s: Optional[float] = None) -> HumanResponse:
        """等待人工响应（有超时上限）

        超时后中断保持 raised，执行保持 awaiting_input。

        Raises:
            KeyError: 没有该 execution 的中断
            InterruptTimeout: 超时或中断已过期
        """
        interrupt = self._interrupts.get(execution_id)
        if interrupt is None:
            raise KeyError(f"No interrupt for execution: {execution_id}")

        timeout = self.default_timeout_s if timeout_s is None else timeout_s
        if interrupt.status == InterruptStatus.RAISED:
            try:
                await asyncio.wait_for(interrupt._event.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                LOGGER.info(f"No response for {execution_id} within {timeout:.2f}s")
                raise InterruptTimeout(execution_id, timeout) from None

        if interrupt.status == InterruptStatus.RESOLVED and interrupt.response is not None:
            return interrupt.response
        raise InterruptTimeout(execution_id, timeout)

    def resolve(self, execution_id: str, response: Union[HumanResponse, Mapping[str, Any], bool, str]) -> Interrupt:
        """解决中断并唤醒等待方

        Raises:
            KeyError: 没有该 execution 的中断
            InvalidTransition: 中断不处于 raised 状态
        """
        interrupt = self._interrupts.get(execution_id)
        if interrupt is None:
            raise KeyError(f"No interrupt for execution: {execution_id}")
        if interrupt.status != InterruptStatus.RAISED:
            raise InvalidTransition(f"Interrupt for {execution_id} is already {interrupt.status.value}")

        interrupt.response = HumanResponse.coerce(response)
        interrupt.status = InterruptStatus.RESOLVED
        interrupt.resolved_at = time.time()
        interrupt._event.set()
        LOGGER.info(f"Interrupt resolved for {execution_id}: {interrupt.response.kind}")
        return interrupt

    def expire(self, execution_id: str) -> Optional[Interrupt]:
        """预算耗尽：标记为 timed_out 并唤醒等待方"""
        interrupt = self._interrupts.get(execution_id)
        if interrupt is None or interrupt.status != InterruptStatus.RAISED:
            return interrupt
        interrupt.status = InterruptStatus.TIMED_OUT
        interrupt._event.set()
        LOGGER.info(f"Interrupt expired for {execution_id}")
        return interrupt

    def clear(self, execution_id: str) -> None:
        self._interrupts.pop(execution_id, None)
