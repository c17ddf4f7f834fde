"""Parallel tool dispatcher.

All calls of a batch start together (bounded by ``max_concurrent``). Each call has
its own timeout; a slow or failing call becomes a failed ``ToolResult`` and never
affects its siblings. Batch duration tracks the slowest call, not the sum.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from delegationAgent.runtime.models import EventType, ToolCall, ToolCallStatus, ToolResult
from delegationAgent.runtime.timeouts import Layer, TimeoutBudgetManager
from delegationAgent.tools.registry import ToolRegistry
from delegationAgent.utils.errors import BudgetExceeded, ToolError, ToolTimeout
from delegationAgent.utils.logging_utils import log_tool_call, log_tool_result

LOGGER = logging.getLogger(__name__)

EventHook = Callable[[EventType, Dict[str, Any]], Awaitable[Any]]


def stringify_output(output: Any) -> str:
    """Render a tool's return value as message content."""
    if isinstance(output, str):
        return output
    content = getattr(output, "content", None)
    if isinstance(content, str):
        return content
    try:
        return json.dumps(output, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(output)


class ToolDispatcher:
    """Runs batches of tool calls with per-call timeouts and failure isolation."""

    def __init__(
        self,
        registry: ToolRegistry,
        budget: TimeoutBudgetManager,
        *,
        max_concurrent: int = 8,
    ):
        self.registry = registry
        self.budget = budget
        self.max_concurrent = max_concurrent

    # ========== Public API ==========

    async def dispatch(
        self,
        calls: Sequence[ToolCall],
        per_call_timeout_s: Optional[float] = None,
        max_concurrent: Optional[int] = None,
        *,
        deadline: Optional[float] = None,
        on_event: Optional[EventHook] = None,
    ) -> List[ToolResult]:
        """Execute calls concurrently.

        Args:
            calls: Tool calls of one step
            per_call_timeout_s: Timeout for each call (tool-layer default when None)
            max_concurrent: Concurrency bound (dispatcher default when None)
            deadline: Absolute deadline of the owning execution; each call is
                clamped to the tool-layer allocation under it
            on_event: Async hook receiving tool_started / tool_finished events

        Returns:
            One result per call, in input order
        """
        if not calls:
            return []

        semaphore = asyncio.Semaphore(max_concurrent or self.max_concurrent)
        started = time.perf_counter()

        async def run(call: ToolCall) -> ToolResult:
            async with semaphore:
                return await self._run_one(call, per_call_timeout_s, deadline, on_event)

        results = await asyncio.gather(*(run(call) for call in calls))

        failed = sum(1 for result in results if not result.ok)
        LOGGER.info(
            f"Tool batch finished: {len(results)} call(s), {failed} failed, "
            f"{time.perf_counter() - started:.2f}s"
        )
        return list(results)

    async def dispatch_sequential(
        self,
        calls: Sequence[ToolCall],
        per_call_timeout_s: Optional[float] = None,
        *,
        deadline: Optional[float] = None,
        on_event: Optional[EventHook] = None,
    ) -> List[ToolResult]:
        """Execute calls one by one, stopping at the first failure.

        Calls after a failure are reported as failed without being started.
        """
        results: List[ToolResult] = []
        for index, call in enumerate(calls):
            result = await self._run_one(call, per_call_timeout_s, deadline, on_event)
            results.append(result)
            if not result.ok:
                for skipped in calls[index + 1:]:
                    skipped.status = ToolCallStatus.FAILED
                    results.append(ToolResult.failure(
                        skipped, ToolError(skipped.name, f"skipped after '{call.name}' failed")
                    ))
                break
        return results

    # ========== Internals ==========

    def _timeout_for(self, call: ToolCall, per_call_timeout_s: Optional[float], deadline: Optional[float]) -> float:
        timeout = per_call_timeout_s
        if timeout is None:
            timeout = self.budget.policies[Layer.TOOL].timeout_s
        meta = self.registry.get_meta_optional(call.name)
        if meta and meta.timeout_s:
            timeout = min(timeout, meta.timeout_s)
        if deadline is not None:
            tool_deadline = self.budget.allocate(deadline, Layer.TOOL, timeout_s=timeout)
            timeout = min(timeout, tool_deadline - self.budget.now())
        return timeout

    async def _run_one(
        self,
        call: ToolCall,
        per_call_timeout_s: Optional[float],
        deadline: Optional[float],
        on_event: Optional[EventHook],
    ) -> ToolResult:
        call.status = ToolCallStatus.RUNNING
        call.started_at = time.time()
        started = time.perf_counter()

        if on_event:
            await on_event(EventType.TOOL_STARTED, {"tool_call_id": call.id, "name": call.name, "args": call.args})
        log_tool_call(LOGGER, call.name, call.args)

        try:
            timeout = self._timeout_for(call, per_call_timeout_s, deadline)
            tool = self.registry.get_tool(call.name)
        except BudgetExceeded as e:
            result = ToolResult.failure(call, e)
        except KeyError:
            result = ToolResult.failure(call, ToolError(call.name, "tool is not registered"))
        else:
            try:
                output = await asyncio.wait_for(tool.ainvoke(call.args), timeout=timeout)
            except asyncio.TimeoutError:
                result = ToolResult.failure(call, ToolTimeout(call.name, timeout), time.perf_counter() - started)
            except Exception as e:
                result = ToolResult.failure(call, ToolError(call.name, f"{type(e).__name__}: {e}"), time.perf_counter() - started)
            else:
                result = ToolResult.success(call, stringify_output(output), time.perf_counter() - started)

        call.completed_at = time.time()
        call.status = result.status
        if result.ok:
            call.result = result.content
        else:
            call.error = result.error

        log_tool_result(LOGGER, call.name, result.content if result.ok else result.error, success=result.ok)
        if on_event:
            await on_event(EventType.TOOL_FINISHED, {
                "tool_call_id": call.id,
                "name": call.name,
                "status": result.status.value,
                "error": result.error,
                "error_kind": result.error_kind,
                "duration_s": round(result.duration_s, 3),
            })
        return result
