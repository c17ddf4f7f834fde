"""Runtime assembly and the orchestrator control API."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Union

from langchain_core.messages import BaseMessage, HumanMessage
from langchain_core.tools import BaseTool

from delegationAgent.agents import AgentConfig, AgentRegistry, scan_agents_from_config
from delegationAgent.agents.interfaces import ChatRunnable, ModelResolver
from delegationAgent.cache.graph_cache import GraphCache
from delegationAgent.config import Settings, get_settings, resolve_project_path
from delegationAgent.delegation.coordinator import DelegationCoordinator
from delegationAgent.graph.builder import PlanDependencies
from delegationAgent.graph.state import new_execution_state
from delegationAgent.hitl import ApprovalChecker, HumanResponse, InterruptManager, InterruptStatus
from delegationAgent.persistence import (
    CheckpointAdapter,
    CheckpointStore,
    InMemoryCheckpointStore,
    SQLiteCheckpointStore,
    derive_user_id,
)
from delegationAgent.runtime.context import OrchestratorContext
from delegationAgent.runtime.events import EventChannel
from delegationAgent.runtime.execution import ExecutionManager
from delegationAgent.runtime.models import (
    Event,
    Execution,
    ExecutionResult,
    ExecutionStatus,
    new_execution_id,
)
from delegationAgent.runtime.timeouts import Clock, Layer, TimeoutBudgetManager
from delegationAgent.telemetry import configure_tracing
from delegationAgent.tools import ToolDispatcher, ToolMeta, ToolRegistry
from delegationAgent.utils.errors import InvalidTransition, UnknownAgentError
from delegationAgent.utils.logging_utils import setup_logging_from_settings
from delegationAgent.utils.message_utils import filter_stale_tool_messages
from delegationAgent.utils.resilience import CircuitBreaker, ModelCallGuard
from delegationAgent.utils.retry import RetryPolicy

LOGGER = logging.getLogger(__name__)

UserInput = Union[str, BaseMessage, Sequence[BaseMessage]]
ResponseInput = Union[HumanResponse, Dict[str, Any], bool, str]


@dataclass(frozen=True)
class CheckpointSummary:
    """Latest checkpoint of a thread, as returned by ``get_state``."""

    thread_id: str
    checkpoint_id: int
    execution_id: Optional[str]
    agent_id: Optional[str]
    status: str
    phase: Optional[str]
    step: int
    source: Optional[str]
    created_at: datetime
    derived_user_id: str
    message_count: int
    final_answer: Optional[str] = None
    error: Optional[str] = None
    pending_approval: Optional[Dict[str, Any]] = None


@dataclass
class RunHandle:
    """One in-flight drive of an execution (start or resume)."""

    execution: Execution
    channel: Optional[EventChannel]
    task: "asyncio.Task[ExecutionResult]"
    state: Dict[str, Any]  # State the drive started from


def _to_messages(user_input: UserInput) -> List[BaseMessage]:
    if isinstance(user_input, str):
        return [HumanMessage(content=user_input)]
    if isinstance(user_input, BaseMessage):
        return [user_input]
    return list(user_input)


class Orchestrator:
    """Control API: start, resume, cancel and inspect executions.

    Every call returns promptly; executions run as asyncio tasks. A run started
    with ``stream=True`` publishes its events (and those of its delegated children)
    into a bounded channel that must be consumed through ``events``.
    """

    def __init__(self, context: OrchestratorContext):
        self.context = context
        self.settings = context.settings
        self.manager = ExecutionManager(context)
        self._runs: Dict[str, RunHandle] = {}
        # Finished or paused drives whose result nobody collected yet (bounded, oldest dropped)
        self._finished: "OrderedDict[str, RunHandle]" = OrderedDict()
        self._paused: Dict[str, str] = {}  # top-level execution_id -> thread_id

    # ========== Control API ==========

    async def start(
        self,
        agent_id: str,
        thread_id: str,
        user_input: UserInput,
        *,
        user_id: Optional[str] = None,
        stream: bool = True,
    ) -> str:
        """Start a top-level execution and return its id.

        Earlier turns of the thread are carried over with stale tool results
        reduced to system breadcrumbs.

        Raises:
            UnknownAgentError: ``agent_id`` is not an enabled agent
            InvalidTransition: The thread has a running or unfinished execution
        """
        if agent_id not in self.context.agent_registry:
            raise UnknownAgentError(agent_id)
        self._ensure_not_running(thread_id)
        history = await self._carry_over(thread_id)

        execution = Execution(
            execution_id=new_execution_id(),
            thread_id=thread_id,
            agent_id=agent_id,
            deadline=self.context.budget.allocate(None, Layer.SUPERVISOR),
            user_id=derive_user_id(thread_id, user_id),
        )
        state = new_execution_state(
            execution_id=execution.execution_id,
            thread_id=thread_id,
            agent_id=agent_id,
            messages=history + _to_messages(user_input),
            max_agent_cycles=self.settings.runtime.max_agent_cycles,
            user_id=execution.user_id,
        )
        LOGGER.info(f"Starting {execution.execution_id}: agent={agent_id}, thread={thread_id}, history={len(history)}")
        self._launch(execution, stream, lambda channel: self.manager.run(execution, state, channel), state)
        return execution.execution_id

    async def run(
        self,
        agent_id: str,
        thread_id: str,
        user_input: UserInput,
        *,
        user_id: Optional[str] = None,
    ) -> ExecutionResult:
        """Start without event streaming and wait for the outcome."""
        execution_id = await self.start(agent_id, thread_id, user_input, user_id=user_id, stream=False)
        return await self.wait(execution_id)

    async def wait(self, execution_id: str, timeout_s: Optional[float] = None) -> ExecutionResult:
        """Wait for the current drive of an execution to finish or pause.

        Raises:
            KeyError: Unknown or already collected execution
            asyncio.TimeoutError: ``timeout_s`` elapsed (the execution keeps running)
        """
        handle = self._handle(execution_id)
        try:
            if timeout_s is None:
                result = await asyncio.shield(handle.task)
            else:
                result = await asyncio.wait_for(asyncio.shield(handle.task), timeout=timeout_s)
        except asyncio.CancelledError:
            if not handle.task.cancelled():
                raise
            result = self._cancelled_result(handle.execution)
        if self._runs.get(execution_id) is handle:
            del self._runs[execution_id]
        if self._finished.get(execution_id) is handle:
            del self._finished[execution_id]
        return result

    def events(self, execution_id: str) -> AsyncIterator[Event]:
        """Event stream of the current drive (single consumer).

        Raises:
            KeyError: Unknown execution
            ValueError: The execution was started without streaming
        """
        handle = self._handle(execution_id)
        if handle.channel is None:
            raise ValueError(f"Execution {execution_id} was started with stream=False")
        return handle.channel.__aiter__()

    async def resume(self, execution_id: str, response: ResponseInput, *, stream: bool = True) -> str:
        """Answer a paused execution and continue it.

        A delegated child waiting inline is woken up inside its parent's run;
        a paused top-level execution is continued from its latest checkpoint.

        Raises:
            KeyError: Nothing is paused under ``execution_id``
            InvalidTransition: The interrupt was already answered or expired
        """
        response = HumanResponse.coerce(response)
        interrupt = self.context.interrupts.get(execution_id)
        if interrupt is not None and interrupt.inline:
            self.context.interrupts.resolve(execution_id, response)
            return execution_id

        thread_id = interrupt.thread_id if interrupt is not None else self._paused.get(execution_id)
        if thread_id is None:
            raise KeyError(f"No paused execution: {execution_id}")
        return await self._resume_thread(thread_id, response, expected_execution_id=execution_id, stream=stream)

    async def resume_thread(
        self,
        thread_id: str,
        response: Optional[ResponseInput] = None,
        *,
        stream: bool = True,
    ) -> str:
        """Continue the latest unfinished execution of a thread (e.g. after a restart).

        Without a response a crashed execution continues after its last committed
        step, and a paused one re-raises its interrupt.
        """
        coerced = HumanResponse.coerce(response) if response is not None else None
        return await self._resume_thread(thread_id, coerced, stream=stream)

    async def cancel(self, execution_id: str) -> bool:
        """Cancel a running or paused execution.

        Returns:
            False when nothing cancellable exists under ``execution_id``
        """
        handle = self._runs.get(execution_id)
        if handle is not None and not handle.task.done():
            handle.task.cancel()
            await asyncio.wait({handle.task})
            if not handle.execution.is_terminal:
                # Cancelled before its first step ran
                await self.manager.terminate(
                    handle.execution, handle.state, handle.channel, ExecutionStatus.FAILED, "cancelled",
                )
                if handle.channel is not None:
                    await handle.channel.close()
            self._retire(execution_id, handle.task)
            return True

        interrupt = self.context.interrupts.get(execution_id)
        if interrupt is not None and interrupt.inline:
            # The waiting child ends timed_out; its parent gets a failed delegation result
            return self.context.interrupts.expire(execution_id) is not None

        thread_id = self._paused.pop(execution_id, None)
        if thread_id is None:
            return False
        checkpoint = await self.context.checkpoints.latest(thread_id)
        if checkpoint is None or checkpoint.metadata.get("execution", {}).get("execution_id") != execution_id:
            return False
        execution = Execution.from_snapshot(checkpoint.metadata["execution"], deadline=time.time())
        state = CheckpointAdapter.load_state(checkpoint)
        self.context.interrupts.clear(execution_id)
        await self.manager.terminate(execution, state, None, ExecutionStatus.FAILED, "cancelled")
        return True

    async def get_state(self, thread_id: str) -> Optional[CheckpointSummary]:
        """Summary of the latest checkpoint of ``thread_id`` (None when there is none)."""
        checkpoint = await self.context.checkpoints.latest(thread_id)
        if checkpoint is None:
            return None
        state = CheckpointAdapter.load_state(checkpoint)
        metadata = checkpoint.metadata
        execution = metadata.get("execution") or {}
        return CheckpointSummary(
            thread_id=thread_id,
            checkpoint_id=checkpoint.checkpoint_id,
            execution_id=execution.get("execution_id"),
            agent_id=execution.get("agent_id"),
            status=metadata.get("status", "unknown"),
            phase=metadata.get("phase"),
            step=int(metadata.get("step") or 0),
            source=metadata.get("source"),
            created_at=checkpoint.created_at,
            derived_user_id=checkpoint.derived_user_id,
            message_count=len(state.get("messages", [])),
            final_answer=state.get("final_answer"),
            error=execution.get("error"),
            pending_approval=state.get("pending_approval"),
        )

    async def wait_for_response(self, execution_id: str, timeout_s: Optional[float] = None) -> HumanResponse:
        """Block until a human answers ``execution_id``'s interrupt (bounded).

        Raises:
            InterruptTimeout: No answer in time; the execution stays awaiting_input
        """
        timeout = self.settings.hitl.wait_timeout_s if timeout_s is None else timeout_s
        return await self.context.interrupts.wait_for_response(execution_id, timeout_s=timeout)

    def pending_interrupts(self) -> List[Dict[str, Any]]:
        return [interrupt.summary() for interrupt in self.context.interrupts.pending()]

    def running_executions(self) -> List[str]:
        """Ids of drives still in flight."""
        return [execution_id for execution_id, handle in self._runs.items() if not handle.task.done()]

    # ========== Agent management ==========

    def update_agent(self, agent: AgentConfig) -> Optional[AgentConfig]:
        """Replace an agent definition; its cached plan is rebuilt on next use."""
        previous = self.context.agent_registry.update(agent)
        self.context.graph_cache.invalidate(agent.id)
        return previous

    def invalidate(self, agent_id: Optional[str] = None) -> int:
        return self.context.graph_cache.invalidate(agent_id)

    def cache_stats(self) -> Dict[str, Any]:
        return self.context.graph_cache.stats()

    async def close(self) -> None:
        """Cancel every running execution."""
        for execution_id in list(self._runs):
            await self.cancel(execution_id)

    # ========== Internals ==========

    def _launch(
        self,
        execution: Execution,
        stream: bool,
        runner: Callable[[Optional[EventChannel]], Awaitable[ExecutionResult]],
        state: Dict[str, Any],
    ) -> RunHandle:
        channel = EventChannel(self.settings.runtime.event_queue_maxsize) if stream else None
        task = asyncio.create_task(
            self._supervise(execution, channel, runner(channel)),
            name=f"execution:{execution.execution_id}",
        )
        self._finished.pop(execution.execution_id, None)
        handle = RunHandle(execution=execution, channel=channel, task=task, state=state)
        self._runs[execution.execution_id] = handle
        return handle

    async def _supervise(
        self,
        execution: Execution,
        channel: Optional[EventChannel],
        drive: Awaitable[ExecutionResult],
    ) -> ExecutionResult:
        try:
            result = await drive
        except asyncio.CancelledError:
            LOGGER.info(f"Execution {execution.execution_id} cancelled ({execution.status.value})")
            result = self._cancelled_result(execution)
        finally:
            if channel is not None:
                await channel.close()

        if result.paused:
            self._paused[execution.execution_id] = execution.thread_id
        self._retire(execution.execution_id, asyncio.current_task())
        return result

    def _handle(self, execution_id: str) -> RunHandle:
        handle = self._runs.get(execution_id) or self._finished.get(execution_id)
        if handle is None:
            raise KeyError(f"No running execution: {execution_id}")
        return handle

    def _retire(self, execution_id: str, task: Optional["asyncio.Task[Any]"]) -> None:
        """Move a drive that stopped running out of ``_runs``.

        Its result stays collectable through ``wait``/``events`` until the
        ``retained_results`` bound pushes it out.
        """
        handle = self._runs.get(execution_id)
        if handle is None or handle.task is not task:
            return
        del self._runs[execution_id]
        self._finished[execution_id] = handle
        self._finished.move_to_end(execution_id)
        while len(self._finished) > self.settings.runtime.retained_results:
            dropped, _ = self._finished.popitem(last=False)
            LOGGER.debug(f"Dropped uncollected result of {dropped}")

    @staticmethod
    def _cancelled_result(execution: Execution) -> ExecutionResult:
        return ExecutionResult(
            execution_id=execution.execution_id,
            thread_id=execution.thread_id,
            agent_id=execution.agent_id,
            status=execution.status,
            error=execution.error or "cancelled",
            unpersisted_risk=execution.unpersisted_risk,
        )

    def _ensure_not_running(self, thread_id: str) -> None:
        for handle in self._runs.values():
            if handle.execution.thread_id == thread_id and not handle.task.done():
                raise InvalidTransition(
                    f"Thread {thread_id} already runs {handle.execution.execution_id}"
                )

    async def _carry_over(self, thread_id: str) -> List[BaseMessage]:
        checkpoint = await self.context.checkpoints.latest(thread_id)
        if checkpoint is None:
            return []
        status = ExecutionStatus(checkpoint.metadata.get("status", ExecutionStatus.COMPLETED.value))
        if status == ExecutionStatus.AWAITING_INPUT:
            raise InvalidTransition(f"Thread {thread_id} is awaiting input; resume or cancel it first")
        if not status.is_terminal:
            raise InvalidTransition(f"Thread {thread_id} has an unfinished execution; use resume_thread")
        state = CheckpointAdapter.load_state(checkpoint)
        return filter_stale_tool_messages(state.get("messages", []))

    async def _resume_thread(
        self,
        thread_id: str,
        response: Optional[HumanResponse],
        *,
        expected_execution_id: Optional[str] = None,
        stream: bool = True,
    ) -> str:
        self._ensure_not_running(thread_id)
        checkpoint = await self.context.checkpoints.latest(thread_id)
        if checkpoint is None:
            raise KeyError(f"No checkpoint for thread: {thread_id}")

        snapshot = checkpoint.metadata.get("execution") or {}
        execution_id = snapshot.get("execution_id")
        if expected_execution_id and execution_id != expected_execution_id:
            raise InvalidTransition(f"Latest checkpoint of {thread_id} belongs to {execution_id}, not {expected_execution_id}")

        status = ExecutionStatus(checkpoint.metadata.get("status", ExecutionStatus.CREATED.value))
        if status.is_terminal:
            raise InvalidTransition(f"Execution {execution_id} already {status.value}")

        state = CheckpointAdapter.load_state(checkpoint)
        if response is not None and not state.get("pending_approval"):
            raise InvalidTransition(f"Execution {execution_id} is not awaiting a response")

        interrupt = self.context.interrupts.get(execution_id)
        if response is not None and interrupt is not None and interrupt.status == InterruptStatus.RAISED:
            # Wakes callers blocked in wait_for_response
            self.context.interrupts.resolve(execution_id, response)
        elif response is not None:
            self.context.interrupts.clear(execution_id)

        layer = Layer.SUPERVISOR if int(snapshot.get("depth", 0)) == 0 else Layer.SUBAGENT
        execution = Execution.from_snapshot(snapshot, deadline=self.context.budget.allocate(None, layer))
        self._paused.pop(execution_id, None)

        LOGGER.info(f"Resuming {execution_id} from {thread_id}#{checkpoint.checkpoint_id} ({status.value})")
        self._launch(execution, stream, lambda channel: self.manager.resume(execution, state, channel, response), state)
        return execution_id


# ========== Assembly ==========

def build_orchestrator(
    *,
    model_resolver: ModelResolver,
    tools: Iterable[BaseTool] = (),
    tool_meta: Iterable[ToolMeta] = (),
    settings: Optional[Settings] = None,
    agent_registry: Optional[AgentRegistry] = None,
    checkpoint_store: Optional[CheckpointStore] = None,
    router_model: Optional[ChatRunnable] = None,
    approval_checker: Optional[ApprovalChecker] = None,
    clock: Optional[Clock] = None,
    warmup: bool = True,
    configure_logging: bool = False,
) -> Orchestrator:
    """Assemble an orchestrator from settings and injected collaborators.

    Args:
        model_resolver: Returns the chat model for an agent and its visible tools
        tools: LangChain tools addressable by name from agent configs
        tool_meta: Per-tool metadata (risk, timeout override)
        settings: Settings (loaded from the environment when None)
        agent_registry: Agents (scanned from ``settings.runtime.agents_path`` when None)
        checkpoint_store: Store backend (SQLite when ``checkpoint.db_path`` is set,
            in-memory otherwise)
        router_model: Model used for routing when mention and heuristic are not decisive
        approval_checker: HITL rules (loaded from ``settings.hitl.rules_path`` when None)
        clock: Wall clock for deadlines (tests inject a fake)
        warmup: Compile every enabled agent's plan up front
        configure_logging: Install the console/file handlers from
            ``settings.observability`` (entry points only; tests keep pytest's handlers)
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging_from_settings(settings.observability)
    configure_tracing(settings.observability)

    if agent_registry is None:
        agent_registry = scan_agents_from_config(settings.runtime.agents_path)
    LOGGER.info(f"Agents enabled: {[agent.id for agent in agent_registry.list_enabled()]}")

    tool_registry = ToolRegistry(tools, tool_meta)
    budget = TimeoutBudgetManager(settings.timeouts, clock=clock or time.time)

    if checkpoint_store is None:
        if settings.checkpoint.db_path:
            checkpoint_store = SQLiteCheckpointStore(str(resolve_project_path(settings.checkpoint.db_path)))
        else:
            checkpoint_store = InMemoryCheckpointStore()
    policy = RetryPolicy(
        max_attempts=settings.checkpoint.max_attempts,
        backoff_s=settings.checkpoint.backoff_ms / 1000,
        max_backoff_s=settings.checkpoint.max_backoff_ms / 1000,
    )
    checkpoints = CheckpointAdapter(checkpoint_store, policy, mode=settings.checkpoint.mode)

    if approval_checker is None:
        rules_path = settings.hitl.rules_path
        approval_checker = ApprovalChecker(resolve_project_path(rules_path) if rules_path else None)

    coordinator = DelegationCoordinator(agent_registry, budget, settings.delegation, router_model=router_model)
    dispatcher = ToolDispatcher(tool_registry, budget, max_concurrent=settings.tools.max_tool_concurrency)
    model_guard = ModelCallGuard(
        RetryPolicy(
            max_attempts=settings.models.max_attempts,
            backoff_s=settings.models.backoff_ms / 1000,
            max_backoff_s=settings.models.max_backoff_ms / 1000,
        ),
        CircuitBreaker(settings.models.breaker_failure_threshold, settings.models.breaker_recovery_s),
    )

    plan_deps = PlanDependencies(
        model_resolver=model_resolver,
        agent_registry=agent_registry,
        tool_registry=tool_registry,
        dispatcher=dispatcher,
        coordinator=coordinator,
        budget=budget,
        approval_checker=approval_checker,
        max_tool_calls=settings.tools.max_tool_calls,
        max_delegation_depth=settings.delegation.max_delegation_depth,
        model_guard=model_guard,
    )
    context = OrchestratorContext(
        settings=settings,
        agent_registry=agent_registry,
        tool_registry=tool_registry,
        graph_cache=GraphCache(),
        budget=budget,
        checkpoints=checkpoints,
        interrupts=InterruptManager(settings.hitl.wait_timeout_s),
        coordinator=coordinator,
        dispatcher=dispatcher,
        plan_deps=plan_deps,
        approval_checker=approval_checker,
    )

    if warmup:
        failures = {agent_id: cause for agent_id, cause in context.warmup().items() if cause}
        for agent_id, cause in failures.items():
            LOGGER.warning(f"Warmup failed for {agent_id}: {cause}")

    return Orchestrator(context)
