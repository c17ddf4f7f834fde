"""Delegation coordinator.

Decides whether an agent handles a request itself or hands it to another agent,
builds the scoped task for the target and runs the child execution under a
delegation-layer budget.

Decision order:
1. explicit @mention of a registered agent (no model call)
2. keyword heuristic at or above the threshold (no model call)
3. routing model answering with an agent id or "none"
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Sequence

from langchain_core.messages import HumanMessage, SystemMessage

from delegationAgent.agents.interfaces import ChatRunnable
from delegationAgent.agents.registry import AgentRegistry
from delegationAgent.agents.schema import AgentConfig
from delegationAgent.config.settings import DelegationSettings
from delegationAgent.delegation.heuristics import IntentClassifier
from delegationAgent.delegation.mentions import first_known_mention, parse_mentions
from delegationAgent.runtime.models import (
    DelegationRequest,
    EventType,
    Execution,
    ExecutionResult,
    ExecutionStatus,
    ToolCall,
    ToolResult,
)
from delegationAgent.runtime.timeouts import Layer, TimeoutBudgetManager
from delegationAgent.tools.delegate import DELEGATE_TOOL_NAME
from delegationAgent.utils.errors import (
    BudgetExceeded,
    DelegationAgentError,
    DelegationDepthExceeded,
    DelegationFailed,
    UnknownAgentError,
)
from delegationAgent.utils.logging_utils import log_delegation, log_routing_decision
from delegationAgent.utils.message_utils import latest_user_text, stringify_content

LOGGER = logging.getLogger(__name__)

ROUTER_PROMPT = """You route requests to specialist agents.

Available agents:
{agents}

Reply with exactly one agent id from the list, or "none" if {agent_name} should answer
the request directly. Reply with the id only."""


class DelegationScope(Protocol):
    """What the coordinator needs from the delegating execution."""

    execution: Execution

    async def emit(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> Any:
        ...

    async def spawn_child(self, request: DelegationRequest, deadline: float) -> ExecutionResult:
        ...


@dataclass(frozen=True)
class RoutingDecision:
    """Outcome of ``decide``."""

    action: str  # "handle" | "delegate"
    target_agent_id: Optional[str] = None
    task_description: Optional[str] = None
    source: str = "none"  # mention | heuristic | model | none
    confidence: float = 0.0
    reason: str = ""

    @property
    def delegate(self) -> bool:
        return self.action == "delegate"

    @classmethod
    def handle(cls, reason: str, source: str = "none", confidence: float = 0.0) -> "RoutingDecision":
        return cls(action="handle", source=source, confidence=confidence, reason=reason)


class DelegationCoordinator:
    """Routes requests between agents and runs delegations."""

    def __init__(
        self,
        registry: AgentRegistry,
        budget: TimeoutBudgetManager,
        settings: Optional[DelegationSettings] = None,
        *,
        classifier: Optional[IntentClassifier] = None,
        router_model: Optional[ChatRunnable] = None,
    ):
        self.registry = registry
        self.budget = budget
        self.settings = settings or DelegationSettings()
        self.classifier = classifier or IntentClassifier()
        self.router_model = router_model

    @property
    def max_depth(self) -> int:
        return self.settings.max_delegation_depth

    # ========== Decision ==========

    async def decide(self, state: Dict[str, Any], agent: AgentConfig) -> RoutingDecision:
        """Decide handle-directly vs delegate for the latest user request."""
        if not agent.can_delegate:
            return RoutingDecision.handle("agent cannot delegate")

        targets = self.registry.delegation_targets(agent.id)
        if not targets:
            return RoutingDecision.handle("no delegation targets")

        text = latest_user_text(state.get("messages", []))
        if not text.strip():
            return RoutingDecision.handle("no user request")

        # 1. Explicit mention
        if self.settings.mention_short_circuit:
            mentioned = first_known_mention(text, [t.id for t in targets])
            if mentioned:
                return self._delegate_decision(agent, mentioned, text, "mention", 1.0, f"@{mentioned} mentioned")
            unknown = [m for m in parse_mentions(text)[0] if m.lower() != agent.id.lower()]
            if unknown:
                LOGGER.warning(f"Ignoring mention(s) of unavailable agent(s): {unknown}")

        # 2. Heuristic
        intent = self.classifier.score(text, targets)
        if intent.target and intent.score >= self.settings.heuristic_threshold:
            return self._delegate_decision(
                agent, intent.target, text, "heuristic", intent.score, "; ".join(intent.reasons),
            )

        # 3. Routing model
        if self.router_model is not None:
            return await self._decide_with_model(agent, targets, text, intent.score)

        return RoutingDecision.handle(
            f"best heuristic score {intent.score:.2f} below {self.settings.heuristic_threshold}",
            source="heuristic",
            confidence=intent.score,
        )

    async def _decide_with_model(
        self,
        agent: AgentConfig,
        targets: Sequence[AgentConfig],
        text: str,
        heuristic_score: float,
    ) -> RoutingDecision:
        catalog = "\n".join(f"- {t.id}: {t.description or t.name}" for t in targets)
        messages = [
            SystemMessage(content=ROUTER_PROMPT.format(agents=catalog, agent_name=agent.name)),
            HumanMessage(content=text),
        ]
        try:
            reply = await self.router_model.ainvoke(messages)
        except Exception as e:
            LOGGER.warning(f"Routing model failed, {agent.id} handles the request: {e}")
            return RoutingDecision.handle(f"routing model failed: {e}", source="model")

        answer = stringify_content(getattr(reply, "content", reply)).strip().strip("\"'`.").lower()
        by_lower = {t.id.lower(): t.id for t in targets}
        if answer in by_lower:
            return self._delegate_decision(agent, by_lower[answer], text, "model", max(heuristic_score, 0.5), "routing model choice")

        if answer not in ("none", ""):
            LOGGER.warning(f"Routing model answered unknown target '{answer}'; handling directly")
        return RoutingDecision.handle(f"routing model answered '{answer or 'none'}'", source="model")

    def _delegate_decision(
        self,
        agent: AgentConfig,
        target_id: str,
        text: str,
        source: str,
        confidence: float,
        reason: str,
    ) -> RoutingDecision:
        decision = RoutingDecision(
            action="delegate",
            target_agent_id=target_id,
            task_description=self.build_task_description(agent, text),
            source=source,
            confidence=confidence,
            reason=reason,
        )
        log_routing_decision(LOGGER, agent.id, f"delegate:{target_id}", f"{source} ({confidence:.2f}) {reason}")
        return decision

    # ========== Request construction ==========

    def build_task_description(self, from_agent: AgentConfig, request_text: str, context: Optional[str] = None) -> str:
        """Self-contained instruction for the target. Never the full history."""
        _, cleaned = parse_mentions(request_text)
        parts = [
            f"You have been delegated a task by {from_agent.name} ({from_agent.id}).",
            "",
            "Task:",
            cleaned or request_text.strip(),
        ]
        if context:
            parts += ["", "Context:", context.strip()]
        parts += [
            "",
            "Work only from this description. Return a complete answer; follow-up questions "
            "to the delegating agent are not possible.",
        ]
        return "\n".join(parts)

    def build_request(
        self,
        parent: Execution,
        to_agent_id: str,
        task_description: str,
        *,
        tool_call_id: Optional[str] = None,
        source: str = "tool_call",
        timeout_s: Optional[float] = None,
    ) -> DelegationRequest:
        """Validate and issue a delegation request.

        Raises:
            DelegationDepthExceeded: New depth is above the configured maximum
            UnknownAgentError: Target is not an enabled agent
            DelegationAgentError: Target is the delegating agent itself
        """
        depth = parent.depth + 1
        if depth > self.max_depth:
            LOGGER.warning(f"Rejecting delegation {parent.agent_id} → {to_agent_id}: depth {depth} > {self.max_depth}")
            raise DelegationDepthExceeded(depth, self.max_depth)
        if to_agent_id not in self.registry:
            raise UnknownAgentError(to_agent_id)
        if to_agent_id == parent.agent_id:
            raise DelegationAgentError(f"Agent '{to_agent_id}' cannot delegate to itself")

        if timeout_s is None:
            timeout_s = self.budget.policies[Layer.DELEGATION].timeout_s
        return DelegationRequest(
            from_agent_id=parent.agent_id,
            to_agent_id=to_agent_id,
            task_description=task_description,
            timeout_ms=int(timeout_s * 1000),
            depth=depth,
            parent_execution_id=parent.execution_id,
            parent_thread_id=parent.thread_id,
            user_id=parent.user_id,
            tool_call_id=tool_call_id,
            source=source,
        )

    # ========== Execution ==========

    async def delegate(self, request: DelegationRequest, scope: DelegationScope) -> ToolResult:
        """Run a child execution and turn its outcome into a tool-call result.

        Failures and timeouts come back as failed results so the parent agent can
        decide what to do next.
        """
        call = ToolCall(
            id=request.tool_call_id or f"delegation_{uuid.uuid4().hex[:8]}",
            name=DELEGATE_TOOL_NAME,
            args={"agent_id": request.to_agent_id, "task": request.task_description},
        )
        started = self.budget.now()

        try:
            deadline = self.budget.allocate(scope.execution.deadline, Layer.DELEGATION, timeout_s=request.timeout_ms / 1000)
        except BudgetExceeded as e:
            LOGGER.warning(f"No budget to delegate {request.from_agent_id} → {request.to_agent_id}: {e}")
            return ToolResult.failure(call, e)

        log_delegation(LOGGER, request.from_agent_id, request.to_agent_id, request.depth, request.source)
        await scope.emit(EventType.DELEGATING, {
            "tool_call_id": call.id,
            "to_agent_id": request.to_agent_id,
            "depth": request.depth,
            "source": request.source,
            "budget_ms": int((deadline - started) * 1000),
        })

        try:
            result = await asyncio.wait_for(
                scope.spawn_child(request, deadline),
                timeout=max(0.0, deadline - self.budget.now()),
            )
        except asyncio.TimeoutError:
            error = BudgetExceeded(f"delegation to '{request.to_agent_id}' exceeded its budget")
            return ToolResult.failure(call, error, self.budget.now() - started)

        duration = self.budget.now() - started
        if result.ok:
            return ToolResult.success(call, result.final_answer or "", duration)
        if result.status == ExecutionStatus.TIMED_OUT:
            return ToolResult.failure(
                call,
                BudgetExceeded(f"'{request.to_agent_id}' timed out", user_message=result.error or "Delegated agent ran out of time."),
                duration,
            )
        return ToolResult.failure(call, DelegationFailed(request.to_agent_id, result.error or result.status.value), duration)
