"""Environment-bound configuration objects.

This module provides Pydantic BaseSettings-based configuration loading from .env files.
Every group accepts its field names as well as the environment aliases, so tests can
build settings directly (``TimeoutSettings(supervisor_s=10)``).

Example:
    from delegationAgent.config.settings import get_settings

    settings = get_settings()  # Cached singleton, only used as a default
    depth = settings.delegation.max_delegation_depth
    concurrency = settings.tools.max_tool_concurrency
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()


_GROUP_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
    populate_by_name=True,
)


class DelegationSettings(BaseSettings):
    """Delegation routing and nesting limits.

    - max_delegation_depth: deepest allowed child execution (default: 3)
    - heuristic_threshold: keyword score that short-circuits routing (default: 0.95)
    - mention_short_circuit: honour explicit @agent mentions (default: True)
    """

    max_delegation_depth: int = Field(
        default=3,
        ge=0,
        le=10,
        validation_alias=AliasChoices("max_delegation_depth", "MAX_DELEGATION_DEPTH"),
    )
    heuristic_threshold: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        validation_alias=AliasChoices("heuristic_threshold", "DELEGATION_HEURISTIC_THRESHOLD"),
    )
    mention_short_circuit: bool = Field(
        default=True,
        validation_alias=AliasChoices("mention_short_circuit", "DELEGATION_MENTION_SHORT_CIRCUIT"),
    )

    model_config = _GROUP_CONFIG


class TimeoutSettings(BaseSettings):
    """Per-layer default timeouts and margins (seconds).

    A child deadline is always earlier than its parent by
    ``max(<layer>_min_margin_s, margin_ratio * parent_remaining)``.
    """

    supervisor_s: float = Field(default=900.0, gt=0, validation_alias=AliasChoices("supervisor_s", "SUPERVISOR_TIMEOUT_S"))
    delegation_s: float = Field(default=420.0, gt=0, validation_alias=AliasChoices("delegation_s", "DELEGATION_TIMEOUT_S"))
    subagent_s: float = Field(default=300.0, gt=0, validation_alias=AliasChoices("subagent_s", "SUBAGENT_TIMEOUT_S"))
    tool_s: float = Field(default=60.0, gt=0, validation_alias=AliasChoices("tool_s", "TOOL_TIMEOUT_S"))

    supervisor_min_margin_s: float = Field(default=0.0, ge=0)
    delegation_min_margin_s: float = Field(default=5.0, ge=0)
    subagent_min_margin_s: float = Field(default=3.0, ge=0)
    tool_min_margin_s: float = Field(default=1.0, ge=0)
    margin_ratio: float = Field(
        default=0.2,
        ge=0.15,
        lt=1.0,
        validation_alias=AliasChoices("margin_ratio", "TIMEOUT_MARGIN_RATIO"),
    )

    model_config = _GROUP_CONFIG


class ToolSettings(BaseSettings):
    """Tool dispatch limits."""

    max_tool_concurrency: int = Field(
        default=8,
        ge=1,
        le=256,
        validation_alias=AliasChoices("max_tool_concurrency", "MAX_TOOL_CONCURRENCY"),
    )
    max_tool_calls: int = Field(
        default=50,
        ge=1,
        validation_alias=AliasChoices("max_tool_calls", "MAX_TOOL_CALLS"),
    )

    model_config = _GROUP_CONFIG


class CheckpointSettings(BaseSettings):
    """Checkpoint persistence and retry policy.

    - db_path: SQLite file; in-memory store when unset
    - mode: ``every_step`` writes after each plan step, ``critical_only`` only after
      tool/delegation merges, interrupts and terminal states
    """

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        validation_alias=AliasChoices("max_attempts", "CHECKPOINT_MAX_ATTEMPTS"),
    )
    backoff_ms: int = Field(
        default=200,
        ge=0,
        validation_alias=AliasChoices("backoff_ms", "CHECKPOINT_BACKOFF_MS"),
    )
    max_backoff_ms: int = Field(
        default=5000,
        ge=0,
        validation_alias=AliasChoices("max_backoff_ms", "CHECKPOINT_MAX_BACKOFF_MS"),
    )
    db_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("db_path", "CHECKPOINT_DB_PATH"),
    )
    mode: Literal["every_step", "critical_only"] = Field(
        default="every_step",
        validation_alias=AliasChoices("mode", "CHECKPOINT_MODE"),
    )

    model_config = _GROUP_CONFIG


class ModelCallSettings(BaseSettings):
    """Retry and circuit breaker for model calls.

    - max_attempts / backoff_ms / max_backoff_ms: retry of transient provider errors
    - breaker_failure_threshold: consecutive failed calls that open an agent's breaker
    - breaker_recovery_s: how long an open breaker rejects calls before a trial call
    """

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        validation_alias=AliasChoices("max_attempts", "MODEL_MAX_ATTEMPTS"),
    )
    backoff_ms: int = Field(
        default=1000,
        ge=0,
        validation_alias=AliasChoices("backoff_ms", "MODEL_BACKOFF_MS"),
    )
    max_backoff_ms: int = Field(
        default=10000,
        ge=0,
        validation_alias=AliasChoices("max_backoff_ms", "MODEL_MAX_BACKOFF_MS"),
    )
    breaker_failure_threshold: int = Field(
        default=5,
        ge=1,
        validation_alias=AliasChoices("breaker_failure_threshold", "MODEL_BREAKER_FAILURE_THRESHOLD"),
    )
    breaker_recovery_s: float = Field(
        default=60.0,
        gt=0,
        validation_alias=AliasChoices("breaker_recovery_s", "MODEL_BREAKER_RECOVERY_S"),
    )

    model_config = _GROUP_CONFIG


class HitlSettings(BaseSettings):
    """Human-in-the-loop settings."""

    wait_timeout_s: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices("wait_timeout_s", "HITL_WAIT_TIMEOUT_S"),
    )
    rules_path: Optional[str] = Field(
        default="delegationAgent/config/hitl_rules.yaml",
        validation_alias=AliasChoices("rules_path", "HITL_RULES_PATH"),
    )

    model_config = _GROUP_CONFIG


class RuntimeSettings(BaseSettings):
    """Execution limits and plumbing."""

    max_agent_cycles: int = Field(
        default=25,
        ge=1,
        le=500,
        validation_alias=AliasChoices("max_agent_cycles", "MAX_AGENT_CYCLES"),
    )
    recursion_limit: int = Field(default=50, ge=5, le=1000, validation_alias=AliasChoices("recursion_limit", "RECURSION_LIMIT"))
    event_queue_maxsize: int = Field(default=1000, ge=1, validation_alias=AliasChoices("event_queue_maxsize", "EVENT_QUEUE_MAXSIZE"))
    retained_results: int = Field(
        default=256,
        ge=1,
        validation_alias=AliasChoices("retained_results", "RETAINED_RESULTS"),
    )
    agents_path: str = Field(
        default="delegationAgent/config/agents.yaml",
        validation_alias=AliasChoices("agents_path", "AGENTS_CONFIG_PATH"),
    )

    model_config = _GROUP_CONFIG


class ObservabilitySettings(BaseSettings):
    """Tracing and logging configuration."""

    langsmith_project: Optional[str] = Field(default=None, alias="LANGCHAIN_PROJECT")
    langsmith_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("LANGCHAIN_API_KEY", "LANGSMITH_API_KEY")
    )
    langsmith_endpoint: Optional[str] = Field(default=None, alias="LANGCHAIN_ENDPOINT")
    tracing_enabled: bool = Field(default=False, alias="LANGCHAIN_TRACING_V2")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: Optional[str] = Field(default=None, alias="LOG_DIR")

    model_config = _GROUP_CONFIG


class Settings(BaseSettings):
    """Root application settings loaded from .env file.

    Nested groups:
    - delegation: routing and depth limits (DelegationSettings)
    - timeouts: per-layer budgets (TimeoutSettings)
    - tools: dispatch limits (ToolSettings)
    - checkpoint: persistence and retry policy (CheckpointSettings)
    - models: model call retry and circuit breaker (ModelCallSettings)
    - hitl: approval waits and rules (HitlSettings)
    - runtime: execution limits (RuntimeSettings)
    - observability: tracing and logging (ObservabilitySettings)
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    delegation: DelegationSettings = Field(default_factory=DelegationSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    checkpoint: CheckpointSettings = Field(default_factory=CheckpointSettings)
    models: ModelCallSettings = Field(default_factory=ModelCallSettings)
    hitl: HitlSettings = Field(default_factory=HitlSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance.

    Only used as a default when no settings are injected; runtime objects always
    receive their settings through the orchestrator context.
    """
    return Settings()
