"""Configuration package."""

from .project_root import get_project_root, resolve_project_path
from .settings import (
    CheckpointSettings,
    DelegationSettings,
    HitlSettings,
    ModelCallSettings,
    ObservabilitySettings,
    RuntimeSettings,
    Settings,
    TimeoutSettings,
    ToolSettings,
    get_settings,
)

__all__ = [
    "get_project_root",
    "resolve_project_path",
    "CheckpointSettings",
    "DelegationSettings",
    "HitlSettings",
    "ModelCallSettings",
    "ObservabilitySettings",
    "RuntimeSettings",
    "Settings",
    "TimeoutSettings",
    "ToolSettings",
    "get_settings",
]
