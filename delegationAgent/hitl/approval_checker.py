"""Approval checker for tool execution safety."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

import yaml

from delegationAgent.agents.schema import AgentConfig

LOGGER = logging.getLogger(__name__)


@dataclass
class ApprovalDecision:
    """审批决策结果"""

    needs_approval: bool
    reason: str = ""
    risk_level: str = "low"  # low, medium, high, critical


class ApprovalChecker:
    """工具执行审批检测器

    支持三层规则（优先级从高到低）：
    1. 工具自定义检查器（代码实现，最高优先级）
    2. 全局风险模式（跨工具检测，如敏感信息泄露）
    3. 工具配置规则（工具特定规则，来自 YAML）

    另外，agent 配置的 approval_tools 总是需要审批。未配置规则文件时只有
    approval_tools 和自定义检查器生效。
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Args:
            config_path: 审批规则配置文件路径（可选）
        """
        self.config_path = Path(config_path) if config_path else None
        self.rules = self._load_config() if self.config_path else {}
        self.custom_checkers: Dict[str, Callable[[dict], ApprovalDecision]] = {}
        self.global_patterns = self._load_global_patterns()

    def _load_config(self) -> dict:
        """加载配置文件"""
        if not self.config_path or not self.config_path.exists():
            LOGGER.info(f"No approval rules at {self.config_path}; only agent approval tools apply")
            return {}

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            LOGGER.warning(f"Failed to load approval config {self.config_path}: {e}")
            return {}

    def _load_global_patterns(self) -> Dict[str, Any]:
        """加载全局风险模式"""
        global_config = self.rules.get("global", {}) or {}
        risk_patterns = global_config.get("risk_patterns", {}) or {}

        patterns_by_level = {}
        for level, pattern_config in risk_patterns.items():
            if isinstance(pattern_config, dict):
                patterns_by_level[level] = {
                    "patterns": pattern_config.get("patterns", []),
                    "action": pattern_config.get("action", "require_approval"),
                    "reason": pattern_config.get("reason", f"Matches global {level} risk pattern"),
                }

        return patterns_by_level

    def register_checker(self, tool_name: str, checker: Callable[[dict], ApprovalDecision]):
        """注册工具自定义审批检测函数

        Args:
            tool_name: 工具名称
            checker: 检测函数，接收 args，返回 ApprovalDecision
        """
        self.custom_checkers[tool_name] = checker

    def check(self, tool_name: str, args: dict, agent: Optional[AgentConfig] = None) -> ApprovalDecision:
        """检查工具调用是否需要审批

        Args:
            tool_name: 工具名称
            args: 工具参数
            agent: 发起调用的 agent（可选，用于 approval_tools）

        Returns:
            ApprovalDecision
        """
        if agent is not None and tool_name in agent.approval_tools:
            return ApprovalDecision(
                needs_approval=True,
                reason=f"{agent.name} requires approval for {tool_name}",
                risk_level="medium",
            )

        # 1. 工具自定义检测（优先级最高）
        if tool_name in self.custom_checkers:
            return self.custom_checkers[tool_name](args)

        # 2. 全局风险模式检查（跨工具）
        global_decision = self._check_global_patterns(args)
        if global_decision.needs_approval:
            return global_decision

        # 3. 工具配置规则
        if tool_name in (self.rules.get("tools", {}) or {}):
            return self._check_config_rules(tool_name, args)

        return ApprovalDecision(needs_approval=False)

    def check_batch(self, calls: Iterable[dict], agent: Optional[AgentConfig] = None) -> Dict[str, ApprovalDecision]:
        """检查一批 tool calls，只返回需要审批的调用 {tool_call_id: decision}"""
        pending = {}
        for call in calls:
            decision = self.check(call["name"], call.get("args") or {}, agent)
            if decision.needs_approval:
                pending[call["id"]] = decision
        return pending

    def _check_global_patterns(self, args: dict) -> ApprovalDecision:
        """检查全局风险模式（跨工具）"""
        if not self.global_patterns:
            return ApprovalDecision(needs_approval=False)

        args_str = self._args_text(args)

        for risk_level in ["critical", "high", "medium", "low"]:
            if risk_level not in self.global_patterns:
                continue

            pattern_config = self.global_patterns[risk_level]
            for pattern in pattern_config.get("patterns", []):
                if re.search(pattern, args_str, re.IGNORECASE):
                    if pattern_config.get("action", "require_approval") == "require_approval":
                        return ApprovalDecision(
                            needs_approval=True,
                            reason=pattern_config.get("reason", ""),
                            risk_level=risk_level,
                        )

        return ApprovalDecision(needs_approval=False)

    def _check_config_rules(self, tool_name: str, args: dict) -> ApprovalDecision:
        """检查配置文件规则"""
        tool_config = self.rules["tools"][tool_name] or {}

        if not tool_config.get("enabled", True):
            return ApprovalDecision(needs_approval=False)

        args_str = self._args_text(args)
        for risk_level, pattern_list in (tool_config.get("patterns", {}) or {}).items():
            for pattern in pattern_list:
                if re.search(pattern, args_str, re.IGNORECASE):
                    action = (tool_config.get("actions", {}) or {}).get(risk_level, "require_approval")
                    if action == "require_approval":
                        return ApprovalDecision(
                            needs_approval=True,
                            reason=f"Matches {risk_level} risk pattern: {pattern}",
                            risk_level=risk_level,
                        )

        return ApprovalDecision(needs_approval=False)

    @staticmethod
    def _args_text(args: dict) -> str:
        return " ".join(str(v) for v in args.values())
