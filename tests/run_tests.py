#!/usr/bin/env python
"""Unified test runner for delegationAgent.

Provides standardized entry points for different test types:
- smoke: Quick validation tests (< 30s)
- unit: Unit tests for individual modules
- integration: Orchestrator flows with scripted models
- all: Run all tests

Usage:
    python tests/run_tests.py smoke
    python tests/run_tests.py unit
    python tests/run_tests.py integration
    python tests/run_tests.py all
    python tests/run_tests.py coverage
"""

import os
import subprocess
import sys
from pathlib import Path
from typing import Optional

SUITES = ("smoke", "unit", "integration")


class TestRunner:
    """统一测试运行器"""

    def __init__(self):
        self.tests_dir = Path(__file__).parent
        self.project_root = self.tests_dir.parent

        # 设置环境变量供子进程使用
        project_root_str = str(self.project_root)
        pythonpath = os.environ.get("PYTHONPATH", "")
        if project_root_str not in pythonpath:
            os.environ["PYTHONPATH"] = f"{project_root_str}{os.pathsep}{pythonpath}" if pythonpath else project_root_str

    def run_suite(self, suite: str) -> int:
        """运行单个测试套件"""
        descriptions = {
            "smoke": "Fast critical-path checks: imports, bundled config, one orchestrator run",
            "unit": "Cache, budgets, dispatcher, checkpoints, interrupts, routing in isolation",
            "integration": "Delegation, HITL, cancel and recovery flows through the orchestrator",
        }
        print("=" * 80)
        print(f"Running {suite} tests")
        print("=" * 80)
        print(f"Purpose: {descriptions[suite]}")
        print()

        command = [sys.executable, "-m", "pytest", str(self.tests_dir / suite), "-v", "--tb=short"]
        if suite == "smoke":
            command += ["-m", "not slow"]
        return subprocess.call(command, cwd=self.project_root)

    def run_all_tests(self) -> int:
        """运行所有测试"""
        results = {suite: self.run_suite(suite) for suite in SUITES}

        print("\n" + "=" * 80)
        print("Test Results Summary")
        print("=" * 80)

        failed = [suite for suite, exit_code in results.items() if exit_code != 0]
        for suite, exit_code in results.items():
            print(f"{suite:12} {'PASSED' if exit_code == 0 else 'FAILED'}")
        print("=" * 80)

        if failed:
            print(f"{len(failed)}/{len(results)} test suite(s) failed")
            return 1
        print("All test suites passed!")
        return 0

    def run_with_coverage(self, suite: Optional[str] = None) -> int:
        """运行测试并生成覆盖率报告"""
        test_path = self.tests_dir / suite if suite and suite != "all" else self.tests_dir
        return subprocess.call(
            [
                sys.executable, "-m", "pytest", str(test_path), "-v",
                "--cov=delegationAgent", "--cov-report=html", "--cov-report=term",
            ],
            cwd=self.project_root,
        )


def main():
    """主入口"""
    runner = TestRunner()

    if len(sys.argv) < 2:
        print("Usage: python tests/run_tests.py [smoke|unit|integration|all|coverage]")
        sys.exit(1)

    test_type = sys.argv[1].lower()
    if test_type in SUITES:
        exit_code = runner.run_suite(test_type)
    elif test_type == "all":
        exit_code = runner.run_all_tests()
    elif test_type == "coverage":
        exit_code = runner.run_with_coverage(sys.argv[2] if len(sys.argv) > 2 else None)
    else:
        print(f"Unknown test type: {test_type}")
        print(f"Valid types: {', '.join(SUITES)}, all, coverage")
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
