"""Console output formatting utilities for chaindeploy."""

from __future__ import annotations

import sys
from typing import Optional

from chaindeploy.model import ExecutionPlan, RunReport, StepStatus


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_run_started(
        self,
        network: str,
        script: str,
        step_count: int,
        deployer: str | None = None,
    ) -> None:
        """Print run start information."""
        print("\nDEPLOYMENT STARTED")
        print(f"Network: {network}")
        print(f"Script: {script}")
        if deployer:
            print(f"Deployer: {deployer}")
        print(f"Steps: {step_count}")
        print()

    def print_plan(self, plan: ExecutionPlan) -> None:
        """Print execution order, one stage per line."""
        self.print_header("PLAN")
        for idx, layer in enumerate(plan.layers, start=1):
            print(f"  Stage {idx}: {', '.join(layer)}")

    def print_report(self, report: RunReport) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print(f"RESULTS ({report.network})")
        print("=" * 40)
        for name in report.plan:
            sr = report.steps[name]
            line = f"  {name}: {sr.status.value.upper()}"
            if sr.address:
                line += f" {sr.address}"
            print(line)
            if sr.status == StepStatus.FAILED and sr.error:
                print(f"    Error: {sr.error if self.debug else sr.error.splitlines()[0]}")
            if sr.verification is not None:
                print(f"    {sr.verification.label}")

        warnings = report.warnings()
        if warnings:
            print("\nWARNINGS")
            for w in warnings:
                print(f"  {w}")
        print(f"\nSTATUS: {report.state.value}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
