"""Run report: per-category outcome counts and failing targets."""

import time
from dataclasses import dataclass, field
from typing import Dict, List

from archon_updater.data.models import (
    FetchOutcome,
    FetchTarget,
    Found,
    NotAvailable,
    TransportError,
)
from archon_updater.utils.errors import (
    ERROR_CLASSIFICATION,
    ErrorSeverity,
    ErrorType,
    is_fatal,
)
from archon_updater.utils.logger import get_logger


CATEGORIES = ("raid", "dungeon")


@dataclass
class CategoryCounts:
    """Outcome counts for one content category."""
    found: int = 0
    not_available: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return self.found + self.not_available + self.errors


@dataclass
class TargetFailure:
    """A target that did not produce a build."""
    target: FetchTarget
    error_type: ErrorType
    reason: str
    url: str = ""

    @property
    def severity(self) -> ErrorSeverity:
        return ERROR_CLASSIFICATION[self.error_type]

    def describe(self) -> str:
        return f"{self.target.describe()}: {self.reason}"


@dataclass
class RunReport:
    """Summary of one orchestration run."""
    output_path: str = ""
    counts: Dict[str, CategoryCounts] = field(
        default_factory=lambda: {c: CategoryCounts() for c in CATEGORIES}
    )
    failures: List[TargetFailure] = field(default_factory=list)
    entries_added: int = 0
    entries_updated: int = 0
    entries_cleared: int = 0
    fallbacks_used: int = 0
    requests_made: int = 0
    written: bool = False
    dry_run: bool = False
    start_time: float = field(default_factory=time.time)
    end_time: float = 0.0

    @property
    def found(self) -> int:
        return sum(c.found for c in self.counts.values())

    @property
    def not_available(self) -> int:
        return sum(c.not_available for c in self.counts.values())

    @property
    def errors(self) -> int:
        return sum(c.errors for c in self.counts.values())

    @property
    def total(self) -> int:
        return self.found + self.not_available + self.errors

    @property
    def duration(self) -> float:
        end = self.end_time if self.end_time > 0 else time.time()
        return end - self.start_time

    @property
    def status(self) -> str:
        """One-line status for display."""
        if self.dry_run:
            action = "dry run, nothing written"
        elif self.written:
            action = f"saved to {self.output_path}"
        else:
            action = "nothing written"
        return (
            f"Updated {self.found}/{self.total} builds "
            f"({self.not_available} not available, {self.errors} errors); {action}"
        )

    def format_text(self) -> str:
        """Multi-line human-readable report."""
        lines = ["=" * 60, "RUN SUMMARY", "=" * 60]
        for category in CATEGORIES:
            c = self.counts[category]
            lines.append(
                f"{category.capitalize():<8} found: {c.found:<4} "
                f"not available: {c.not_available:<4} errors: {c.errors}"
            )
        lines.append(
            f"Entries: {self.entries_added} added, {self.entries_updated} updated, "
            f"{self.entries_cleared} cleared"
        )
        lines.append(f"Requests: {self.requests_made} ({self.fallbacks_used} last-week fallbacks)")
        lines.append(f"Duration: {self.duration:.1f}s")

        if self.failures:
            lines.append("")
            lines.append("Failed targets:")
            for failure in self.failures:
                lines.append(f"  - [{failure.error_type.value}] {failure.describe()}")

        lines.append("=" * 60)
        lines.append(self.status)
        return "\n".join(lines)


class ReportBuilder:
    """
    Collects outcomes into a RunReport.

    Only called from the orchestrator's aggregation step, never from
    fetch workers.
    """

    def __init__(self, output_path: str = "", dry_run: bool = False):
        """
        Initialize report builder.

        Args:
            output_path: File the run writes to
            dry_run: Whether the run skips the final write
        """
        self.log = get_logger()
        self.report = RunReport(output_path=output_path, dry_run=dry_run)

    def record(self, target: FetchTarget, outcome: FetchOutcome) -> None:
        """
        Record the final outcome of a target.

        Args:
            target: Target that was fetched
            outcome: Its final outcome
        """
        counts = self.report.counts.setdefault(target.category, CategoryCounts())

        if isinstance(outcome, Found):
            counts.found += 1
        elif isinstance(outcome, NotAvailable):
            counts.not_available += 1
            self.add_failure(target, ErrorType.NOT_AVAILABLE, "no build available", outcome.url)
        elif isinstance(outcome, TransportError):
            counts.errors += 1
            self.add_failure(target, ErrorType.TRANSPORT, outcome.reason, outcome.url)
        else:
            raise TypeError(f"unknown outcome {outcome!r}")

    def add_failure(
        self,
        target: FetchTarget,
        error_type: ErrorType,
        reason: str,
        url: str = "",
    ) -> TargetFailure:
        """
        Add a failing target to the report.

        Only isolated error types belong to a single target; fatal ones
        abort the run and are raised instead.

        Raises:
            ValueError: If the error type is fatal
        """
        if is_fatal(error_type):
            raise ValueError(
                f"{error_type.value} errors are {ERROR_CLASSIFICATION[error_type].name} "
                f"and cannot be recorded for one target"
            )
        failure = TargetFailure(target=target, error_type=error_type, reason=reason, url=url)
        self.report.failures.append(failure)
        return failure

    def record_requests(self, requests_made: int, fallbacks_used: int) -> None:
        self.report.requests_made += requests_made
        self.report.fallbacks_used += fallbacks_used

    def record_entries(self, added: int = 0, updated: int = 0, cleared: int = 0) -> None:
        self.report.entries_added += added
        self.report.entries_updated += updated
        self.report.entries_cleared += cleared

    def finish(self, written: bool) -> RunReport:
        """
        Close the report.

        Args:
            written: Whether the data file was written

        Returns:
            The finished report
        """
        self.report.written = written
        self.report.end_time = time.time()
        self.log.info(self.report.status)
        return self.report
