"""
Module for tallying per-file outcomes and rendering the run summary.
"""
import logging
from typing import List

from .models import (
    Duplicate,
    Failed,
    FailureDetail,
    RunSummary,
    Skipped,
    Uploaded,
    UploadJob,
)

logger = logging.getLogger(__name__)


class ResultReporter:
    """Accumulates outcomes. Only the scheduler thread calls record()."""

    def __init__(self):
        self._uploaded = 0
        self._duplicate = 0
        self._skipped = 0
        self._failures: List[FailureDetail] = []

    def record(self, job: UploadJob) -> None:
        """Fold one resolved job into the counters.

        Args:
            job: A job whose outcome is terminal
        """
        outcome = job.outcome
        if isinstance(outcome, Uploaded):
            self._uploaded += 1
            logger.debug(f"Uploaded {job.path} as {outcome.asset_id}")
        elif isinstance(outcome, Duplicate):
            self._duplicate += 1
            logger.debug(f"Duplicate {job.path} ({outcome.existing_asset_id})")
        elif isinstance(outcome, Skipped):
            self._skipped += 1
            logger.debug(f"Skipped {job.path} ({outcome.mime_type})")
        elif isinstance(outcome, Failed):
            self._failures.append(FailureDetail(job.path, outcome.error_kind, outcome.message))
            logger.warning(f"Failed to upload {job.path}: {outcome.message}")
        else:
            raise TypeError(f"Unknown outcome {outcome!r}")

    def summary(self, cancelled: bool = False) -> RunSummary:
        return RunSummary(
            uploaded=self._uploaded,
            duplicate=self._duplicate,
            failed=len(self._failures),
            skipped=self._skipped,
            failures=list(self._failures),
            cancelled=cancelled,
        )

    @staticmethod
    def render(summary: RunSummary) -> str:
        """Format a summary for the terminal.

        Args:
            summary: Final counters of a run

        Returns:
            Multi-line human-readable text
        """
        title = "Upload cancelled" if summary.cancelled else "Upload complete"
        lines = [
            f"{title}: {summary.total} files processed",
            f"  Uploaded:  {summary.uploaded}",
            f"  Duplicate: {summary.duplicate}",
            f"  Failed:    {summary.failed}",
        ]
        if summary.skipped:
            lines.append(f"  Skipped:   {summary.skipped} (not a photo or video)")
        if summary.failures:
            lines.append("")
            lines.append("Failures:")
            for failure in summary.failures:
                lines.append(f"  {failure.path} [{failure.error_kind.value}] {failure.message}")
        return "\n".join(lines)
