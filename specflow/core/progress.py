"""Progress tracking and markdown rendering for multi-step workflows.

:class:`ProgressReporter` keeps a timestamped execution log plus step start
times, and renders :class:`~specflow.core.models.WorkflowProgress` snapshots
as markdown with per-step status icons and an optional expandable log.
Rendering only reads accumulated state.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from specflow.core.models import LogLevel, ProgressStatus, StepStatus, WorkflowProgress

logger = logging.getLogger(__name__)

STEP_ICONS: dict[StepStatus, str] = {
    StepStatus.COMPLETED: "✓",
    StepStatus.IN_PROGRESS: "⟳",
    StepStatus.PENDING: "○",
    StepStatus.FAILED: "✗",
    StepStatus.WAITING_APPROVAL: "⏸",
}

_LEVEL_ICONS: dict[str, str] = {
    "info": "ℹ️",
    "warning": "⚠️",
    "error": "❌",
}

_LOG_LEVELS = ("info", "warning", "error")


@dataclass
class ProgressLogEntry:
    """Single verbose log line."""

    step_name: str
    message: str
    level: LogLevel = "info"
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ProgressRenderOptions:
    show_details: bool = False
    include_timestamps: bool = True
    compact_mode: bool = False
    show_estimate: bool = True


def format_duration(seconds: float) -> str:
    """Format a duration as ``"1h 5m"``, ``"3m 2s"`` or ``"12s"``."""
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _step_status_for(progress_status: ProgressStatus) -> StepStatus:
    return StepStatus(progress_status.value)


class ProgressReporter:
    """Tracks elapsed time and log lines, and renders workflow progress."""

    def __init__(self) -> None:
        self._logs: list[ProgressLogEntry] = []
        self._start_time: datetime | None = None
        self._step_start_times: dict[int, datetime] = {}

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def start_tracking(self) -> None:
        """Start the workflow clock and forget previous step timings."""
        self._start_time = datetime.now(UTC)
        self._step_start_times.clear()

    def record_step_start(self, step_index: int) -> None:
        self._step_start_times[step_index] = datetime.now(UTC)

    def add_log(self, step_name: str, message: str, level: LogLevel = "info") -> None:
        """Append a log entry.

        Args:
            step_name: Name of the step that produced the entry ("Workflow"
                for run-level messages).
            message: Human readable text.
            level: One of ``info``, ``warning``, ``error``.
        """
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {level!r}")
        self._logs.append(ProgressLogEntry(step_name=step_name, message=message, level=level))

    def clear_logs(self) -> None:
        self._logs = []

    def reset(self) -> None:
        """Drop logs and timings."""
        self._logs = []
        self._start_time = None
        self._step_start_times.clear()

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    def get_total_elapsed_time(self) -> str | None:
        """Formatted time since :meth:`start_tracking`, or ``None`` if never started."""
        if self._start_time is None:
            return None
        return format_duration((datetime.now(UTC) - self._start_time).total_seconds())

    def _step_elapsed_seconds(self, step_index: int) -> float | None:
        start = self._step_start_times.get(step_index)
        if start is None:
            return None
        end = self._step_start_times.get(step_index + 1) or datetime.now(UTC)
        return (end - start).total_seconds()

    def get_step_elapsed_time(self, step_index: int) -> str | None:
        elapsed = self._step_elapsed_seconds(step_index)
        return format_duration(elapsed) if elapsed is not None else None

    def estimate_remaining_time(self, progress: WorkflowProgress) -> str | None:
        """Estimate time left from the average duration of finished steps."""
        finished = [
            seconds
            for index in range(progress.current_step)
            if (seconds := self._step_elapsed_seconds(index)) is not None
        ]
        remaining_steps = progress.total_steps - progress.current_step
        if not finished or remaining_steps <= 0:
            return None
        average = sum(finished) / len(finished)
        return format_duration(average * remaining_steps)

    # ------------------------------------------------------------------
    # Log access
    # ------------------------------------------------------------------

    def get_logs(self) -> list[ProgressLogEntry]:
        return list(self._logs)

    def get_logs_by_level(self, level: LogLevel) -> list[ProgressLogEntry]:
        return [entry for entry in self._logs if entry.level == level]

    def has_errors(self) -> bool:
        return any(entry.level == "error" for entry in self._logs)

    def has_warnings(self) -> bool:
        return any(entry.level == "warning" for entry in self._logs)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_progress(
        self,
        progress: WorkflowProgress,
        options: ProgressRenderOptions | None = None,
        step_names: list[str] | None = None,
    ) -> str:
        """Render progress as markdown.

        Args:
            progress: Snapshot to render.
            options: Rendering options; defaults to a non-compact view
                without the log section.
            step_names: Names for every step. When omitted, steps other than
                the current one are labelled ``Step N``.
        """
        options = options or ProgressRenderOptions()
        lines: list[str] = []

        if not options.compact_mode:
            lines.append(f"### ⚙️ {progress.workflow_name}")
            lines.append("")

        lines.extend(self._render_step_list(progress, options, step_names))

        if not options.compact_mode:
            if progress.message:
                lines.append("")
                lines.append(f"*{progress.message}*")
            timing = self._render_timing(progress, options)
            if timing:
                lines.append("")
                lines.append(timing)

        markdown = "\n".join(lines) + "\n"

        if options.show_details and self._logs:
            markdown += "\n" + self._render_details_section(options)

        return markdown

    def _step_statuses(
        self, progress: WorkflowProgress, step_names: list[str] | None
    ) -> list[tuple[str, StepStatus]]:
        steps: list[tuple[str, StepStatus]] = []
        for index in range(progress.total_steps):
            if index < progress.current_step:
                status = StepStatus.COMPLETED
            elif index == progress.current_step:
                status = _step_status_for(progress.status)
            else:
                status = StepStatus.PENDING

            if index == progress.current_step:
                name = progress.current_step_name
            elif step_names and index < len(step_names):
                name = step_names[index]
            else:
                name = f"Step {index + 1}"
            steps.append((name, status))
        return steps

    def _render_step_list(
        self,
        progress: WorkflowProgress,
        options: ProgressRenderOptions,
        step_names: list[str] | None,
    ) -> list[str]:
        lines = []
        for index, (name, status) in enumerate(self._step_statuses(progress, step_names)):
            is_current = index == progress.current_step
            line = f"{STEP_ICONS[status]} {index + 1}. {name}"

            if is_current and not options.compact_mode:
                line = f"**{line}**"
                if progress.details:
                    line += f" - {progress.details}"

            if status == StepStatus.COMPLETED and not options.compact_mode:
                elapsed = self.get_step_elapsed_time(index)
                if elapsed:
                    line += f" *({elapsed})*"

            lines.append(line)
        return lines

    def _render_timing(self, progress: WorkflowProgress, options: ProgressRenderOptions) -> str:
        parts = []
        elapsed = self.get_total_elapsed_time()
        if elapsed:
            parts.append(f"Elapsed: {elapsed}")
        if options.show_estimate and progress.status != ProgressStatus.COMPLETED:
            estimate = self.estimate_remaining_time(progress)
            if estimate:
                parts.append(f"Estimated remaining: {estimate}")
        return " · ".join(parts)

    def _render_details_section(self, options: ProgressRenderOptions) -> str:
        lines = ["<details>", "<summary>Show Details</summary>", "", "#### Execution Log", ""]
        for entry in self._logs:
            line = ""
            if options.include_timestamps:
                line += f"`{entry.timestamp.strftime('%H:%M:%S')}` "
            line += f"{_LEVEL_ICONS[entry.level]} "
            if entry.step_name:
                line += f"**{entry.step_name}**: "
            line += entry.message
            lines.append(line)
        lines.extend(["", "</details>"])
        return "\n".join(lines) + "\n"

    def render_compact(self, progress: WorkflowProgress) -> str:
        """One-line summary, e.g. ``⟳ Spec Mode: 2/5 (40%)``."""
        icon = STEP_ICONS[_step_status_for(progress.status)]
        return (
            f"{icon} {progress.workflow_name}: "
            f"{progress.current_step}/{progress.total_steps} ({progress.percent}%)"
        )

    def render_status_bar(self, progress: WorkflowProgress) -> str:
        """Status bar text, e.g. ``⟳ Design (3/5)``."""
        icon = STEP_ICONS[_step_status_for(progress.status)]
        position = min(progress.current_step + 1, progress.total_steps)
        return f"{icon} {progress.current_step_name} ({position}/{progress.total_steps})"
