# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""Rich display helpers: progress and summary tables, failure panels, Rust-style messages.

Key Concepts (ELI5)::

    ┌──────────────────────┬──────────────────────────────────────────────┐
    │ Piece                │ What you see                                 │
    ├──────────────────────┼──────────────────────────────────────────────┤
    │ Live progress        │ While the batch runs: a bar counting done    │
    │                      │ tests plus the last few outcomes under it.   │
    ├──────────────────────┼──────────────────────────────────────────────┤
    │ Summary              │ After the batch: one row per .gctf file with │
    │                      │ status, duration and the first detail line.  │
    ├──────────────────────┼──────────────────────────────────────────────┤
    │ Failure log          │ One red panel per failed test, in the order  │
    │                      │ the tests were given, printed at the end.    │
    ├──────────────────────┼──────────────────────────────────────────────┤
    │ Warnings             │ ``warning[GT-...]: ...`` lines in the same   │
    │                      │ shape as the CLI error output.               │
    └──────────────────────┴──────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Sequence
from types import TracebackType

from rich import box
from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from grpctestify.types import ExecutionOutcome, Status

# Status → (emoji, style) for the tables.
_STATUS_DISPLAY: dict[Status, tuple[str, str]] = {
    Status.PENDING: ('◌', 'dim'),
    Status.RUNNING: ('⟳', 'bold blue'),
    Status.PASSED: ('✅', 'bold green'),
    Status.FAILED: ('❌', 'bold red'),
    Status.SKIPPED: ('⏭️ ', 'bold yellow'),
    Status.ERROR: ('⚠️ ', 'bold red'),
}

# Where output goes.
#   console        → stderr (progress, errors, warnings)
#   stdout_console → stdout (tables, verb listing)
console = Console(stderr=True)
stdout_console = Console()

_INLINE_BAR = 24  # Width of the inline progress bar (in block characters).
_RECENT_ROWS = 8  # Finished tests shown under the live bar.
_FAILURE_LOG_LINES = 40  # Detail lines shown per failure panel.


def rust_warning(code: str, message: str, *, note: str = '') -> None:
    """Print ``warning[CODE]: message`` (plus an optional note) to stderr."""
    console.print(f'[bold yellow]warning[/bold yellow]\\[[bold]{code}[/bold]]: {escape(message)}')
    if note:
        console.print('  [dim]|[/dim]')
        console.print(f'  [dim]=[/dim] [bold]note[/bold]: {escape(note)}')
    console.print()


def elapsed_str(secs: float) -> str:
    """Batch wall time, e.g. ``2m 5.3s``.  Zero or negative renders as a dash."""
    if secs <= 0:
        return '—'
    mins = int(secs) // 60
    sec = secs - mins * 60
    if mins > 0:
        return f'{mins}m {sec:.1f}s'
    return f'{sec:.1f}s'


def duration_str(ms: float) -> str:
    """Format a test duration: ``42ms`` below one second, else :func:`elapsed_str`."""
    if ms <= 0:
        return '—'
    if ms < 1000:
        return f'{ms:.0f}ms'
    return elapsed_str(ms / 1000)


def status_emoji(status: Status) -> str:
    """Glyph shown in the status column."""
    return _STATUS_DISPLAY[status][0]


def status_style(status: Status) -> str:
    """Rich style for the status cell."""
    return _STATUS_DISPLAY[status][1]


def build_progress_bar(
    passed: int,
    failed: int,
    total: int,
    *,
    bar_width: int = _INLINE_BAR,
) -> Text:
    """Green, red and dim blocks for passed, failed and pending tests.

    The counter after the bar reads ``done/total`` where *done* counts
    passed and failed tests together, e.g. ``████████░░░░ 8/11``.
    """
    if total <= 0:
        return Text('—', style='dim')

    p = min(round(passed / total * bar_width), bar_width)
    f = min(round(failed / total * bar_width), bar_width - p)
    r = bar_width - p - f
    text = Text()
    text.append('█' * p, style='green')
    text.append('█' * f, style='red')
    text.append('░' * r, style='dim')
    count_style = 'green' if failed == 0 else 'red'
    text.append(f' {passed + failed}/{total}', style=count_style)
    return text


def first_line(detail: str, *, max_len: int = 80) -> str:
    """First line of a failure detail, truncated for a table cell."""
    line = detail.strip().splitlines()[0] if detail.strip() else ''
    if len(line) > max_len:
        return line[: max_len - 1] + '…'
    return line


def _outcome_row(outcome: ExecutionOutcome, *, max_detail: int) -> list[str | Text]:
    return [
        status_emoji(outcome.status),
        outcome.test_id,
        Text(outcome.status.value.upper(), style=status_style(outcome.status)),
        duration_str(outcome.duration_ms),
        Text(first_line(outcome.detail, max_len=max_detail), style='dim'),
    ]


def build_progress_table(outcomes: Sequence[ExecutionOutcome], total: int) -> Table:
    """Build the live table: a batch bar and the most recently finished tests."""
    passed = sum(1 for o in outcomes if o.status == Status.PASSED)
    failed = len(outcomes) - passed

    table = Table(
        title='⏳ gRPC Tests',
        caption=build_progress_bar(passed, failed, total),
        box=box.ROUNDED,
        title_style='bold cyan',
        border_style='dim',
        header_style='bold',
        expand=False,
        pad_edge=True,
        show_lines=False,
    )
    table.add_column('', width=3, justify='center')
    table.add_column('Test', style='bold', min_width=24)
    table.add_column('Status', min_width=8)
    table.add_column('Time', justify='right', min_width=8)
    table.add_column('Details', ratio=1)

    for outcome in list(outcomes)[-_RECENT_ROWS:]:
        table.add_row(*_outcome_row(outcome, max_detail=60))
    return table


def build_summary_table(outcomes: Sequence[ExecutionOutcome], skipped: Sequence[str] = ()) -> Table:
    """Build the final summary table, one row per test in submission order."""
    table = Table(
        title='📊 gRPC Test Results',
        box=box.HEAVY_HEAD,
        title_style='bold cyan',
        border_style='bright_black',
        header_style='bold white',
        expand=False,
        pad_edge=True,
        show_lines=False,
    )
    table.add_column('', width=3, justify='center')
    table.add_column('Test', style='bold', min_width=24)
    table.add_column('Result', min_width=8)
    table.add_column('Time', justify='right', min_width=8)
    table.add_column('Details', ratio=1)

    for outcome in outcomes:
        table.add_row(*_outcome_row(outcome, max_detail=100))
    for test_id in skipped:
        table.add_row(
            status_emoji(Status.SKIPPED),
            test_id,
            Text('SKIPPED', style=status_style(Status.SKIPPED)),
            '—',
            Text('not started (fail-fast)', style='dim'),
        )
    return table


def summary_footer(
    outcomes: Sequence[ExecutionOutcome],
    *,
    skipped: int = 0,
    elapsed_ms: float = 0.0,
) -> str:
    """Aggregated pass/fail/error/skip counts as Rich markup."""
    passed = sum(1 for o in outcomes if o.status == Status.PASSED)
    failed = sum(1 for o in outcomes if o.status == Status.FAILED)
    errors = sum(1 for o in outcomes if o.status == Status.ERROR)

    parts: list[str] = []
    if passed:
        parts.append(f'[bold green]✅ {passed} passed[/bold green]')
    if failed:
        parts.append(f'[bold red]❌ {failed} failed[/bold red]')
    if errors:
        parts.append(f'[bold red]⚠️  {errors} error(s)[/bold red]')
    if skipped:
        parts.append(f'[bold yellow]⏭️  {skipped} skipped[/bold yellow]')
    if not parts:
        parts.append('[dim]no tests run[/dim]')
    return f'  {" · ".join(parts)}  [dim]({elapsed_str(elapsed_ms / 1000)} wall time)[/dim]'


def print_summary(
    outcomes: Sequence[ExecutionOutcome],
    *,
    skipped: Sequence[str] = (),
    elapsed_ms: float = 0.0,
) -> None:
    """Print the summary table and footer to stderr."""
    console.print()
    console.print(build_summary_table(outcomes, skipped))
    console.print()
    console.print(summary_footer(outcomes, skipped=len(skipped), elapsed_ms=elapsed_ms))
    console.print()


def failure_panel(outcome: ExecutionOutcome) -> Panel:
    """One failure log entry: the full detail, tagged with elapsed ms."""
    lines = (outcome.detail.rstrip() or '(no detail)').splitlines()
    if len(lines) > _FAILURE_LOG_LINES:
        omitted = len(lines) - _FAILURE_LOG_LINES
        body = Text('\n'.join(lines[:_FAILURE_LOG_LINES]))
        body.append(f'\n… ({omitted} lines omitted, use -v for full output)', style='dim')
    else:
        body = Text('\n'.join(lines))
    return Panel(
        body,
        title=(
            f'[bold red]{escape(outcome.test_id)}[/bold red] — '
            f'{outcome.status.value} after {outcome.duration_ms:.0f}ms'
        ),
        border_style='red',
        expand=False,
        padding=(0, 1),
    )


def print_failure_log(failures: Sequence[ExecutionOutcome]) -> None:
    """Print a consolidated failure log, one panel per failure."""
    if not failures:
        return
    console.print()
    console.rule('[bold red]Failure Log[/bold red]', style='red')
    console.print()
    for outcome in failures:
        console.print(failure_panel(outcome))
        console.print()


def print_dry_run_previews(outcomes: Sequence[ExecutionOutcome]) -> None:
    """Print the rendered client command of every dry-run outcome."""
    previews = [o for o in outcomes if o.preview]
    if not previews:
        return
    console.print()
    console.rule('[bold cyan]Dry Run[/bold cyan]', style='cyan')
    console.print()
    for outcome in previews:
        console.print(
            Panel(
                Text(outcome.preview),
                title=f'[bold cyan]{escape(outcome.test_id)}[/bold cyan]',
                border_style='cyan',
                expand=False,
                padding=(0, 1),
            )
        )


def log_outcome(outcome: ExecutionOutcome) -> None:
    """Print a single-line result, used instead of the live table in verbose mode."""
    elapsed = duration_str(outcome.duration_ms)
    if outcome.status == Status.PASSED:
        console.print(f'  [green]✓[/green] {escape(outcome.test_id)} — [green]passed[/green] {elapsed}')
    elif outcome.status == Status.FAILED:
        console.print(f'  [red]✗[/red] {escape(outcome.test_id)} — [red]failed[/red] {elapsed}')
        for line in outcome.detail.rstrip().splitlines():
            console.print(f'    [dim]│[/dim] {escape(line)}')
    else:
        console.print(
            f'  [red]![/red] {escape(outcome.test_id)} — [red]error[/red]: {escape(first_line(outcome.detail))}',
        )


class ProgressDisplay:
    """Live progress table fed by the orchestrator's ``on_complete`` callback.

    Usage::

        with ProgressDisplay(total=len(paths)) as progress:
            batch = await orchestrator.run_many(paths, on_complete=progress.on_complete)
    """

    def __init__(self, total: int, *, target: Console | None = None) -> None:
        """Initialize for a batch of *total* tests."""
        self.total = total
        self.outcomes: list[ExecutionOutcome] = []
        self._live = Live(
            build_progress_table(self.outcomes, total),
            console=target or console,
            refresh_per_second=4,
            transient=True,
        )

    def on_complete(self, outcome: ExecutionOutcome) -> None:
        """Record *outcome* and refresh the table."""
        self.outcomes.append(outcome)
        self._live.update(build_progress_table(self.outcomes, self.total))

    def __enter__(self) -> ProgressDisplay:
        """Start the live display."""
        self._live.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Stop the live display."""
        self._live.stop()


__all__ = [
    'ProgressDisplay',
    'build_progress_bar',
    'build_progress_table',
    'build_summary_table',
    'console',
    'duration_str',
    'elapsed_str',
    'failure_panel',
    'first_line',
    'log_outcome',
    'print_dry_run_previews',
    'print_failure_log',
    'print_summary',
    'rust_warning',
    'status_emoji',
    'status_style',
    'stdout_console',
    'summary_footer',
]
