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

"""CLI entry point for the ``grpctestify`` tool.

Usage::

    grpctestify [FLAGS] PATH [PATH ...]
        Run every .gctf file given or found under the given directories.

    grpctestify --list-verbs
        List the assertion verbs available (built-in and plugins).

Exit codes::

    0   every test passed
    1   at least one test failed or errored
    2   usage or configuration error

Settings resolve as defaults < environment < grpctestify.toml < flags;
see :mod:`grpctestify.config`.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

from rich import box
from rich.table import Table
from rich_argparse import RichHelpFormatter

from grpctestify import __version__
from grpctestify.config import DRY_RUN_OUTCOMES, SORT_MODES, GrpcTestifyConfig, load_config
from grpctestify.display import (
    ProgressDisplay,
    console,
    log_outcome,
    print_dry_run_previews,
    print_failure_log,
    print_summary,
    rust_warning,
    stdout_console,
    summary_footer,
)
from grpctestify.errors import GrpcTestifyError, render_error
from grpctestify.logging import configure_logging, get_logger
from grpctestify.orchestrator import BatchResult, Orchestrator, collect_tests
from grpctestify.parser import DefinitionCache
from grpctestify.reports import ReportFormat, render_report, write_report
from grpctestify.verbs import VerbRegistry, default_registry

log = get_logger('grpctestify.cli')

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with rich-argparse formatting."""
    RichHelpFormatter.styles['argparse.groups'] = 'yellow bold'
    RichHelpFormatter.styles['argparse.args'] = 'cyan'
    RichHelpFormatter.styles['argparse.metavar'] = 'dark_cyan'

    parser = argparse.ArgumentParser(
        prog='grpctestify',
        description=(
            'Declarative gRPC test runner.\n\n'
            'Runs .gctf test files against live gRPC services through grpcurl,\n'
            'concurrently, and reports a unified result table.'
        ),
        formatter_class=RichHelpFormatter,
    )
    parser.add_argument('paths', nargs='*', metavar='PATH', help='Test files or directories (searched for *.gctf).')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    run = parser.add_argument_group('execution')
    run.add_argument(
        '-p',
        '--parallel',
        type=int,
        default=-1,
        metavar='N',
        help='Maximum tests run at once (default: CPU count).',
    )
    run.add_argument('--address', default='', metavar='HOST:PORT', help='Default server address.')
    run.add_argument('--timeout', type=float, default=-1.0, metavar='S', help='Per-call timeout in seconds.')
    run.add_argument('--retry', type=int, default=-1, metavar='N', help='Attempts per call on transient errors.')
    run.add_argument('--retry-delay', type=int, default=-1, metavar='MS', help='Initial backoff delay in ms.')
    run.add_argument('--no-retry', action='store_true', help='Single attempt, no liveness probe.')
    run.add_argument('--fail-fast', action='store_true', help='Stop starting tests after the first failure.')
    run.add_argument('--sort', default='', choices=SORT_MODES, help='Test order (default: path).')
    run.add_argument('--seed', type=int, default=None, metavar='N', help='Seed for --sort random.')
    run.add_argument('--dry-run', action='store_true', help='Print the grpcurl commands instead of calling.')
    run.add_argument(
        '--dry-run-outcome',
        default='',
        choices=DRY_RUN_OUTCOMES,
        help='Simulated result in dry-run mode (default: auto, an error only where the test expects one).',
    )
    run.add_argument('--config', default=None, metavar='FILE', help='grpctestify.toml or pyproject.toml to use.')

    out = parser.add_argument_group('output')
    out.add_argument('-v', '--verbose', action='store_true', help='Debug logging and one line per test.')
    out.add_argument('-q', '--quiet', action='store_true', help='Only the footer and failures.')
    out.add_argument('--json-log', action='store_true', help='Structured JSON logs on stderr.')
    out.add_argument(
        '--log-format',
        default=None,
        choices=[f.value for f in ReportFormat],
        help='Write a machine-readable report.',
    )
    out.add_argument('--log-output', default=None, metavar='FILE', help='Report file (default: stdout).')
    out.add_argument('--list-verbs', action='store_true', help='List assertion verbs and exit.')
    return parser


def _load(args: argparse.Namespace) -> GrpcTestifyConfig:
    return load_config(
        config_path=Path(args.config) if args.config else None,
        address_override=args.address,
        concurrency_override=args.parallel,
        timeout_override=args.timeout,
        max_attempts_override=args.retry,
        retry_delay_override=args.retry_delay,
        no_retry=args.no_retry,
        dry_run=args.dry_run,
        dry_run_outcome_override=args.dry_run_outcome,
        sort_override=args.sort,
        fail_fast=args.fail_fast,
    )


def _cmd_list_verbs(registry: VerbRegistry) -> int:
    """Print the verb table to stdout."""
    table = Table(
        title='Assertion Verbs',
        box=box.ROUNDED,
        title_style='bold cyan',
        border_style='dim',
        header_style='bold',
    )
    table.add_column('Verb', style='bold cyan')
    table.add_column('Description')
    for name, summary in registry.describe().items():
        table.add_row(f'@{name}', summary)
    stdout_console.print(table)
    return EXIT_OK


async def _run_batch(
    orchestrator: Orchestrator,
    paths: Sequence[Path],
    *,
    verbose: bool,
    quiet: bool,
) -> BatchResult:
    """Run *paths*, with a live table on a terminal and plain lines otherwise."""
    if verbose:
        return await orchestrator.run_many(paths, on_complete=log_outcome)
    if quiet or not console.is_terminal:
        return await orchestrator.run_many(paths)
    with ProgressDisplay(len(paths)) as progress:
        return await orchestrator.run_many(paths, on_complete=progress.on_complete)


def _report(batch: BatchResult, fmt: str, output: str | None) -> None:
    report_format = ReportFormat(fmt)
    if output:
        write_report(batch, Path(output), fmt=report_format)
    else:
        sys.stdout.write(render_report(batch, report_format))


def _cmd_run(args: argparse.Namespace) -> int:
    """Run the test batch and render results."""
    config = _load(args)
    registry = default_registry(config.plugin_dir)
    if args.list_verbs:
        return _cmd_list_verbs(registry)

    paths = collect_tests([Path(p) for p in args.paths], config.sort, seed=args.seed)
    log.debug('tests_collected', count=len(paths), sort=config.sort, concurrency=config.concurrency)

    orchestrator = Orchestrator(config, registry=registry, cache=DefinitionCache())
    batch = asyncio.run(_run_batch(orchestrator, paths, verbose=args.verbose, quiet=args.quiet))

    if args.quiet:
        console.print(summary_footer(batch.outcomes, skipped=len(batch.skipped), elapsed_ms=batch.elapsed_ms))
    else:
        print_summary(batch.outcomes, skipped=batch.skipped, elapsed_ms=batch.elapsed_ms)
    if config.dry_run and not args.quiet:
        print_dry_run_previews(batch.outcomes)
    print_failure_log(batch.failures.ordered())

    if args.log_format:
        _report(batch, args.log_format, args.log_output)

    if batch.skipped:
        rust_warning(
            'GT-FAIL-FAST',
            f'{len(batch.skipped)} test(s) not started',
            note='--fail-fast stops scheduling after the first failure',
        )

    return EXIT_OK if batch.ok else EXIT_FAILED


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for the ``grpctestify`` CLI."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.paths and not args.list_verbs:
        parser.error('no test paths given')
    configure_logging(verbose=args.verbose, quiet=args.quiet, json_log=args.json_log)

    try:
        code = _cmd_run(args)
    except GrpcTestifyError as exc:
        render_error(exc)
        code = EXIT_USAGE
    sys.exit(code)


__all__ = ['main']
