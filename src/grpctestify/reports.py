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

"""Machine-readable batch reports: JUnit XML and JSON.

Supported formats::

    ┌──────────────┬──────────────────────────────────────────────────────┐
    │ Format       │ Output                                               │
    ├──────────────┼──────────────────────────────────────────────────────┤
    │ JUnit        │ ``<testsuites><testsuite><testcase>`` XML, readable  │
    │              │ by CI systems (Jenkins, GitLab, GitHub Actions).     │
    ├──────────────┼──────────────────────────────────────────────────────┤
    │ JSON         │ ``{"report", "summary", "test_results"}`` document.  │
    └──────────────┴──────────────────────────────────────────────────────┘

Mapping from outcomes::

    PASSED   → <testcase/>
    FAILED   → <testcase><failure message="first line">detail</failure>
    ERROR    → <testcase><error message="first line">detail</error>
    skipped  → <testcase><skipped message="not started (fail-fast)"/>

Usage::

    from grpctestify.reports import ReportFormat, write_report

    write_report(batch, Path('report.xml'), fmt=ReportFormat.JUNIT)
"""

from __future__ import annotations

import enum
import json
import socket
import xml.etree.ElementTree as ET  # noqa: N817, S405
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from grpctestify import __version__
from grpctestify.logging import get_logger
from grpctestify.orchestrator import BatchResult
from grpctestify.types import ExecutionOutcome, Status

logger = get_logger('grpctestify.reports')

SUITE_NAME = 'grpctestify'


class ReportFormat(enum.Enum):
    """Supported report formats."""

    JUNIT = 'junit'
    JSON = 'json'

    @property
    def extension(self) -> str:
        """Default file extension."""
        return '.xml' if self == ReportFormat.JUNIT else '.json'


def _seconds(ms: float) -> str:
    return f'{ms / 1000:.3f}'


def _summary_line(detail: str) -> str:
    lines = detail.strip().splitlines()
    return lines[0] if lines else ''


def _classname(test_id: str) -> str:
    """Dotted class name from the test path: ``tests/users/get.gctf`` → ``tests.users``."""
    parent = Path(test_id).parent.as_posix()
    if parent in ('', '.'):
        return SUITE_NAME
    return parent.strip('/').replace('/', '.')


def render_junit(batch: BatchResult, *, timestamp: datetime | None = None) -> str:
    """Render *batch* as a JUnit XML document."""
    when = (timestamp or datetime.now(timezone.utc)).isoformat(timespec='seconds')
    failures = batch.count(Status.FAILED)
    errors = batch.count(Status.ERROR)
    total = len(batch.outcomes) + len(batch.skipped)
    counts = {
        'tests': str(total),
        'failures': str(failures),
        'errors': str(errors),
        'skipped': str(len(batch.skipped)),
        'time': _seconds(batch.elapsed_ms),
    }

    root = ET.Element('testsuites', {'name': SUITE_NAME, **counts})
    suite = ET.SubElement(
        root,
        'testsuite',
        {'name': SUITE_NAME, **counts, 'timestamp': when, 'hostname': socket.gethostname()},
    )
    properties = ET.SubElement(suite, 'properties')
    ET.SubElement(properties, 'property', {'name': 'grpctestify.version', 'value': __version__})

    for outcome in batch.outcomes:
        case = ET.SubElement(
            suite,
            'testcase',
            {'name': outcome.test_id, 'classname': _classname(outcome.test_id), 'time': _seconds(outcome.duration_ms)},
        )
        if outcome.status == Status.FAILED:
            node = ET.SubElement(case, 'failure', {'message': _summary_line(outcome.detail), 'type': 'failure'})
            node.text = outcome.detail
        elif outcome.status == Status.ERROR:
            node = ET.SubElement(case, 'error', {'message': _summary_line(outcome.detail), 'type': 'error'})
            node.text = outcome.detail
    for test_id in batch.skipped:
        case = ET.SubElement(
            suite,
            'testcase',
            {'name': test_id, 'classname': _classname(test_id), 'time': '0.000'},
        )
        ET.SubElement(case, 'skipped', {'message': 'not started (fail-fast)'})

    ET.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding='unicode') + '\n'


def _result_entry(outcome: ExecutionOutcome) -> dict[str, Any]:
    entry: dict[str, Any] = {
        'test_file': outcome.test_id,
        'status': outcome.status.value,
        'duration_ms': round(outcome.duration_ms, 3),
    }
    if outcome.detail:
        entry['message'] = _summary_line(outcome.detail)
        entry['details'] = outcome.detail
    if outcome.preview:
        entry['command'] = outcome.preview
    return entry


def build_json_report(batch: BatchResult, *, timestamp: datetime | None = None) -> dict[str, Any]:
    """Build the JSON report document for *batch*."""
    when = (timestamp or datetime.now(timezone.utc)).isoformat(timespec='seconds')
    total = len(batch.outcomes) + len(batch.skipped)
    passed = batch.count(Status.PASSED)
    results = [_result_entry(o) for o in batch.outcomes]
    results += [{'test_file': t, 'status': Status.SKIPPED.value, 'duration_ms': 0} for t in batch.skipped]
    return {
        'report': {
            'format': 'json',
            'generator': {'name': SUITE_NAME, 'version': __version__},
            'timestamp': when,
        },
        'summary': {
            'total_tests': total,
            'passed': passed,
            'failed': batch.count(Status.FAILED),
            'errors': batch.count(Status.ERROR),
            'skipped': len(batch.skipped),
            'success_rate': round(passed * 100 / total, 2) if total else 0,
            'duration_ms': round(batch.elapsed_ms, 3),
        },
        'test_results': results,
    }


def render_report(batch: BatchResult, fmt: ReportFormat, *, timestamp: datetime | None = None) -> str:
    """Render *batch* in *fmt*."""
    if fmt == ReportFormat.JUNIT:
        return render_junit(batch, timestamp=timestamp)
    return json.dumps(build_json_report(batch, timestamp=timestamp), indent=2) + '\n'


def write_report(batch: BatchResult, output: Path, *, fmt: ReportFormat) -> Path:
    """Render *batch* and write it to *output*, creating parent directories.

    Returns:
        The path written.
    """
    content = render_report(batch, fmt)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content, encoding='utf-8')
    logger.info('report_written', path=str(output), format=fmt.value, tests=len(batch.outcomes))
    return output


__all__ = [
    'ReportFormat',
    'build_json_report',
    'render_junit',
    'render_report',
    'write_report',
]
