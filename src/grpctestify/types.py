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

"""Shared types for the ``grpctestify`` tool.

This module contains types that are used across multiple modules
(``parser``, ``comparator``, ``executor``, ``orchestrator``, ``display``)
to avoid circular imports.  It has **no** internal dependencies.

Data Model::

    TestDefinition ──┬── requests: tuple[JSON, ...]
                     ├── expected_response / expected_error / assertions
                     ├── tls: TlsConfig     proto: ProtoConfig
                     ├── response_options: ComparisonOptions
                     └── options: TestOptions

    ExecutionOutcome  (one per test file, immutable)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


class Status(enum.Enum):
    """Status of a single test file run."""

    PENDING = 'pending'
    RUNNING = 'running'
    PASSED = 'passed'
    FAILED = 'failed'
    SKIPPED = 'skipped'
    ERROR = 'error'


class CompareMode(enum.Enum):
    """Response comparison mode."""

    EXACT = 'exact'
    PARTIAL = 'partial'


class TlsMode(enum.Enum):
    """Transport security mode for the gRPC client."""

    PLAINTEXT = 'plaintext'
    INSECURE = 'insecure'
    TLS = 'tls'
    MTLS = 'mtls'


class ProtoMode(enum.Enum):
    """Where the gRPC client gets its schema from."""

    REFLECTION = 'reflection'
    FILES = 'files'
    DESCRIPTOR = 'descriptor'


@dataclass(frozen=True)
class TlsConfig:
    """Transport security settings from a ``--- TLS ---`` section.

    Attributes:
        mode: Transport security mode.
        ca_cert: CA bundle used to verify the server.
        cert: Client certificate (mutual TLS).
        key: Client private key (mutual TLS).
        server_name: Override for the TLS server name check.
        authority: Value for the ``:authority`` pseudo-header.
        insecure_skip_verify: Skip server certificate verification.
    """

    mode: TlsMode = TlsMode.PLAINTEXT
    ca_cert: str = ''
    cert: str = ''
    key: str = ''
    server_name: str = ''
    authority: str = ''
    insecure_skip_verify: bool = False


@dataclass(frozen=True)
class ProtoConfig:
    """Schema source settings from a ``--- PROTO ---`` section."""

    mode: ProtoMode = ProtoMode.REFLECTION
    files: tuple[str, ...] = ()
    descriptor: str = ''
    import_paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class ComparisonOptions:
    """Inline options from a ``--- RESPONSE ... ---`` marker.

    Attributes:
        mode: Exact (canonical equality) or partial (recursive subset).
        tolerance: Absolute numeric tolerance keyed by jq path.
        tol_percent: Percentage tolerance keyed by jq path.
        redact_paths: jq paths deleted from both sides before comparing.
        unordered_arrays: Sort every array in both documents.
        unordered_array_paths: jq paths whose arrays are sorted.
        with_asserts: Also run ASSERTS groups after a RESPONSE match.
    """

    mode: CompareMode = CompareMode.EXACT
    tolerance: dict[str, float] = field(default_factory=dict)
    tol_percent: dict[str, float] = field(default_factory=dict)
    redact_paths: tuple[str, ...] = ()
    unordered_arrays: bool = False
    unordered_array_paths: tuple[str, ...] = ()
    with_asserts: bool = False


@dataclass(frozen=True)
class ExpectedError:
    """Expected RPC failure from an ``--- ERROR ---`` section.

    ``raw`` is set instead of ``code``/``message`` when the section holds a
    bare JSON string; the actual output must then contain it verbatim.
    """

    code: int | None = None
    message: str = ''
    details: tuple[Any, ...] = ()
    raw: str = ''


@dataclass(frozen=True)
class AssertionGroup:
    """Predicates from one ``--- ASSERTS ---`` section.

    Group *N* (0-based, in file order) is evaluated against streamed
    message *N*.
    """

    predicates: tuple[str, ...]
    line: int = 0


@dataclass(frozen=True)
class TestOptions:
    """Per-test settings from an ``--- OPTIONS ---`` section."""

    __test__ = False

    timeout_s: float | None = None
    retries: int | None = None


@dataclass(frozen=True)
class TestDefinition:
    """A fully parsed ``.gctf`` test definition.

    ``address`` is ``None`` when the file has no ADDRESS section; the
    orchestrator then supplies the configured default.
    """

    __test__ = False

    path: Path
    endpoint: str
    address: str | None = None
    requests: tuple[Any, ...] = ()
    expected_response: Any = None
    has_response: bool = False
    expected_error: ExpectedError | None = None
    assertions: tuple[AssertionGroup, ...] = ()
    headers: dict[str, str] = field(default_factory=dict)
    tls: TlsConfig = field(default_factory=TlsConfig)
    proto: ProtoConfig = field(default_factory=ProtoConfig)
    response_options: ComparisonOptions = field(default_factory=ComparisonOptions)
    options: TestOptions = field(default_factory=TestOptions)

    @property
    def test_id(self) -> str:
        """Stable identifier used in reports: the file stem."""
        return self.path.stem


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of running one test file.

    Created once by the orchestrator and never mutated.

    Attributes:
        test_id: The test file path as given on the command line.
        status: PASSED, FAILED or ERROR.
        duration_ms: Wall-clock duration of the whole test lifecycle.
        detail: Human-readable failure detail (empty on success).
        preview: Rendered client command (dry-run only).
    """

    test_id: str
    status: Status
    duration_ms: float = 0.0
    detail: str = ''
    preview: str = ''

    @property
    def ok(self) -> bool:
        """Whether the test passed."""
        return self.status == Status.PASSED


__all__ = [
    'AssertionGroup',
    'CompareMode',
    'ComparisonOptions',
    'ExecutionOutcome',
    'ExpectedError',
    'ProtoConfig',
    'ProtoMode',
    'Status',
    'TestDefinition',
    'TestOptions',
    'TlsConfig',
    'TlsMode',
]
