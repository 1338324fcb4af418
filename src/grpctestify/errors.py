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

"""Structured error system for grpctestify.

Every error has a unique ``GT-NAMED-KEY`` code, a human-readable message,
and an optional hint with a suggested fix.

Key Concepts (ELI5)::

    ┌─────────────────────────┬──────────────────────────────────────────────┐
    │ Concept                 │ ELI5 Explanation                             │
    ├─────────────────────────┼──────────────────────────────────────────────┤
    │ ErrorCode               │ A named ID like "GT-DEF-INVALID" so a CI log │
    │                         │ line can be grepped and explained.           │
    ├─────────────────────────┼──────────────────────────────────────────────┤
    │ GrpcTestifyError        │ The exception base class. Subclasses say     │
    │                         │ which kind of failure happened.              │
    ├─────────────────────────┼──────────────────────────────────────────────┤
    │ Infrastructure vs data  │ ValidationError / DefinitionIOError mean the │
    │                         │ test could not run (ERROR).  Mismatches and  │
    │                         │ network failures mean it ran and failed.     │
    ├─────────────────────────┼──────────────────────────────────────────────┤
    │ explain()               │ Looks up a code and prints what it means.    │
    └─────────────────────────┴──────────────────────────────────────────────┘

Taxonomy::

    GrpcTestifyError
    ├── ValidationError          malformed .gctf file          → ERROR
    ├── DefinitionIOError        unreadable file               → ERROR
    ├── ClientNotFoundError      grpcurl missing               → ERROR
    ├── ConfigError              bad grpctestify.toml / flags  → exit 2
    ├── TransientNetworkError    retried, then                 → FAILED
    ├── RpcApplicationError      non-zero exit, parsed payload → FAILED*
    ├── ComparisonMismatch       RESPONSE did not match        → FAILED
    ├── AssertionFailure         an ASSERTS predicate failed   → FAILED
    └── InsufficientMessages     fewer messages than groups    → FAILED

    * unless it matches the ERROR section, in which case the test passes.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, TextIO

from rich.console import Console
from rich.markup import escape as rich_escape


class ErrorCode(str, Enum):
    """Enumeration of all grpctestify diagnostic codes."""

    # Test definitions
    DEF_INVALID = 'GT-DEF-INVALID'
    DEF_UNREADABLE = 'GT-DEF-UNREADABLE'
    DEF_CONFLICT = 'GT-DEF-CONFLICT'

    # Execution
    CLIENT_NOT_FOUND = 'GT-CLIENT-NOT-FOUND'
    NETWORK_TRANSIENT = 'GT-NETWORK-TRANSIENT'
    SERVICE_UNAVAILABLE = 'GT-SERVICE-UNAVAILABLE'
    RPC_ERROR = 'GT-RPC-ERROR'

    # Validation
    RESPONSE_MISMATCH = 'GT-RESPONSE-MISMATCH'
    ERROR_MISMATCH = 'GT-ERROR-MISMATCH'
    ASSERTION_FAILED = 'GT-ASSERTION-FAILED'
    INSUFFICIENT_MESSAGES = 'GT-INSUFFICIENT-MESSAGES'

    # Configuration
    CONFIG_INVALID = 'GT-CONFIG-INVALID'
    PLUGIN_LOAD_FAILED = 'GT-PLUGIN-LOAD-FAILED'
    NO_TESTS_FOUND = 'GT-NO-TESTS-FOUND'


# Convenience alias for shorter imports.
E = ErrorCode


@dataclass(frozen=True)
class ErrorInfo:
    """Metadata for a single error code."""

    code: ErrorCode
    message: str
    hint: str = ''


class GrpcTestifyError(Exception):
    """Base exception for all grpctestify errors.

    Args:
        code: The error code from :class:`ErrorCode`.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    default_code: ErrorCode = E.DEF_INVALID

    def __init__(self, message: str, *, code: ErrorCode | None = None, hint: str = '') -> None:
        """Initialize with a message, an optional code override, and a hint."""
        resolved = code or self.default_code
        self.info = ErrorInfo(code=resolved, message=message, hint=hint)
        super().__init__(f'[{resolved.value}] {message}')

    @property
    def code(self) -> ErrorCode:
        """The error code."""
        return self.info.code

    @property
    def message(self) -> str:
        """The message without the code prefix."""
        return self.info.message

    @property
    def hint(self) -> str:
        """Suggestion for fixing this error, or empty string."""
        return self.info.hint


class ValidationError(GrpcTestifyError):
    """A test definition is malformed.  Fatal to that test only."""

    default_code = E.DEF_INVALID

    def __init__(self, message: str, *, line: int = 0, code: ErrorCode | None = None, hint: str = '') -> None:
        """Initialize with the offending line number when known."""
        if line:
            message = f'line {line}: {message}'
        super().__init__(message, code=code, hint=hint)
        self.line = line


class DefinitionIOError(GrpcTestifyError):
    """A test definition could not be read."""

    default_code = E.DEF_UNREADABLE


class ClientNotFoundError(GrpcTestifyError):
    """The external gRPC client binary is not on ``PATH``."""

    default_code = E.CLIENT_NOT_FOUND


class ConfigError(GrpcTestifyError):
    """Invalid tool configuration (TOML, environment, or CLI flags)."""

    default_code = E.CONFIG_INVALID


class TransientNetworkError(GrpcTestifyError):
    """A call kept failing with a transient network error.

    ``attempts`` is the number of attempts made; ``last_output`` is the
    client output of the final attempt.
    """

    default_code = E.NETWORK_TRANSIENT

    def __init__(self, message: str, *, attempts: int = 1, last_output: str = '') -> None:
        """Initialize with the attempt count and last client output."""
        super().__init__(message, hint='check that the service is running and reachable')
        self.attempts = attempts
        self.last_output = last_output


class RpcApplicationError(GrpcTestifyError):
    """The RPC failed with a well-formed status payload."""

    default_code = E.RPC_ERROR

    def __init__(self, message: str, *, status_code: int | None = None, output: str = '') -> None:
        """Initialize with the parsed gRPC status code and raw output."""
        super().__init__(message)
        self.status_code = status_code
        self.output = output


class ComparisonMismatch(GrpcTestifyError):
    """The actual response did not match the RESPONSE section."""

    default_code = E.RESPONSE_MISMATCH

    def __init__(self, message: str, *, expected: Any = None, actual: Any = None) -> None:  # noqa: ANN401 - arbitrary JSON
        """Initialize with both documents for diff rendering."""
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class AssertionFailure(GrpcTestifyError):
    """One or more ASSERTS predicates evaluated to false."""

    default_code = E.ASSERTION_FAILED

    def __init__(self, message: str, *, failures: list[str] | None = None) -> None:
        """Initialize with the individual failed predicate descriptions."""
        super().__init__(message)
        self.failures = failures or []


class InsufficientMessages(GrpcTestifyError):
    """Fewer streamed messages arrived than there are ASSERTS groups."""

    default_code = E.INSUFFICIENT_MESSAGES

    def __init__(self, expected: int, actual: int) -> None:
        """Initialize with the group count and message count."""
        super().__init__(
            f'expected at least {expected} streamed message(s) for ASSERTS, got {actual}',
            hint='remove the extra ASSERTS sections or check the streaming endpoint',
        )
        self.expected = expected
        self.actual = actual


ERRORS: dict[ErrorCode, ErrorInfo] = {
    E.DEF_INVALID: ErrorInfo(
        code=E.DEF_INVALID,
        message='The test definition file is malformed.',
        hint='Check section markers (--- NAME ---) and that JSON sections are valid JSON.',
    ),
    E.DEF_CONFLICT: ErrorInfo(
        code=E.DEF_CONFLICT,
        message='The test definition combines sections that cannot be used together.',
        hint="Use either RESPONSE or ERROR; combine RESPONSE with ASSERTS via 'RESPONSE with_asserts'.",
    ),
    E.CLIENT_NOT_FOUND: ErrorInfo(
        code=E.CLIENT_NOT_FOUND,
        message='grpcurl was not found on PATH.',
        hint='Install grpcurl (https://github.com/fullstorydev/grpcurl) or set `grpcurl` in grpctestify.toml.',
    ),
    E.SERVICE_UNAVAILABLE: ErrorInfo(
        code=E.SERVICE_UNAVAILABLE,
        message='The gRPC service did not accept TCP connections.',
        hint='Start the service, or set GRPCTESTIFY_ADDRESS / the ADDRESS section to the right host:port.',
    ),
    E.INSUFFICIENT_MESSAGES: ErrorInfo(
        code=E.INSUFFICIENT_MESSAGES,
        message='The stream ended before every ASSERTS group had a message.',
        hint='Each ASSERTS section is matched to one streamed message, in order.',
    ),
    E.NO_TESTS_FOUND: ErrorInfo(
        code=E.NO_TESTS_FOUND,
        message='No .gctf files were found.',
        hint='Pass a .gctf file or a directory containing .gctf files.',
    ),
}


def explain(code: str) -> str | None:
    """Return a detailed explanation for an error code.

    Args:
        code: The error code string, e.g. ``"GT-DEF-INVALID"``.

    Returns:
        A formatted explanation string, or ``None`` if the code is unknown.
    """
    try:
        error_code = ErrorCode(code)
    except ValueError:
        return None

    info = ERRORS.get(error_code)
    if info is None:
        return f'{code}: No detailed explanation available.'

    lines = [f'{code}: {info.message}']
    if info.hint:
        lines.append(f'  Hint: {info.hint}')
    return '\n'.join(lines)


def render_error(exc: GrpcTestifyError, *, file: TextIO | None = None) -> None:
    """Render an error in Rust-compiler style.

    Output format::

        error[GT-CONFIG-INVALID]: concurrency must be a positive integer
          |
          = hint: ...

    Args:
        exc: The error to render.
        file: Output stream (defaults to ``sys.stderr``).
    """
    out = file or sys.stderr

    if out.isatty():
        console = Console(file=out, highlight=False)
        msg = rich_escape(exc.message)
        console.print(f'[bold red]error[/bold red][bold red]\\[{exc.code.value}][/bold red][bold]: {msg}[/bold]')
        if exc.hint:
            console.print('  [dim]|[/dim]')
            console.print(f'  [dim]=[/dim] [cyan]hint[/cyan]: {rich_escape(exc.hint)}')
        console.print()
    else:
        print(f'error[{exc.code.value}]: {exc.message}', file=out)  # noqa: T201 - CLI output
        if exc.hint:
            print('  |', file=out)  # noqa: T201 - CLI output
            print(f'  = hint: {exc.hint}', file=out)  # noqa: T201 - CLI output
        print(file=out)  # noqa: T201 - CLI output


__all__ = [
    'E',
    'ERRORS',
    'AssertionFailure',
    'ClientNotFoundError',
    'ComparisonMismatch',
    'ConfigError',
    'DefinitionIOError',
    'ErrorCode',
    'ErrorInfo',
    'GrpcTestifyError',
    'InsufficientMessages',
    'RpcApplicationError',
    'TransientNetworkError',
    'ValidationError',
    'explain',
    'render_error',
]
