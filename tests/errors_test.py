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

"""Tests for grpctestify.errors module."""

from __future__ import annotations

import dataclasses
import io

import pytest
from grpctestify.errors import (
    ERRORS,
    AssertionFailure,
    ComparisonMismatch,
    DefinitionIOError,
    E,
    ErrorCode,
    ErrorInfo,
    GrpcTestifyError,
    InsufficientMessages,
    TransientNetworkError,
    ValidationError,
    explain,
    render_error,
)


class TestCodes:
    """The GT-* code namespace."""

    def test_prefix(self) -> None:
        """Codes are namespaced under GT-."""
        bad = [c.name for c in ErrorCode if not c.value.startswith('GT-')]
        assert bad == []

    def test_unique(self) -> None:
        """No two members share a code string."""
        seen = {c.value for c in ErrorCode}
        assert len(seen) == len(list(ErrorCode))

    def test_short_name(self) -> None:
        """E is the short spelling used at raise sites."""
        assert E is ErrorCode
        assert E('GT-DEF-INVALID') is E.DEF_INVALID


class TestCatalogEntry:
    """ErrorInfo records."""

    def test_immutable(self) -> None:
        """Catalog entries cannot be edited after creation."""
        entry = ErrorInfo(code=E.CLIENT_NOT_FOUND, message='grpcurl missing')
        with pytest.raises(dataclasses.FrozenInstanceError):
            entry.message = 'other'  # type: ignore[misc]

    def test_hint_optional(self) -> None:
        """An entry without a hint carries an empty one."""
        assert not ErrorInfo(code=E.CLIENT_NOT_FOUND, message='grpcurl missing').hint


class TestGrpcTestifyError:
    """Tests for the exception hierarchy."""

    def test_message_includes_code(self) -> None:
        """str() should include the GT code and the message."""
        err = ValidationError('missing ENDPOINT')
        assert 'GT-DEF-INVALID' in str(err)
        assert 'missing ENDPOINT' in str(err)

    def test_line_prefix(self) -> None:
        """ValidationError prefixes the line number when given."""
        err = ValidationError('bad JSON', line=7)
        assert err.message == 'line 7: bad JSON'
        assert err.line == 7

    def test_code_override(self) -> None:
        """An explicit code overrides the subclass default."""
        err = ValidationError('conflict', code=E.DEF_CONFLICT)
        assert err.code is E.DEF_CONFLICT

    def test_subclass_default_codes(self) -> None:
        """Each subclass carries its own default code."""
        assert DefinitionIOError('x').code is E.DEF_UNREADABLE
        assert ComparisonMismatch('x').code is E.RESPONSE_MISMATCH
        assert AssertionFailure('x').code is E.ASSERTION_FAILED
        assert TransientNetworkError('x').code is E.NETWORK_TRANSIENT

    def test_all_are_grpctestify_errors(self) -> None:
        """Every taxonomy member derives from GrpcTestifyError."""
        for exc in (ValidationError('x'), DefinitionIOError('x'), InsufficientMessages(2, 1)):
            assert isinstance(exc, GrpcTestifyError)

    def test_insufficient_messages_counts(self) -> None:
        """InsufficientMessages records both counts in the message."""
        err = InsufficientMessages(3, 1)
        assert err.expected == 3
        assert err.actual == 1
        assert '3' in err.message and '1' in err.message

    def test_transient_error_attempts(self) -> None:
        """TransientNetworkError keeps the attempt count and last output."""
        err = TransientNetworkError('gave up', attempts=3, last_output='connection refused')
        assert err.attempts == 3
        assert err.last_output == 'connection refused'
        assert err.hint


class TestCatalog:
    """The ERRORS catalog and explain()."""

    def test_entries_keyed_by_own_code(self) -> None:
        """Each entry is filed under its own code and says something."""
        for code, entry in ERRORS.items():
            assert entry.code is code
            assert entry.message.strip()

    def test_explain_catalogued(self) -> None:
        """A catalogued code explains itself with a hint."""
        text = explain('GT-CLIENT-NOT-FOUND')
        assert text is not None
        assert 'grpcurl' in text
        assert 'Hint:' in text

    def test_explain_bogus(self) -> None:
        """A string that is not a code explains nothing."""
        assert explain('GT-NOPE') is None

    def test_explain_uncatalogued(self) -> None:
        """A real code without an entry gets the fallback text."""
        text = explain('GT-RPC-ERROR')
        assert text is not None
        assert 'No detailed explanation' in text


class TestRenderError:
    """Rendering errors for the terminal."""

    def test_plain_output_when_not_tty(self) -> None:
        """Non-TTY output uses the plain Rust-style format."""
        buf = io.StringIO()
        render_error(ValidationError('oops', hint='fix it'), file=buf)
        out = buf.getvalue()
        assert out.startswith('error[GT-DEF-INVALID]: oops')
        assert '= hint: fix it' in out
