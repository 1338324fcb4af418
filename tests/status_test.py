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

"""Tests for grpctestify.status."""

from __future__ import annotations

import pytest
from grpctestify.status import extract_error, is_error_payload, json_objects, match_error, status_code
from grpctestify.types import ExpectedError

GRPCURL_TEXT = """ERROR:
  Code: NotFound
  Message: user 42 not found
"""

GO_ERROR = 'Failed to dial target host: rpc error: code = Unavailable desc = connection refused'


class TestStatusCode:
    """Tests for status_code."""

    @pytest.mark.parametrize(
        ('token', 'expected'),
        [('NotFound', 5), ('NOT_FOUND', 5), ('not_found', 5), ('14', 14), (3, 3), ('Canceled', 1), ('Bogus', None)],
    )
    def test_folding(self, token: str | int, expected: int | None) -> None:
        """Names fold across spellings; numbers pass through."""
        assert status_code(token) == expected


class TestJsonObjects:
    """Tests for json_objects."""

    def test_embedded(self) -> None:
        """Objects are found between other text."""
        assert json_objects('noise {"a": 1} more {"b": [2]} {broken') == [{'a': 1}, {'b': [2]}]


class TestIsErrorPayload:
    """Tests for is_error_payload."""

    def test_status_shape(self) -> None:
        """code plus optional message and details is a status payload."""
        assert is_error_payload({'code': 5, 'message': 'x'})
        assert is_error_payload({'code': 5, 'message': 'x', 'details': []})

    def test_message_shape(self) -> None:
        """Anything else is a regular message."""
        assert not is_error_payload({'code': 5, 'user': 'x'})
        assert not is_error_payload({'message': 'x'})
        assert not is_error_payload([1])


class TestExtractError:
    """Tests for extract_error."""

    def test_json(self) -> None:
        """-format-error JSON wins."""
        payload = extract_error('ERROR:\n{"code": 5, "message": "not found", "details": [{"k": 1}]}')
        assert payload.code == 5
        assert payload.message == 'not found'
        assert payload.details == ({'k': 1},)

    def test_json_named_code(self) -> None:
        """A code given by name is folded."""
        assert extract_error('{"code": "NOT_FOUND", "message": "x"}').code == 5

    def test_grpcurl_text(self) -> None:
        """The Code:/Message: layout is understood."""
        payload = extract_error(GRPCURL_TEXT)
        assert payload.code == 5
        assert payload.message == 'user 42 not found'

    def test_go_error_string(self) -> None:
        """The code = / desc = layout is understood."""
        payload = extract_error(GO_ERROR)
        assert payload.code == 14
        assert payload.message == 'connection refused'

    def test_unstructured(self) -> None:
        """Without structure the whole output is the message."""
        payload = extract_error('  something broke  ')
        assert payload.code is None
        assert payload.message == 'something broke'


class TestMatchError:
    """Tests for match_error."""

    def test_scenario_b(self) -> None:
        """Scenario B: code 5 and a message substring match."""
        expected = ExpectedError(code=5, message='not found')
        assert match_error(expected, GRPCURL_TEXT) == (True, '')

    def test_code_mismatch(self) -> None:
        """A different code fails with a reason."""
        matched, reason = match_error(ExpectedError(code=3), GRPCURL_TEXT)
        assert not matched
        assert 'expected code 3, got 5' in reason

    def test_message_mismatch(self) -> None:
        """The message must be contained in the actual message."""
        matched, reason = match_error(ExpectedError(message='permission denied'), GRPCURL_TEXT)
        assert not matched
        assert 'permission denied' in reason

    def test_raw_whitespace_normalized(self) -> None:
        """A raw string matches with whitespace collapsed."""
        assert match_error(ExpectedError(raw='Code:  NotFound Message: user'), GRPCURL_TEXT)[0]

    def test_details_partial(self) -> None:
        """Each expected detail must partially match an actual detail."""
        output = '{"code": 3, "message": "bad", "details": [{"@type": "x", "field": "email", "extra": 1}]}'
        assert match_error(ExpectedError(code=3, details=({'field': 'email'},)), output)[0]
        matched, reason = match_error(ExpectedError(code=3, details=({'field': 'name'},)), output)
        assert not matched
        assert 'no error detail matches' in reason
