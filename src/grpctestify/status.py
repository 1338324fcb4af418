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

"""gRPC status codes and expected-error matching.

The external client reports failures in several shapes depending on flags
and version.  :func:`extract_error` normalizes all of them::

    {"code": 5, "message": "user not found"}          -format-error JSON
    ERROR:
      Code: NotFound                                  grpcurl text
      Message: user not found
    rpc error: code = NotFound desc = user not found  grpc-go error string
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from grpctestify.comparator import compare
from grpctestify.types import CompareMode, ComparisonOptions, ExpectedError

# Canonical gRPC status codes (google.rpc.Code).
STATUS_CODES: dict[str, int] = {
    'OK': 0,
    'CANCELLED': 1,
    'UNKNOWN': 2,
    'INVALID_ARGUMENT': 3,
    'DEADLINE_EXCEEDED': 4,
    'NOT_FOUND': 5,
    'ALREADY_EXISTS': 6,
    'PERMISSION_DENIED': 7,
    'RESOURCE_EXHAUSTED': 8,
    'FAILED_PRECONDITION': 9,
    'ABORTED': 10,
    'OUT_OF_RANGE': 11,
    'UNIMPLEMENTED': 12,
    'INTERNAL': 13,
    'UNAVAILABLE': 14,
    'DATA_LOSS': 15,
    'UNAUTHENTICATED': 16,
}

# "NotFound", "NOT_FOUND" and "not_found" all fold to "notfound".
_FOLDED: dict[str, int] = {name.replace('_', '').lower(): code for name, code in STATUS_CODES.items()}
_FOLDED['canceled'] = STATUS_CODES['CANCELLED']

_CODE_RE = re.compile(r'(?:^|\s)Code:\s*(\w+)', re.MULTILINE)
_CODE_EQ_RE = re.compile(r'\bcode\s*=\s*(\w+)')
_MESSAGE_RE = re.compile(r'(?:^|\s)Message:\s*(.+)$', re.MULTILINE)
_DESC_RE = re.compile(r'\bdesc\s*=\s*(.+)$', re.MULTILINE)

# Keys a status payload may carry.
_ERROR_KEYS = frozenset({'code', 'message', 'details'})


def status_code(token: str | int) -> int | None:
    """Map a status name or number to its integer code."""
    if isinstance(token, int):
        return token
    text = str(token).strip()
    if text.lstrip('-').isdigit():
        return int(text)
    return _FOLDED.get(text.replace('_', '').lower())


def _normalize_ws(text: str) -> str:
    return ' '.join(text.split())


def json_objects(text: str) -> list[Any]:
    """Every JSON object embedded in *text*, in order; other text is skipped."""
    decoder = json.JSONDecoder()
    found: list[Any] = []
    pos = text.find('{')
    while pos != -1:
        try:
            obj, end = decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            pos = text.find('{', pos + 1)
            continue
        found.append(obj)
        pos = text.find('{', end)
    return found


def is_error_payload(doc: Any) -> bool:  # noqa: ANN401 - arbitrary JSON
    """Whether *doc* looks like a status payload rather than a message."""
    return isinstance(doc, dict) and 'code' in doc and set(doc) <= _ERROR_KEYS


@dataclass(frozen=True)
class ErrorPayload:
    """A failure as reported by the client."""

    code: int | None = None
    message: str = ''
    details: tuple[Any, ...] = field(default_factory=tuple)


def extract_error(output: str) -> ErrorPayload:
    """Pull code, message and details out of client output."""
    for obj in json_objects(output):
        if isinstance(obj, dict) and 'code' in obj:
            raw_code = obj.get('code')
            code = status_code(raw_code) if isinstance(raw_code, (int, str)) else None
            details = obj.get('details') or []
            return ErrorPayload(
                code=code,
                message=str(obj.get('message', '')),
                details=tuple(details) if isinstance(details, list) else (details,),
            )

    code: int | None = None
    m = _CODE_RE.search(output) or _CODE_EQ_RE.search(output)
    if m is not None:
        code = status_code(m.group(1))

    m = _MESSAGE_RE.search(output) or _DESC_RE.search(output)
    message = m.group(1).strip() if m is not None else output.strip()
    return ErrorPayload(code=code, message=message)


def match_error(expected: ExpectedError, output: str) -> tuple[bool, str]:
    """Check client *output* against an ERROR section.

    Returns:
        ``(matched, reason)``; *reason* is empty on a match.
    """
    if expected.raw:
        if _normalize_ws(expected.raw) in _normalize_ws(output):
            return True, ''
        return False, f'output does not contain {expected.raw!r}'

    actual = extract_error(output)
    if expected.code is not None and actual.code != expected.code:
        return False, f'expected code {expected.code}, got {actual.code}'
    if expected.message and _normalize_ws(expected.message) not in _normalize_ws(actual.message):
        return False, f'expected message containing {expected.message!r}, got {actual.message!r}'
    if expected.details:
        partial = ComparisonOptions(mode=CompareMode.PARTIAL)
        for want in expected.details:
            if not any(compare(want, got, partial) for got in actual.details):
                return False, f'no error detail matches {json.dumps(want)}'
    return True, ''


__all__ = [
    'STATUS_CODES',
    'ErrorPayload',
    'extract_error',
    'is_error_payload',
    'json_objects',
    'match_error',
    'status_code',
]
