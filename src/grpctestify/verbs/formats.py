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

"""Format verbs: uuid, timestamp, url, email, ip, semver.

Each verb returns ``true`` or ``false`` and never raises on bad input;
a non-string value is simply not a valid UUID, URL, and so on.
"""

from __future__ import annotations

import ipaddress
import re
import uuid as uuid_mod
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from grpctestify.verbs import ResponseView, VerbRegistry

_RFC3339_RE = re.compile(
    r'^\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$',
)
_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
_EMAIL_STRICT_RE = re.compile(
    r'^[A-Za-z0-9!#$%&\'*+/=?^_`{|}~-]+(\.[A-Za-z0-9!#$%&\'*+/=?^_`{|}~-]+)*'
    r'@([A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+[A-Za-z]{2,}$',
)
_SEMVER_RE = re.compile(
    r'^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)'
    r'(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?'
    r'(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$',
)

# Unix seconds between 1970 and 2100.
_UNIX_MAX = 4_102_444_800


def _truthy_flag(value: Any) -> bool:  # noqa: ANN401 - JSON literal or bare word
    if isinstance(value, str):
        return value.lower() in ('true', 'strict', 'yes', '1')
    return bool(value)


def uuid(view: ResponseView, value: Any, version: Any = 'any') -> bool:  # noqa: ANN401 - arbitrary JSON
    """Whether *value* is a canonical UUID string (optionally of *version*)."""
    if not isinstance(value, str):
        return False
    try:
        parsed = uuid_mod.UUID(value)
    except ValueError:
        return False
    if str(parsed) != value.lower():
        return False
    wanted = str(version).lower().lstrip('v')
    if wanted == 'any':
        return True
    return str(parsed.version) == wanted


def timestamp(view: ResponseView, value: Any, fmt: str = 'iso8601') -> bool:  # noqa: ANN401 - arbitrary JSON
    """Whether *value* is a timestamp in *fmt*: iso8601, rfc3339, unix or unix_ms."""
    fmt = str(fmt).lower()
    if fmt in ('unix', 'unix_ms'):
        if isinstance(value, bool):
            return False
        if isinstance(value, str) and value.isdigit():
            value = int(value)
        if not isinstance(value, (int, float)):
            return False
        limit = _UNIX_MAX * 1000 if fmt == 'unix_ms' else _UNIX_MAX
        return 0 <= value <= limit
    if not isinstance(value, str):
        return False
    if fmt == 'rfc3339':
        return _RFC3339_RE.match(value) is not None
    if fmt == 'iso8601':
        text = value[:-1] + '+00:00' if value.endswith(('Z', 'z')) else value
        try:
            datetime.fromisoformat(text)
        except ValueError:
            return False
        return True
    return False


def url(view: ResponseView, value: Any, scheme: str = 'any') -> bool:  # noqa: ANN401 - arbitrary JSON
    """Whether *value* is an absolute URL (optionally with *scheme*)."""
    if not isinstance(value, str) or any(ch.isspace() for ch in value):
        return False
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        return False
    return str(scheme).lower() == 'any' or parsed.scheme.lower() == str(scheme).lower()


def email(view: ResponseView, value: Any, strict: Any = False) -> bool:  # noqa: ANN401 - arbitrary JSON
    """Whether *value* looks like an email address; *strict* applies RFC 5322 atoms."""
    if not isinstance(value, str):
        return False
    pattern = _EMAIL_STRICT_RE if _truthy_flag(strict) else _EMAIL_RE
    return pattern.match(value) is not None


def ip(view: ResponseView, value: Any, version: Any = 'any') -> bool:  # noqa: ANN401 - arbitrary JSON
    """Whether *value* is an IP address (``v4``, ``v6`` or ``any``)."""
    if not isinstance(value, str):
        return False
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        return False
    wanted = str(version).lower().removeprefix('ip').lstrip('v')
    if wanted == 'any':
        return True
    return str(addr.version) == wanted


def semver(view: ResponseView, value: Any) -> bool:  # noqa: ANN401 - arbitrary JSON
    """Whether *value* is a Semantic Versioning 2.0.0 string."""
    return isinstance(value, str) and _SEMVER_RE.match(value) is not None


def register_verbs(registry: VerbRegistry) -> None:
    """Register the format verbs."""
    registry.register('uuid', uuid)
    registry.register('timestamp', timestamp)
    registry.register('url', url)
    registry.register('email', email)
    registry.register('ip', ip)
    registry.register('semver', semver)
