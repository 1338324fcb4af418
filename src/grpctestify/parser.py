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

"""Parser for ``.gctf`` test definition files.

A definition file is a sequence of sections, each introduced by a marker
line::

    --- ENDPOINT ---
    user.UserService/GetUser

    --- REQUEST ---
    {"id": 7}   # comments outside strings are stripped

    --- RESPONSE partial redact=.updated_at tolerance[.score]=0.5 ---
    {"id": "*", "name": "Jane"}

Key Concepts (ELI5)::

    ┌─────────────────────┬──────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                                 │
    ├─────────────────────┼──────────────────────────────────────────────────┤
    │ Section marker      │ ``--- NAME modifiers ---``. Everything until the │
    │                     │ next marker belongs to that section.             │
    ├─────────────────────┼──────────────────────────────────────────────────┤
    │ Modifier            │ ``key=value``, ``key[path]=value`` or a bare     │
    │                     │ flag on the marker line. Only RESPONSE has them. │
    ├─────────────────────┼──────────────────────────────────────────────────┤
    │ Quote-aware comment │ ``#`` starts a comment, except inside a JSON     │
    │                     │ string such as ``"color": "#fff"``.              │
    ├─────────────────────┼──────────────────────────────────────────────────┤
    │ DefinitionCache     │ Remembers parsed files by (path, mtime) so a     │
    │                     │ file is parsed once until it changes on disk.    │
    └─────────────────────┴──────────────────────────────────────────────────┘

The parser never supplies a default ADDRESS; the orchestrator does.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from grpctestify.errors import DefinitionIOError, E, ValidationError
from grpctestify.logging import get_logger
from grpctestify.types import (
    AssertionGroup,
    CompareMode,
    ComparisonOptions,
    ExpectedError,
    ProtoConfig,
    ProtoMode,
    TestDefinition,
    TestOptions,
    TlsConfig,
    TlsMode,
)

log = get_logger('grpctestify.parser')

KNOWN_SECTIONS: frozenset[str] = frozenset({
    'ADDRESS',
    'ENDPOINT',
    'REQUEST',
    'RESPONSE',
    'ERROR',
    'ASSERTS',
    'REQUEST_HEADERS',
    'HEADERS',
    'TLS',
    'PROTO',
    'OPTIONS',
})

# Sections that may appear more than once.
_REPEATABLE: frozenset[str] = frozenset({'REQUEST', 'ASSERTS'})

_MARKER_RE = re.compile(r'^---\s*([A-Za-z_]+)\b(.*?)\s*---$')
_TOKEN_RE = re.compile(
    r"""\s*([A-Za-z_][A-Za-z0-9_]*(?:\[[^\]]*\])?)(?:=("[^"]*"|'[^']*'|\S*))?""",
)
_ENDPOINT_RE = re.compile(r'^[A-Za-z_][\w.]*\.[A-Za-z_]\w*/[A-Za-z_]\w*$')
_KEYED_RE = re.compile(r'^([A-Za-z_][A-Za-z0-9_]*)\[(.+)\]$')

_TRUE_WORDS = frozenset({'true', 'yes', '1', 'on'})
_FALSE_WORDS = frozenset({'false', 'no', '0', 'off'})


@dataclass
class Section:
    """One raw section of a definition file."""

    name: str
    line: int
    modifiers: dict[str, str] = field(default_factory=dict)
    lines: list[str] = field(default_factory=list)

    @property
    def body(self) -> str:
        """Section content with comments already stripped."""
        return '\n'.join(self.lines).strip()


def strip_comment(line: str) -> str:
    """Remove a trailing ``#`` comment that is not inside a double-quoted string.

    Backslash escapes inside strings are honored, so ``"a\\"#b"`` keeps
    its ``#``.
    """
    in_string = False
    escaped = False
    for i, ch in enumerate(line):
        if escaped:
            escaped = False
            continue
        if ch == '\\' and in_string:
            escaped = True
        elif ch == '"':
            in_string = not in_string
        elif ch == '#' and not in_string:
            return line[:i].rstrip()
    return line.rstrip()


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def tokenize_modifiers(text: str) -> dict[str, str]:
    """Split a marker modifier string into ``{key: value}``.

    Bare flags map to ``'true'``.  Quoted values have their quotes removed.

    Example::

        >>> tokenize_modifiers('partial tolerance[.price]=0.01 redact=".a,.b"')
        {'partial': 'true', 'tolerance[.price]': '0.01', 'redact': '.a,.b'}
    """
    tokens: dict[str, str] = {}
    pos = 0
    text = text.strip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None or m.end() == pos:
            raise ValidationError(f'cannot parse section modifiers near {text[pos:]!r}')
        key, value = m.group(1), m.group(2)
        tokens[key] = 'true' if value is None else _unquote(value)
        pos = m.end()
        while pos < len(text) and text[pos].isspace():
            pos += 1
    return tokens


def split_sections(text: str) -> list[Section]:
    """Split file text into sections.

    Comments and blank lines are dropped.  Text before the first marker is
    ignored.

    Raises:
        ValidationError: On an unknown section name or a duplicated
            non-repeatable section.
    """
    sections: list[Section] = []
    seen: set[str] = set()
    current: Section | None = None

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = strip_comment(raw).strip()
        if not line:
            continue
        m = _MARKER_RE.match(line)
        if m is not None:
            name = m.group(1).upper()
            if name not in KNOWN_SECTIONS:
                raise ValidationError(
                    f'unknown section {name!r}',
                    line=lineno,
                    hint=f'known sections: {", ".join(sorted(KNOWN_SECTIONS))}',
                )
            if name in seen and name not in _REPEATABLE:
                raise ValidationError(f'duplicate section {name!r}', line=lineno)
            seen.add(name)
            try:
                modifiers = tokenize_modifiers(m.group(2))
            except ValidationError as exc:
                raise ValidationError(exc.message, line=lineno) from exc
            current = Section(name=name, line=lineno, modifiers=modifiers)
            sections.append(current)
            continue
        if current is not None:
            current.lines.append(line)

    return sections


def parse_json_documents(body: str, *, line: int = 0) -> list[Any]:
    """Decode every JSON document in *body*, in order.

    Streaming requests put several documents back to back in one section.

    Raises:
        ValidationError: If any document is malformed.
    """
    decoder = json.JSONDecoder()
    docs: list[Any] = []
    pos = 0
    while True:
        while pos < len(body) and body[pos].isspace():
            pos += 1
        if pos >= len(body):
            return docs
        try:
            doc, pos = decoder.raw_decode(body, pos)
        except json.JSONDecodeError as exc:
            raise ValidationError(f'invalid JSON: {exc.msg} (line {exc.lineno} of section)', line=line) from exc
        docs.append(doc)


def _parse_bool(value: str, *, key: str, line: int) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    raise ValidationError(f'{key} must be true or false, got {value!r}', line=line)


def _parse_number(value: str, *, key: str, line: int) -> float:
    try:
        number = float(value)
    except ValueError:
        raise ValidationError(f'{key} must be a number, got {value!r}', line=line) from None
    if number < 0:
        raise ValidationError(f'{key} must not be negative, got {value!r}', line=line)
    return number


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in value.split(',') if p.strip())


def _key_values(section: Section) -> dict[str, str]:
    """Parse ``key: value`` lines (TLS, PROTO, OPTIONS)."""
    values: dict[str, str] = {}
    for line in section.lines:
        key, sep, value = line.partition(':')
        if not sep:
            raise ValidationError(f'expected "key: value" in {section.name}, got {line!r}', line=section.line)
        values[key.strip().lower()] = _unquote(value.strip())
    return values


@dataclass
class _ResponseOptionsBuilder:
    mode: CompareMode = CompareMode.EXACT
    tolerance: dict[str, float] = field(default_factory=dict)
    tol_percent: dict[str, float] = field(default_factory=dict)
    redact_paths: list[str] = field(default_factory=list)
    unordered_arrays: bool = False
    unordered_array_paths: list[str] = field(default_factory=list)
    with_asserts: bool = False

    def build(self) -> ComparisonOptions:
        return ComparisonOptions(
            mode=self.mode,
            tolerance=dict(self.tolerance),
            tol_percent=dict(self.tol_percent),
            redact_paths=tuple(dict.fromkeys(self.redact_paths)),
            unordered_arrays=self.unordered_arrays,
            unordered_array_paths=tuple(dict.fromkeys(self.unordered_array_paths)),
            with_asserts=self.with_asserts,
        )


def _apply_response_modifiers(builder: _ResponseOptionsBuilder, modifiers: dict[str, str], line: int) -> None:
    for key, value in modifiers.items():
        keyed = _KEYED_RE.match(key)
        if keyed is not None:
            name, path = keyed.group(1), keyed.group(2).strip()
            if name == 'tolerance':
                builder.tolerance[path] = _parse_number(value, key=key, line=line)
            elif name == 'tol_percent':
                builder.tol_percent[path] = _parse_number(value, key=key, line=line)
            else:
                raise ValidationError(f'unknown RESPONSE modifier {key!r}', line=line)
        elif key in ('type', 'mode'):
            try:
                builder.mode = CompareMode(value.lower())
            except ValueError:
                raise ValidationError(f'{key} must be exact or partial, got {value!r}', line=line) from None
        elif key == 'partial':
            if _parse_bool(value, key=key, line=line):
                builder.mode = CompareMode.PARTIAL
        elif key == 'redact':
            builder.redact_paths.extend(_split_list(value))
        elif key == 'unordered_arrays':
            builder.unordered_arrays = _parse_bool(value, key=key, line=line)
        elif key == 'unordered_arrays_paths':
            builder.unordered_array_paths.extend(_split_list(value))
        elif key == 'with_asserts':
            builder.with_asserts = _parse_bool(value, key=key, line=line)
        else:
            raise ValidationError(f'unknown RESPONSE modifier {key!r}', line=line)


def _parse_tls(section: Section) -> TlsConfig:
    values = _key_values(section)
    ca_cert = values.pop('ca_cert', '') or values.pop('ca_file', '')
    cert = values.pop('cert', '') or values.pop('cert_file', '')
    key = values.pop('key', '') or values.pop('key_file', '')
    server_name = values.pop('server_name', '')
    authority = values.pop('authority', '')
    skip = _parse_bool(values.pop('insecure_skip_verify', 'false'), key='insecure_skip_verify', line=section.line)
    raw_mode = values.pop('mode', '')
    for leftover in ('ca_file', 'cert_file', 'key_file'):
        values.pop(leftover, None)
    if values:
        raise ValidationError(f'unknown TLS key(s): {", ".join(sorted(values))}', line=section.line)

    if raw_mode:
        try:
            mode = TlsMode(raw_mode.lower())
        except ValueError:
            raise ValidationError(
                f'TLS mode must be one of {", ".join(m.value for m in TlsMode)}, got {raw_mode!r}',
                line=section.line,
            ) from None
    elif cert and key:
        mode = TlsMode.MTLS
    elif ca_cert:
        mode = TlsMode.TLS
    elif skip:
        mode = TlsMode.INSECURE
    else:
        mode = TlsMode.PLAINTEXT

    if mode == TlsMode.MTLS and not (cert and key):
        raise ValidationError('mtls mode requires both cert and key', line=section.line)

    return TlsConfig(
        mode=mode,
        ca_cert=ca_cert,
        cert=cert,
        key=key,
        server_name=server_name,
        authority=authority,
        insecure_skip_verify=skip,
    )


def _parse_proto(section: Section) -> ProtoConfig:
    values = _key_values(section)
    files = _split_list(values.pop('files', ''))
    descriptor = values.pop('descriptor', '')
    import_paths = _split_list(values.pop('import_paths', ''))
    raw_mode = values.pop('mode', '')
    if values:
        raise ValidationError(f'unknown PROTO key(s): {", ".join(sorted(values))}', line=section.line)

    if raw_mode:
        try:
            mode = ProtoMode(raw_mode.lower())
        except ValueError:
            raise ValidationError(
                f'PROTO mode must be one of {", ".join(m.value for m in ProtoMode)}, got {raw_mode!r}',
                line=section.line,
            ) from None
    elif descriptor:
        mode = ProtoMode.DESCRIPTOR
    elif files:
        mode = ProtoMode.FILES
    else:
        mode = ProtoMode.REFLECTION

    if mode == ProtoMode.FILES and not files:
        raise ValidationError('PROTO mode files requires a files list', line=section.line)
    if mode == ProtoMode.DESCRIPTOR and not descriptor:
        raise ValidationError('PROTO mode descriptor requires a descriptor path', line=section.line)

    return ProtoConfig(mode=mode, files=files, descriptor=descriptor, import_paths=import_paths)


def _parse_options(section: Section, builder: _ResponseOptionsBuilder) -> TestOptions:
    timeout_s: float | None = None
    retries: int | None = None
    for key, value in _key_values(section).items():
        if key == 'timeout':
            timeout_s = _parse_number(value, key=key, line=section.line)
            if timeout_s <= 0:
                raise ValidationError('timeout must be positive', line=section.line)
        elif key == 'retries':
            try:
                retries = int(value)
            except ValueError:
                raise ValidationError(f'retries must be an integer, got {value!r}', line=section.line) from None
            if retries < 1:
                raise ValidationError('retries must be at least 1', line=section.line)
        elif key == 'partial':
            if _parse_bool(value, key=key, line=section.line):
                builder.mode = CompareMode.PARTIAL
        elif key == 'redact':
            builder.redact_paths.extend(_split_list(value))
        elif key == 'tolerance':
            # tolerance: .a=0.1, .b=2
            for item in _split_list(value):
                path, sep, amount = item.rpartition('=')
                if not sep or not path.strip():
                    raise ValidationError(f'tolerance entries must be PATH=N, got {item!r}', line=section.line)
                builder.tolerance[path.strip()] = _parse_number(amount, key='tolerance', line=section.line)
        else:
            log.warning('unknown_option', key=key, line=section.line)
    return TestOptions(timeout_s=timeout_s, retries=retries)


def _parse_error(section: Section) -> ExpectedError:
    docs = parse_json_documents(section.body, line=section.line)
    if len(docs) != 1:
        raise ValidationError('ERROR must hold exactly one JSON value', line=section.line)
    doc = docs[0]
    if isinstance(doc, str):
        return ExpectedError(raw=doc)
    if not isinstance(doc, dict):
        raise ValidationError('ERROR must be a JSON object or string', line=section.line)
    code = doc.get('code')
    if code is not None and (isinstance(code, bool) or not isinstance(code, int)):
        raise ValidationError(f'ERROR code must be an integer, got {code!r}', line=section.line)
    message = doc.get('message', '')
    if not isinstance(message, str):
        raise ValidationError('ERROR message must be a string', line=section.line)
    details = doc.get('details') or []
    if not isinstance(details, list):
        details = [details]
    return ExpectedError(code=code, message=message, details=tuple(details))


def parse_text(text: str, path: Path) -> TestDefinition:
    """Parse definition *text*; *path* is recorded on the result.

    Raises:
        ValidationError: If the definition is malformed.
    """
    sections = split_sections(text)

    address: str | None = None
    endpoint = ''
    requests: list[Any] = []
    expected_response: Any = None
    has_response = False
    expected_error: ExpectedError | None = None
    groups: list[AssertionGroup] = []
    headers: dict[str, str] = {}
    tls = TlsConfig()
    proto = ProtoConfig()
    builder = _ResponseOptionsBuilder()
    options = TestOptions()
    response_line = 0

    for section in sections:
        name = section.name
        if name == 'ADDRESS':
            address = section.body or None
        elif name == 'ENDPOINT':
            endpoint = section.body
            if not _ENDPOINT_RE.match(endpoint):
                raise ValidationError(
                    f'ENDPOINT must look like package.Service/Method, got {endpoint!r}',
                    line=section.line,
                )
        elif name == 'REQUEST':
            docs = parse_json_documents(section.body, line=section.line)
            requests.extend(docs or [{}])
        elif name == 'RESPONSE':
            docs = parse_json_documents(section.body, line=section.line)
            if len(docs) > 1:
                raise ValidationError('RESPONSE must hold exactly one JSON document', line=section.line)
            expected_response = docs[0] if docs else None
            has_response = True
            response_line = section.line
            _apply_response_modifiers(builder, section.modifiers, section.line)
        elif name == 'ERROR':
            expected_error = _parse_error(section)
        elif name == 'ASSERTS':
            groups.append(AssertionGroup(predicates=tuple(section.lines), line=section.line))
        elif name in ('REQUEST_HEADERS', 'HEADERS'):
            if name == 'HEADERS':
                log.warning('deprecated_section', section='HEADERS', replacement='REQUEST_HEADERS', path=str(path))
            for line in section.lines:
                key, sep, value = line.partition(':')
                if not sep or not key.strip():
                    raise ValidationError(f'headers must be "name: value", got {line!r}', line=section.line)
                headers[key.strip()] = value.strip()
        elif name == 'TLS':
            tls = _parse_tls(section)
        elif name == 'PROTO':
            proto = _parse_proto(section)
        elif name == 'OPTIONS':
            options = _parse_options(section, builder)

    if not endpoint:
        raise ValidationError('missing required ENDPOINT section', hint='add "--- ENDPOINT ---" with pkg.Service/Method')
    if has_response and expected_error is not None:
        raise ValidationError(
            'RESPONSE and ERROR cannot both be present',
            line=response_line,
            code=E.DEF_CONFLICT,
        )
    response_options = builder.build()
    if has_response and groups and not response_options.with_asserts:
        raise ValidationError(
            'RESPONSE and ASSERTS cannot both be present',
            line=response_line,
            code=E.DEF_CONFLICT,
            hint="write '--- RESPONSE with_asserts ---' to run both",
        )

    return TestDefinition(
        path=path,
        endpoint=endpoint,
        address=address,
        requests=tuple(requests),
        expected_response=expected_response,
        has_response=has_response,
        expected_error=expected_error,
        assertions=tuple(groups),
        headers=headers,
        tls=tls,
        proto=proto,
        response_options=response_options,
        options=options,
    )


class DefinitionCache:
    """Parsed definitions keyed by ``(absolute path, st_mtime_ns)``.

    A modified file gets a new key, so stale entries are never returned.
    Concurrent writers for one key store equal values.
    """

    def __init__(self) -> None:
        """Create an empty cache."""
        self._entries: dict[tuple[str, int], TestDefinition] = {}

    def get(self, key: tuple[str, int]) -> TestDefinition | None:
        """Return the cached definition for *key*, if any."""
        return self._entries.get(key)

    def put(self, key: tuple[str, int], definition: TestDefinition) -> None:
        """Store *definition* under *key*."""
        self._entries[key] = definition

    def __len__(self) -> int:
        """Number of cached definitions."""
        return len(self._entries)


class Parser:
    """Reads and parses ``.gctf`` files, using an injected cache."""

    def __init__(self, cache: DefinitionCache | None = None) -> None:
        """Initialize with an optional shared cache."""
        self.cache = cache if cache is not None else DefinitionCache()

    def parse(self, path: Path) -> TestDefinition:
        """Parse the file at *path*.

        Raises:
            DefinitionIOError: If the file cannot be read.
            ValidationError: If the definition is malformed.
        """
        resolved = path.resolve()
        try:
            mtime_ns = resolved.stat().st_mtime_ns
        except OSError as exc:
            raise DefinitionIOError(f'cannot read {path}: {exc.strerror or exc}') from exc

        key = (str(resolved), mtime_ns)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            text = resolved.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as exc:
            raise DefinitionIOError(f'cannot read {path}: {exc}') from exc

        definition = parse_text(text, path)
        self.cache.put(key, definition)
        log.debug('definition_parsed', path=str(path), requests=len(definition.requests))
        return definition


__all__ = [
    'KNOWN_SECTIONS',
    'DefinitionCache',
    'Parser',
    'Section',
    'parse_json_documents',
    'parse_text',
    'split_sections',
    'strip_comment',
    'tokenize_modifiers',
]
