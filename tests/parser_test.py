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

"""Tests for grpctestify.parser."""

from __future__ import annotations

import os
from pathlib import Path
from textwrap import dedent

import pytest
from grpctestify.errors import DefinitionIOError, E, ValidationError
from grpctestify.parser import (
    DefinitionCache,
    Parser,
    parse_json_documents,
    parse_text,
    split_sections,
    strip_comment,
    tokenize_modifiers,
)
from grpctestify.types import CompareMode, ProtoMode, TlsMode

_P = Path('case.gctf')


def _parse(body: str):  # noqa: ANN202 - test helper
    return parse_text(dedent(body), _P)


# ---------------------------------------------------------------------------
# Lexing helpers
# ---------------------------------------------------------------------------


class TestStripComment:
    """Tests for strip_comment."""

    def test_trailing_comment(self) -> None:
        """A # outside strings truncates the line."""
        assert strip_comment('{"a": 1}  # note') == '{"a": 1}'

    def test_hash_inside_string_kept(self) -> None:
        """A # inside a JSON string is preserved."""
        assert strip_comment('{"color": "#fff"}') == '{"color": "#fff"}'

    def test_escaped_quote_inside_string(self) -> None:
        """An escaped quote does not end the string."""
        line = r'{"s": "a\"#b"} # c'
        assert strip_comment(line) == r'{"s": "a\"#b"}'

    def test_full_line_comment(self) -> None:
        """A full-line comment becomes empty."""
        assert strip_comment('# hello') == ''


class TestTokenizeModifiers:
    """Tests for tokenize_modifiers."""

    def test_flags_and_pairs(self) -> None:
        """Bare flags map to 'true' and quoted values are unquoted."""
        tokens = tokenize_modifiers('partial tolerance[.price]=0.01 redact=".a,.b"')
        assert tokens == {'partial': 'true', 'tolerance[.price]': '0.01', 'redact': '.a,.b'}

    def test_single_quotes(self) -> None:
        """Single-quoted values are unquoted."""
        assert tokenize_modifiers("type='partial'") == {'type': 'partial'}

    def test_empty(self) -> None:
        """No modifiers yields an empty dict."""
        assert tokenize_modifiers('   ') == {}

    def test_garbage_raises(self) -> None:
        """Unparseable modifier text is a ValidationError."""
        with pytest.raises(ValidationError):
            tokenize_modifiers('=oops')


class TestSplitSections:
    """Tests for split_sections."""

    def test_basic(self) -> None:
        """Sections keep their lines and 1-based marker line."""
        sections = split_sections('preamble\n--- ENDPOINT ---\na.B/C\n\n--- request ---\n{}\n')
        assert [s.name for s in sections] == ['ENDPOINT', 'REQUEST']
        assert sections[0].line == 2
        assert sections[0].body == 'a.B/C'

    def test_unknown_section(self) -> None:
        """Unknown section names are rejected with a line number."""
        with pytest.raises(ValidationError, match='line 1'):
            split_sections('--- BOGUS ---\n')

    def test_duplicate_non_repeatable(self) -> None:
        """ENDPOINT may not appear twice."""
        with pytest.raises(ValidationError, match='duplicate'):
            split_sections('--- ENDPOINT ---\na.B/C\n--- ENDPOINT ---\na.B/D\n')


class TestParseJsonDocuments:
    """Tests for parse_json_documents."""

    def test_concatenated(self) -> None:
        """Back-to-back documents are split in order."""
        assert parse_json_documents('{"a":1}\n{"a":2} {"a":3}') == [{'a': 1}, {'a': 2}, {'a': 3}]

    def test_empty(self) -> None:
        """Whitespace yields no documents."""
        assert parse_json_documents('  \n') == []

    def test_malformed(self) -> None:
        """Malformed JSON is a ValidationError."""
        with pytest.raises(ValidationError, match='invalid JSON'):
            parse_json_documents('{"a": }', line=4)


# ---------------------------------------------------------------------------
# parse_text
# ---------------------------------------------------------------------------


class TestParseText:
    """Tests for full definition parsing."""

    def test_unary(self) -> None:
        """A minimal unary definition."""
        d = _parse(
            """\
            --- ADDRESS ---
            localhost:50051
            --- ENDPOINT ---
            user.UserService/GetUser
            --- REQUEST ---
            {"id": 7}
            --- RESPONSE ---
            {"id": "*", "name": "Jane"}
            """
        )
        assert d.address == 'localhost:50051'
        assert d.endpoint == 'user.UserService/GetUser'
        assert d.requests == ({'id': 7},)
        assert d.expected_response == {'id': '*', 'name': 'Jane'}
        assert d.has_response
        assert d.response_options.mode == CompareMode.EXACT
        assert d.test_id == 'case'

    def test_no_address_is_none(self) -> None:
        """The parser never supplies a default address."""
        d = _parse('--- ENDPOINT ---\na.B/C\n')
        assert d.address is None
        assert d.requests == ()

    def test_streaming_requests(self) -> None:
        """Repeated REQUEST sections and concatenated documents are kept in order."""
        d = _parse(
            """\
            --- ENDPOINT ---
            chat.Chat/Talk
            --- REQUEST ---
            {"n": 1}
            {"n": 2}
            --- REQUEST ---
            {"n": 3}
            --- REQUEST ---
            """
        )
        assert d.requests == ({'n': 1}, {'n': 2}, {'n': 3}, {})

    def test_response_modifiers(self) -> None:
        """Every RESPONSE modifier is recognized."""
        d = _parse(
            """\
            --- ENDPOINT ---
            a.B/C
            --- RESPONSE type=partial tolerance[.price]=0.01 tol_percent[.rate]=5 redact=.ts,.id unordered_arrays unordered_arrays_paths=.tags with_asserts ---
            {"price": 9.99}
            --- ASSERTS ---
            .price > 0
            """
        )
        opts = d.response_options
        assert opts.mode == CompareMode.PARTIAL
        assert opts.tolerance == {'.price': 0.01}
        assert opts.tol_percent == {'.rate': 5.0}
        assert opts.redact_paths == ('.ts', '.id')
        assert opts.unordered_arrays is True
        assert opts.unordered_array_paths == ('.tags',)
        assert opts.with_asserts is True
        assert d.assertions[0].predicates == ('.price > 0',)

    def test_bare_partial_flag(self) -> None:
        """A bare partial flag selects partial mode."""
        d = _parse('--- ENDPOINT ---\na.B/C\n--- RESPONSE partial ---\n{}\n')
        assert d.response_options.mode == CompareMode.PARTIAL

    def test_unknown_response_modifier(self) -> None:
        """Unknown RESPONSE modifiers are rejected."""
        with pytest.raises(ValidationError, match='unknown RESPONSE modifier'):
            _parse('--- ENDPOINT ---\na.B/C\n--- RESPONSE fuzzy ---\n{}\n')

    def test_comment_in_json_preserved(self) -> None:
        """A # inside JSON strings survives, trailing comments do not."""
        d = _parse('--- ENDPOINT ---\na.B/C\n--- REQUEST ---\n{"tag": "#1"}  # comment\n')
        assert d.requests == ({'tag': '#1'},)

    def test_error_object(self) -> None:
        """An ERROR object yields code and message."""
        d = _parse('--- ENDPOINT ---\na.B/C\n--- ERROR ---\n{"code": 5, "message": "not found"}\n')
        assert d.expected_error is not None
        assert d.expected_error.code == 5
        assert d.expected_error.message == 'not found'

    def test_error_string(self) -> None:
        """An ERROR string means raw containment."""
        d = _parse('--- ENDPOINT ---\na.B/C\n--- ERROR ---\n"permission denied"\n')
        assert d.expected_error is not None
        assert d.expected_error.raw == 'permission denied'
        assert d.expected_error.code is None

    def test_asserts_groups(self) -> None:
        """Each ASSERTS section becomes one group, in file order."""
        d = _parse(
            """\
            --- ENDPOINT ---
            a.B/C
            --- ASSERTS ---
            .progress >= 0
            --- ASSERTS ---
            .progress >= 50
            .done == false
            """
        )
        assert len(d.assertions) == 2
        assert d.assertions[1].predicates == ('.progress >= 50', '.done == false')

    def test_headers(self) -> None:
        """REQUEST_HEADERS lines are name: value pairs."""
        d = _parse('--- ENDPOINT ---\na.B/C\n--- REQUEST_HEADERS ---\nauthorization: Bearer x\nx-trace: 1\n')
        assert d.headers == {'authorization': 'Bearer x', 'x-trace': '1'}

    def test_deprecated_headers_alias(self) -> None:
        """HEADERS still works as an alias."""
        d = _parse('--- ENDPOINT ---\na.B/C\n--- HEADERS ---\nx-a: 1\n')
        assert d.headers == {'x-a': '1'}

    def test_tls_inferred_mtls(self) -> None:
        """cert and key imply mutual TLS; file aliases are accepted."""
        d = _parse(
            """\
            --- ENDPOINT ---
            a.B/C
            --- TLS ---
            ca_file: ca.pem
            cert_file: client.pem
            key_file: client.key
            server_name: api.local
            """
        )
        assert d.tls.mode == TlsMode.MTLS
        assert d.tls.ca_cert == 'ca.pem'
        assert d.tls.server_name == 'api.local'

    def test_tls_insecure(self) -> None:
        """insecure_skip_verify alone implies insecure mode."""
        d = _parse('--- ENDPOINT ---\na.B/C\n--- TLS ---\ninsecure_skip_verify: true\n')
        assert d.tls.mode == TlsMode.INSECURE

    def test_proto_files(self) -> None:
        """PROTO files and import paths are comma-separated lists."""
        d = _parse('--- ENDPOINT ---\na.B/C\n--- PROTO ---\nfiles: a.proto, b.proto\nimport_paths: ./protos\n')
        assert d.proto.mode == ProtoMode.FILES
        assert d.proto.files == ('a.proto', 'b.proto')
        assert d.proto.import_paths == ('./protos',)

    def test_proto_descriptor(self) -> None:
        """A descriptor implies descriptor mode."""
        d = _parse('--- ENDPOINT ---\na.B/C\n--- PROTO ---\ndescriptor: api.protoset\n')
        assert d.proto.mode == ProtoMode.DESCRIPTOR

    def test_options(self) -> None:
        """OPTIONS sets timeout, retries and merges comparison shorthands."""
        d = _parse(
            """\
            --- ENDPOINT ---
            a.B/C
            --- OPTIONS ---
            timeout: 2.5
            retries: 5
            partial: true
            redact: .ts
            tolerance: .price=0.5
            --- RESPONSE ---
            {}
            """
        )
        assert d.options.timeout_s == 2.5
        assert d.options.retries == 5
        assert d.response_options.mode == CompareMode.PARTIAL
        assert d.response_options.redact_paths == ('.ts',)
        assert d.response_options.tolerance == {'.price': 0.5}

    def test_bad_timeout(self) -> None:
        """A non-positive timeout is rejected."""
        with pytest.raises(ValidationError, match='timeout'):
            _parse('--- ENDPOINT ---\na.B/C\n--- OPTIONS ---\ntimeout: 0\n')


class TestParseTextValidation:
    """Validation failures."""

    def test_missing_endpoint(self) -> None:
        """ENDPOINT is required."""
        with pytest.raises(ValidationError, match='ENDPOINT'):
            _parse('--- REQUEST ---\n{}\n')

    def test_malformed_endpoint(self) -> None:
        """ENDPOINT must be package.Service/Method."""
        with pytest.raises(ValidationError, match='package.Service/Method'):
            _parse('--- ENDPOINT ---\nGetUser\n')

    def test_bad_request_json(self) -> None:
        """Malformed request JSON is a ValidationError with the marker line."""
        with pytest.raises(ValidationError, match='line 3'):
            _parse('--- ENDPOINT ---\na.B/C\n--- REQUEST ---\n{"id": }\n')

    def test_response_and_error(self) -> None:
        """RESPONSE and ERROR are mutually exclusive."""
        with pytest.raises(ValidationError) as info:
            _parse('--- ENDPOINT ---\na.B/C\n--- RESPONSE ---\n{}\n--- ERROR ---\n"x"\n')
        assert info.value.code is E.DEF_CONFLICT

    def test_response_and_asserts_without_opt_in(self) -> None:
        """RESPONSE plus ASSERTS needs with_asserts."""
        with pytest.raises(ValidationError, match='with_asserts'):
            _parse('--- ENDPOINT ---\na.B/C\n--- RESPONSE ---\n{}\n--- ASSERTS ---\n.a\n')


# ---------------------------------------------------------------------------
# Parser and DefinitionCache
# ---------------------------------------------------------------------------


class TestParser:
    """Tests for Parser.parse and its cache."""

    def test_unreadable_file(self, tmp_path: Path) -> None:
        """A missing file raises DefinitionIOError."""
        with pytest.raises(DefinitionIOError):
            Parser().parse(tmp_path / 'missing.gctf')

    def test_cache_hit(self, tmp_path: Path) -> None:
        """An unchanged file is parsed once."""
        path = tmp_path / 'a.gctf'
        path.write_text('--- ENDPOINT ---\na.B/C\n', encoding='utf-8')
        cache = DefinitionCache()
        parser = Parser(cache)
        first = parser.parse(path)
        second = parser.parse(path)
        assert first is second
        assert len(cache) == 1

    def test_cache_invalidated_on_mtime(self, tmp_path: Path) -> None:
        """Modifying the file produces a fresh parse."""
        path = tmp_path / 'a.gctf'
        path.write_text('--- ENDPOINT ---\na.B/C\n', encoding='utf-8')
        parser = Parser(DefinitionCache())
        first = parser.parse(path)
        path.write_text('--- ENDPOINT ---\na.B/D\n', encoding='utf-8')
        stat = path.stat()
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))
        second = parser.parse(path)
        assert first.endpoint == 'a.B/C'
        assert second.endpoint == 'a.B/D'
