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

"""Assertion evaluator for ``--- ASSERTS ---`` groups.

Each predicate line is a jq program run against one response message.
A predicate passes when jq produces at least one output and every output
is truthy (neither ``false`` nor ``null``), the same rule as ``jq -e``.

Line forms::

    .status == "OK"                 the group's own message
    [2] .progress >= 50             message 2 of the stream (0-based)
    [*] .id != null                 every message
    @uuid:.id,v4                    verb shorthand, passes if truthy
    [0]@header:x-request-id         shorthand on a specific message
    @header("x-env") == "prod"      verb call inside a jq expression

Verb calls are spliced out before jq runs: each ``@name(args)`` outside a
string literal is replaced by the JSON literal of the verb's result.
Arguments starting with ``.`` are jq paths resolved against the message;
anything else is parsed as JSON, or taken as a bare word.

Every predicate in a group runs even after a failure, so the failure log
lists all of them.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from grpctestify.errors import InsufficientMessages
from grpctestify.logging import get_logger
from grpctestify.query import JqRunner, QueryError
from grpctestify.types import AssertionGroup
from grpctestify.verbs import METADATA_VERBS, ResponseView, VerbRegistry

log = get_logger('grpctestify.assertions')

_SELECTOR_RE = re.compile(r'^\[(\d+|\*)\]\s*(.*)$', re.DOTALL)
_SHORTHAND_RE = re.compile(r'^@([A-Za-z_][A-Za-z0-9_]*)(?::(.*))?$', re.DOTALL)
_VERB_NAME_RE = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')
_METADATA_RE = re.compile(r'@(' + '|'.join(sorted(METADATA_VERBS)) + r')\b')


class _VerbError(Exception):
    """A verb call could not be expanded."""


@dataclass(frozen=True)
class PredicateResult:
    """Outcome of one predicate against one message."""

    predicate: str
    message_index: int
    passed: bool
    error: str = ''

    def describe(self) -> str:
        """One-line description for the failure log."""
        why = self.error or 'evaluated to false'
        return f'message {self.message_index}: {self.predicate}  ({why})'


@dataclass(frozen=True)
class GroupResult:
    """Outcome of one ASSERTS group; all predicate results are kept."""

    group_index: int
    results: tuple[PredicateResult, ...]

    @property
    def passed(self) -> bool:
        """Whether every predicate passed."""
        return all(r.passed for r in self.results)

    @property
    def failures(self) -> list[PredicateResult]:
        """Predicates that failed, in evaluation order."""
        return [r for r in self.results if not r.passed]


def needs_metadata(groups: Sequence[AssertionGroup]) -> bool:
    """Whether any predicate calls a header or trailer verb."""
    return any(_METADATA_RE.search(p) for g in groups for p in g.predicates)


def _split_args(text: str) -> list[str]:
    """Split verb arguments at top-level commas, respecting strings and brackets."""
    args: list[str] = []
    depth = 0
    in_string = False
    escaped = False
    start = 0
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in '([{':
            depth += 1
        elif ch in ')]}':
            depth -= 1
        elif ch == ',' and depth == 0:
            args.append(text[start:i].strip())
            start = i + 1
    tail = text[start:].strip()
    if tail or args:
        args.append(tail)
    return args


class AssertionEvaluator:
    """Runs ASSERTS groups with an injected verb registry.

    Compiled jq programs are cached per evaluator, so a predicate shared by
    many messages or tests compiles once.
    """

    def __init__(self, registry: VerbRegistry, runner: JqRunner | None = None) -> None:
        """Initialize with the verb registry and an optional jq runner."""
        self.registry = registry
        self._jq = runner or JqRunner()

    # -- verb expansion -----------------------------------------------------

    def _resolve_arg(self, raw: str, view: ResponseView) -> Any:  # noqa: ANN401 - arbitrary JSON
        if raw.startswith('.'):
            try:
                return self._jq.first(raw, view.message)
            except QueryError as exc:
                raise _VerbError(f'argument {raw!r}: {exc}') from exc
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    def _call_verb(self, name: str, raw_args: list[str], view: ResponseView) -> str:
        """Call verb *name* and return its result as a JSON literal."""
        try:
            verb = self.registry.get(name)
        except KeyError as exc:
            raise _VerbError(str(exc.args[0])) from exc
        args = [self._resolve_arg(a, view) for a in raw_args]
        try:
            result = verb(view, *args)
        except Exception as exc:  # noqa: BLE001 - plugin verbs are third-party code
            raise _VerbError(f'@{name} raised {type(exc).__name__}: {exc}') from exc
        try:
            return json.dumps(result, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise _VerbError(f'@{name} returned a non-JSON value: {exc}') from exc

    def expand_verbs(self, predicate: str, view: ResponseView) -> str:
        """Replace every ``@name(args)`` outside string literals with its JSON result."""
        out: list[str] = []
        i = 0
        in_string = False
        escaped = False
        n = len(predicate)
        while i < n:
            ch = predicate[i]
            if in_string:
                out.append(ch)
                if escaped:
                    escaped = False
                elif ch == '\\':
                    escaped = True
                elif ch == '"':
                    in_string = False
                i += 1
                continue
            if ch == '"':
                in_string = True
                out.append(ch)
                i += 1
                continue
            if ch == '@':
                m = _VERB_NAME_RE.match(predicate, i + 1)
                if m is not None and m.end() < n and predicate[m.end()] == '(':
                    close = self._matching_paren(predicate, m.end())
                    args = _split_args(predicate[m.end() + 1 : close])
                    out.append(self._call_verb(m.group(0), args, view))
                    i = close + 1
                    continue
            out.append(ch)
            i += 1
        return ''.join(out)

    @staticmethod
    def _matching_paren(text: str, open_pos: int) -> int:
        depth = 0
        in_string = False
        escaped = False
        for i in range(open_pos, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == '\\':
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == '(':
                depth += 1
            elif ch == ')':
                depth -= 1
                if depth == 0:
                    return i
        raise _VerbError(f'unbalanced parentheses in {text!r}')

    # -- evaluation ---------------------------------------------------------

    def check(self, predicate: str, view: ResponseView) -> PredicateResult:
        """Evaluate one predicate expression against one message."""
        shorthand = _SHORTHAND_RE.match(predicate)
        program = predicate
        if shorthand is not None:
            program = f'@{shorthand.group(1)}({shorthand.group(2) or ""})'
        try:
            program = self.expand_verbs(program, view)
            outputs = self._jq.all(program, view.message)
        except (_VerbError, QueryError) as exc:
            log.debug('predicate_error', predicate=predicate, error=str(exc))
            return PredicateResult(predicate, view.index, False, str(exc))
        passed = bool(outputs) and all(o is not False and o is not None for o in outputs)
        error = '' if outputs else 'produced no output'
        return PredicateResult(predicate, view.index, passed, error)

    def evaluate(self, group: AssertionGroup, views: Sequence[ResponseView], index: int) -> GroupResult:
        """Evaluate *group* number *index* against the stream *views*.

        The group's own message is ``views[index]``; ``[N]`` and ``[*]``
        prefixes retarget a line.  Nothing short-circuits.
        """
        results: list[PredicateResult] = []
        for line in group.predicates:
            selector = _SELECTOR_RE.match(line)
            if selector is None:
                results.append(self.check(line, views[index]))
                continue
            target, expr = selector.group(1), selector.group(2).strip()
            if target == '*':
                if not views:
                    results.append(PredicateResult(line, index, False, 'no messages received'))
                for view in views:
                    results.append(self.check(expr, view))
                continue
            n = int(target)
            if n >= len(views):
                results.append(PredicateResult(line, n, False, f'no message {n} (received {len(views)})'))
            else:
                results.append(self.check(expr, views[n]))
        return GroupResult(group_index=index, results=tuple(results))

    def evaluate_all(self, groups: Sequence[AssertionGroup], views: Sequence[ResponseView]) -> list[GroupResult]:
        """Evaluate group *N* against message *N* for every group.

        Raises:
            InsufficientMessages: If there are more groups than messages.
        """
        if len(groups) > len(views):
            raise InsufficientMessages(len(groups), len(views))
        return [self.evaluate(group, views, i) for i, group in enumerate(groups)]


__all__ = [
    'AssertionEvaluator',
    'GroupResult',
    'PredicateResult',
    'needs_metadata',
]
