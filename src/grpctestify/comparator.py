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

"""Response comparator: expected RESPONSE vs actual message.

Pipeline (always in this order)::

    expected, actual
        │
        ├─ 1. redact      del(path) on both sides
        ├─ 2. tolerance   check |e - a| per path, then copy e into a
        └─ 3. walk        structural match, first difference wins
                             exact:     same keys, same array lengths
                             partial:   expected is a recursive subset
                             "*":       any non-null actual value
                             unordered: arrays (all, or the listed paths)
                                        match as multisets, each expected
                                        element paired with a distinct
                                        actual element

Canonical JSON sorts keys, uses compact separators and writes integral
floats as ints, so ``1.0`` equals ``1`` but ``true`` never equals ``1``.
"""

from __future__ import annotations

import copy
import difflib
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from grpctestify.logging import get_logger
from grpctestify.query import JqRunner, QueryError, get_path, set_path
from grpctestify.types import CompareMode, ComparisonOptions

log = get_logger('grpctestify.comparator')

WILDCARD = '*'


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome of one comparison.  Truthy when matched."""

    matched: bool
    reason: str = ''

    def __bool__(self) -> bool:
        """Allow ``if comparator.compare(...):``."""
        return self.matched


def _is_number(value: Any) -> bool:  # noqa: ANN401 - arbitrary JSON
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _normalize(value: Any) -> Any:  # noqa: ANN401 - arbitrary JSON
    """Turn integral floats into ints, recursively."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    return value


def canonical(value: Any) -> str:  # noqa: ANN401 - arbitrary JSON
    """Canonical JSON text: sorted keys, compact, integral floats as ints."""
    return json.dumps(_normalize(value), sort_keys=True, separators=(',', ':'), ensure_ascii=False)


def render_diff(expected: Any, actual: Any) -> str:  # noqa: ANN401 - arbitrary JSON
    """Unified diff of the pretty-printed documents, for failure panels."""
    exp_lines = json.dumps(_normalize(expected), indent=2, sort_keys=True, ensure_ascii=False).splitlines()
    act_lines = json.dumps(_normalize(actual), indent=2, sort_keys=True, ensure_ascii=False).splitlines()
    return '\n'.join(difflib.unified_diff(exp_lines, act_lines, fromfile='expected', tofile='actual', lineterm=''))


def _format_path(path: list[str | int]) -> str:
    if not path:
        return '.'
    out = ''
    for part in path:
        out += f'[{part}]' if isinstance(part, int) else f'.{part}'
    return out


def _is_wildcard(value: Any) -> bool:  # noqa: ANN401 - arbitrary JSON
    return isinstance(value, str) and value == WILDCARD


class _Walk:
    """One structural comparison of expected against actual.

    ``unordered`` is either ``True`` (every array) or the set of concrete
    array paths that compare as multisets.
    """

    def __init__(self, *, partial: bool, unordered: bool | set[tuple[str | int, ...]]) -> None:
        """Initialize with the match mode."""
        self.partial = partial
        self.unordered = unordered

    def _is_unordered(self, parts: tuple[str | int, ...]) -> bool:
        return self.unordered is True or (isinstance(self.unordered, set) and parts in self.unordered)

    def diff(self, expected: Any, actual: Any, parts: tuple[str | int, ...] = ()) -> str | None:  # noqa: ANN401
        """Describe the first place where *actual* fails to match *expected*."""
        where = _format_path(list(parts))
        if _is_wildcard(expected):
            return None if actual is not None else f'{where}: wildcard needs a non-null value, got null'
        if isinstance(expected, dict):
            if not isinstance(actual, dict):
                return f'{where}: expected object, got {json.dumps(actual)}'
            for key, exp in expected.items():
                if key not in actual:
                    return f'{_format_path([*parts, key])}: missing in actual'
                reason = self.diff(exp, actual[key], (*parts, key))
                if reason:
                    return reason
            if not self.partial:
                extra = sorted(set(actual) - set(expected))
                if extra:
                    return f'{where}: unexpected key(s) {", ".join(extra)}'
            return None
        if isinstance(expected, list):
            if not isinstance(actual, list):
                return f'{where}: expected array, got {json.dumps(actual)}'
            if len(actual) < len(expected) or (not self.partial and len(actual) != len(expected)):
                return f'{where}: expected {len(expected)} element(s), got {len(actual)}'
            if self._is_unordered(parts):
                return self._diff_multiset(expected, actual, parts)
            for i, exp in enumerate(expected):
                reason = self.diff(exp, actual[i], (*parts, i))
                if reason:
                    return reason
            return None
        if canonical(expected) != canonical(actual):
            return f'{where}: expected {canonical(expected)}, got {canonical(actual)}'
        return None

    def _diff_multiset(self, expected: list[Any], actual: list[Any], parts: tuple[str | int, ...]) -> str | None:
        """Pair each expected element with a distinct matching actual element."""
        candidates = [
            [j for j, act in enumerate(actual) if self.diff(exp, act, (*parts, j)) is None] for exp in expected
        ]
        owner: dict[int, int] = {}

        def assign(i: int, seen: set[int]) -> bool:
            for j in candidates[i]:
                if j in seen:
                    continue
                seen.add(j)
                if j not in owner or assign(owner[j], seen):
                    owner[j] = i
                    return True
            return False

        for i, exp in enumerate(expected):
            if not assign(i, set()):
                where = _format_path(list(parts))
                return f'{where}: no element matches expected [{i}] {canonical(exp)} (arrays compared unordered)'
        return None


class Comparator:
    """Compares an expected RESPONSE document against an actual message.

    Paths in :class:`ComparisonOptions` are jq path expressions, resolved
    through a :class:`JqRunner` so they follow the same language as
    ASSERTS predicates.
    """

    def __init__(self, runner: JqRunner | None = None) -> None:
        """Initialize with an optional shared jq runner."""
        self._jq = runner or JqRunner()

    def compare(
        self,
        expected: Any,  # noqa: ANN401 - arbitrary JSON
        actual: Any,  # noqa: ANN401 - arbitrary JSON
        options: ComparisonOptions | None = None,
    ) -> ComparisonResult:
        """Compare *expected* against *actual*.  Neither input is mutated."""
        opts = options or ComparisonOptions()
        exp = copy.deepcopy(expected)
        act = copy.deepcopy(actual)

        for expr in opts.redact_paths:
            exp = self._delete(exp, expr)
            act = self._delete(act, expr)

        for expr, tol in opts.tolerance.items():
            reason = self._apply_tolerance(exp, act, expr, Decimal(str(tol)), percent=False)
            if reason:
                return ComparisonResult(False, reason)
        for expr, tol in opts.tol_percent.items():
            reason = self._apply_tolerance(exp, act, expr, Decimal(str(tol)), percent=True)
            if reason:
                return ComparisonResult(False, reason)

        unordered: bool | set[tuple[str | int, ...]] = True
        if not opts.unordered_arrays:
            unordered = set()
            for expr in opts.unordered_array_paths:
                unordered.update(self._array_paths(expr, exp))
                unordered.update(self._array_paths(expr, act))

        walk = _Walk(partial=opts.mode == CompareMode.PARTIAL, unordered=unordered)
        reason = walk.diff(exp, act)
        return ComparisonResult(reason is None, reason or '')

    def _delete(self, doc: Any, expr: str) -> Any:  # noqa: ANN401 - arbitrary JSON
        try:
            return self._jq.first(f'del({expr})', doc)
        except QueryError as exc:
            log.debug('redact_skipped', path=expr, error=str(exc))
            return doc

    def _array_paths(self, expr: str, doc: Any) -> list[tuple[str | int, ...]]:  # noqa: ANN401 - arbitrary JSON
        try:
            return [tuple(p) for p in self._jq.paths(expr, doc)]
        except QueryError as exc:
            log.debug('unordered_path_skipped', path=expr, error=str(exc))
            return []

    def _apply_tolerance(
        self,
        expected: Any,  # noqa: ANN401 - arbitrary JSON
        actual: Any,  # noqa: ANN401 - arbitrary JSON
        expr: str,
        tol: Decimal,
        *,
        percent: bool,
    ) -> str:
        """Check tolerance at every path matched by *expr*, then neutralize.

        Returns an empty string when all values are within tolerance.
        Non-numeric or missing values are skipped.
        """
        try:
            paths = self._jq.paths(expr, expected)
        except QueryError as exc:
            log.debug('tolerance_skipped', path=expr, error=str(exc))
            return ''

        for path in paths:
            found_e, e_val = get_path(expected, path)
            found_a, a_val = get_path(actual, path)
            if not (found_e and found_a):
                continue
            if not (_is_number(e_val) and _is_number(a_val)):
                log.debug('tolerance_non_numeric', path=_format_path(path))
                set_path(actual, path, copy.deepcopy(e_val))
                continue
            e_dec = Decimal(str(e_val))
            diff = abs(e_dec - Decimal(str(a_val)))
            if percent:
                if e_dec == 0:
                    ok = diff == 0
                else:
                    ok = diff / abs(e_dec) * 100 <= tol
                unit = '%'
            else:
                ok = diff <= tol
                unit = ''
            if not ok:
                return (
                    f'{_format_path(path)}: expected {e_val} ± {tol}{unit}, got {a_val}'
                    f' (diff {diff})'
                )
            set_path(actual, path, e_val)
        return ''


def compare(expected: Any, actual: Any, options: ComparisonOptions | None = None) -> ComparisonResult:  # noqa: ANN401
    """Compare with a throwaway :class:`Comparator`."""
    return Comparator().compare(expected, actual, options)


__all__ = [
    'WILDCARD',
    'Comparator',
    'ComparisonResult',
    'canonical',
    'compare',
    'render_diff',
]
