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

"""Thin wrapper over the ``jq`` binding with a per-instance program cache.

Both the response comparator (path resolution, redaction, array sorting)
and the assertion evaluator run jq programs.  Compiling is the expensive
part, so each :class:`JqRunner` keeps compiled programs keyed by source.
"""

from __future__ import annotations

from typing import Any

import jq


class QueryError(Exception):
    """A jq program failed to compile or raised at runtime."""


class JqRunner:
    """Compiles jq programs once and runs them against JSON values."""

    def __init__(self) -> None:
        """Create a runner with an empty program cache."""
        self._programs: dict[str, Any] = {}

    def compile(self, program: str) -> Any:  # noqa: ANN401 - jq program object
        """Return the compiled form of *program*, compiling at most once.

        Raises:
            QueryError: If *program* is not valid jq.
        """
        compiled = self._programs.get(program)
        if compiled is None:
            try:
                compiled = jq.compile(program)
            except ValueError as exc:
                raise QueryError(str(exc)) from exc
            self._programs[program] = compiled
        return compiled

    def all(self, program: str, value: Any) -> list[Any]:  # noqa: ANN401 - arbitrary JSON
        """Run *program* on *value* and return every output.

        Raises:
            QueryError: On compile or runtime errors.
        """
        compiled = self.compile(program)
        try:
            return compiled.input_value(value).all()
        except ValueError as exc:
            raise QueryError(str(exc)) from exc

    def first(self, program: str, value: Any) -> Any:  # noqa: ANN401 - arbitrary JSON
        """Run *program* and return its first output, or ``None``."""
        outputs = self.all(program, value)
        return outputs[0] if outputs else None

    def paths(self, expr: str, value: Any) -> list[list[str | int]]:  # noqa: ANN401 - arbitrary JSON
        """Resolve path expression *expr* to concrete paths within *value*.

        ``.items[].price`` expands to one path per array element.
        """
        return self.first(f'[path({expr})]', value) or []

    def __len__(self) -> int:
        """Number of compiled programs held."""
        return len(self._programs)


def get_path(doc: Any, path: list[str | int]) -> tuple[bool, Any]:  # noqa: ANN401 - arbitrary JSON
    """Return ``(found, value)`` for a concrete *path* in *doc*."""
    current = doc
    for part in path:
        if isinstance(part, str) and isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(part, int) and isinstance(current, list) and -len(current) <= part < len(current):
            current = current[part]
        else:
            return False, None
    return True, current


def set_path(doc: Any, path: list[str | int], value: Any) -> None:  # noqa: ANN401 - arbitrary JSON
    """Set an existing *path* in *doc* to *value*, in place."""
    if not path:
        return
    found, parent = get_path(doc, path[:-1])
    if found and isinstance(parent, (dict, list)):
        parent[path[-1]] = value  # type: ignore[index]


__all__ = [
    'JqRunner',
    'QueryError',
    'get_path',
    'set_path',
]
