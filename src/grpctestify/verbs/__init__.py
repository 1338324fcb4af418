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

"""Verb registry for ASSERTS predicates.

A verb is a pure function that an assertion calls as ``@name(args)``.
The evaluator replaces each call with the JSON literal of its result
before handing the predicate to jq::

    @header("x-request-id") != null
        → "a1b2c3" != null

    @uuid(.id, "v4")
        → true

Verbs receive a :class:`ResponseView` (the message plus its metadata)
followed by the call's arguments, and return any JSON value.

There is no module-level registry.  :func:`default_registry` builds a
fresh :class:`VerbRegistry` with the built-in verbs; the orchestrator
receives it by injection and tests substitute their own.

Plugins are ``*.py`` files in the plugin directory that define
``register_verbs(registry)``; see :func:`load_plugins`.
"""

from __future__ import annotations

import importlib.util
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from grpctestify.errors import ConfigError, E
from grpctestify.logging import get_logger

__all__ = [
    'METADATA_VERBS',
    'ResponseView',
    'Verb',
    'VerbRegistry',
    'default_registry',
    'load_plugins',
]

log = get_logger('grpctestify.verbs')

_NAME_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

# Verbs that read response metadata; their use turns on verbose client output.
METADATA_VERBS: frozenset[str] = frozenset({'header', 'trailer'})


@dataclass(frozen=True)
class ResponseView:
    """What a verb can see about one response message.

    Attributes:
        message: The decoded JSON message.
        headers: Response headers, keys lower-cased.
        trailers: Response trailers, keys lower-cased.
        index: Position of the message in the stream (0-based).
        duration_ms: Wall-clock duration of the whole call.
    """

    message: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    trailers: dict[str, str] = field(default_factory=dict)
    index: int = 0
    duration_ms: float = 0.0


@runtime_checkable
class Verb(Protocol):
    """Protocol for assertion verbs."""

    def __call__(self, view: ResponseView, *args: Any) -> Any:  # noqa: ANN401 - JSON in, JSON out
        """Return a JSON value computed from *view* and *args*."""
        ...


class VerbRegistry:
    """Name → verb mapping, built once per run and injected."""

    def __init__(self) -> None:
        """Create an empty registry."""
        self._verbs: dict[str, Verb] = {}

    def register(self, name: str, fn: Verb) -> Verb:
        """Register *fn* under *name*, replacing any earlier verb.

        Raises:
            ValueError: If *name* is not an identifier.
        """
        if not _NAME_RE.match(name):
            raise ValueError(f'invalid verb name: {name!r}')
        if name in self._verbs:
            log.warning('verb_overridden', verb=name)
        self._verbs[name] = fn
        return fn

    def verb(self, name: str) -> Callable[[Verb], Verb]:
        """Decorator form of :meth:`register`.

        Usage::

            def register_verbs(registry):
                @registry.verb('even')
                def even(view, value):
                    return value % 2 == 0
        """

        def decorator(fn: Verb) -> Verb:
            return self.register(name, fn)

        return decorator

    def get(self, name: str) -> Verb:
        """Look up a verb by name.

        Raises:
            KeyError: If the verb is not registered.
        """
        if name not in self._verbs:
            raise KeyError(f'Unknown verb: @{name}')
        return self._verbs[name]

    def describe(self) -> dict[str, str]:
        """Map each verb name to the first line of its docstring."""
        return {
            name: (fn.__doc__ or '').strip().splitlines()[0] if (fn.__doc__ or '').strip() else ''
            for name, fn in sorted(self._verbs.items())
        }

    def __contains__(self, name: object) -> bool:
        """Whether *name* is registered."""
        return name in self._verbs

    def __iter__(self) -> Iterator[str]:
        """Iterate over verb names in sorted order."""
        return iter(sorted(self._verbs))

    def __len__(self) -> int:
        """Number of registered verbs."""
        return len(self._verbs)


def load_plugins(registry: VerbRegistry, directory: Path) -> list[str]:
    """Import every ``*.py`` in *directory* and call its ``register_verbs``.

    Files are loaded in name order.  A file without ``register_verbs`` is
    skipped with a warning.

    Returns:
        Names of the plugin files that registered verbs.

    Raises:
        ConfigError: If *directory* is missing or a plugin fails to load.
    """
    if not directory.is_dir():
        raise ConfigError(
            f'plugin directory not found: {directory}',
            code=E.PLUGIN_LOAD_FAILED,
            hint='set GRPCTESTIFY_PLUGIN_DIR or plugin-dir to an existing directory',
        )

    loaded: list[str] = []
    for path in sorted(directory.glob('*.py')):
        if path.name.startswith('_'):
            continue
        spec = importlib.util.spec_from_file_location(f'_grpctestify_plugin_{path.stem}', str(path))
        if spec is None or spec.loader is None:
            raise ConfigError(f'cannot load plugin: {path}', code=E.PLUGIN_LOAD_FAILED)
        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as exc:  # noqa: BLE001 - third-party code; report and stop
            raise ConfigError(f'plugin {path.name} failed to import: {exc}', code=E.PLUGIN_LOAD_FAILED) from exc

        hook = getattr(module, 'register_verbs', None)
        if not callable(hook):
            log.warning('plugin_without_register_verbs', path=str(path))
            continue
        hook(registry)
        loaded.append(path.name)
        log.debug('plugin_loaded', path=str(path))
    return loaded


def default_registry(plugin_dir: Path | None = None) -> VerbRegistry:
    """Build a registry with the built-in verbs and optional plugins."""
    # Deferred so the built-in modules can import ResponseView from here.
    from grpctestify.verbs import formats, metadata  # noqa: PLC0415

    registry = VerbRegistry()
    metadata.register_verbs(registry)
    formats.register_verbs(registry)
    if plugin_dir is not None:
        load_plugins(registry, plugin_dir)
    return registry
