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

"""TOML configuration loader for the ``grpctestify`` tool.

Settings are resolved once at startup, in increasing precedence::

    built-in defaults
        < environment (GRPCTESTIFY_ADDRESS, GRPCTESTIFY_PLUGIN_DIR)
        < grpctestify.toml / pyproject.toml
        < CLI flags

Supports two TOML layouts:
- ``grpctestify.toml``: top-level ``[grpctestify]`` section.
- ``pyproject.toml``: nested under ``[tool.grpctestify]``.

When ``--config`` is not given, ``grpctestify.toml`` is auto-discovered by
walking up from the current directory.  A missing file is not an error;
defaults apply.

Python 3.10 ships without ``tomllib``; the ``tomli`` backport is used
as a fallback.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from grpctestify.errors import ConfigError
from grpctestify.logging import get_logger

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib
    except ModuleNotFoundError as exc:
        msg = "Python 3.10 requires the 'tomli' package: pip install tomli"
        raise SystemExit(msg) from exc

log = get_logger('grpctestify.config')

# Config file name used for auto-discovery.
_DEFAULT_CONFIG_NAME = 'grpctestify.toml'

# Environment variables read once by load_config.
ENV_ADDRESS = 'GRPCTESTIFY_ADDRESS'
ENV_PLUGIN_DIR = 'GRPCTESTIFY_PLUGIN_DIR'

DEFAULT_ADDRESS = 'localhost:4770'

# Sentinel for "no CLI override".
_UNSET: int = -1

SORT_MODES = ('path', 'name', 'mtime', 'random')
DRY_RUN_OUTCOMES = ('auto', 'success', 'error')


def _default_concurrency() -> int:
    return os.cpu_count() or 4


@dataclass(frozen=True)
class GrpcTestifyConfig:
    """Resolved configuration for the ``grpctestify`` tool.

    Attributes:
        address: Default ``host:port`` for files without an ADDRESS section.
        concurrency: Maximum number of test files run in parallel.
            Defaults to the logical CPU count.
        timeout: Per-call timeout in seconds for the gRPC client process.
            A file's ``OPTIONS timeout`` takes precedence.
        max_attempts: Attempts per call when failures are transient.
        retry_delay_ms: Delay before the first retry; doubles thereafter.
        retry_multiplier: Backoff multiplier between retries.
        no_retry: Disable retries (and the liveness probe) entirely.
        probe_timeout: Seconds to wait for the TCP liveness probe.
        plugin_dir: Directory of ``*.py`` files that register extra verbs.
        dry_run: Render calls instead of executing them.
        dry_run_outcome: What a dry-run call reports.  ``auto`` simulates an
            error for tests with an ERROR section and a success otherwise;
            ``success`` and ``error`` force one answer for every test.
        sort: Test file ordering: ``path``, ``name``, ``mtime`` or ``random``.
        fail_fast: Stop scheduling new tests after the first failure.
        grpcurl: Path or name of the gRPC client binary.
    """

    address: str = DEFAULT_ADDRESS
    concurrency: int = field(default_factory=_default_concurrency)
    timeout: float = 30.0
    max_attempts: int = 3
    retry_delay_ms: int = 1000
    retry_multiplier: float = 2.0
    no_retry: bool = False
    probe_timeout: float = 3.0
    plugin_dir: Path | None = None
    dry_run: bool = False
    dry_run_outcome: str = 'auto'
    sort: str = 'path'
    fail_fast: bool = False
    grpcurl: str = 'grpcurl'


def _discover_config() -> Path | None:
    """Walk up from the current directory looking for ``grpctestify.toml``."""
    current = Path.cwd().resolve()
    while True:
        candidate = current / _DEFAULT_CONFIG_NAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def _load_toml(path: Path) -> dict[str, object]:
    """Read and parse a TOML file."""
    try:
        with open(path, 'rb') as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f'{path}: {exc}', hint='fix the TOML syntax') from exc


def _extract_section(data: dict[str, object]) -> dict[str, object]:
    """Extract the ``[grpctestify]`` section from parsed TOML data.

    Supports two layouts:
    - ``grpctestify.toml``: top-level ``[grpctestify]`` key.
    - ``pyproject.toml``: nested under ``[tool.grpctestify]``.
    """
    section: object = data.get('grpctestify')
    if isinstance(section, dict):
        return {str(k): v for k, v in section.items()}

    tool: object = data.get('tool')
    if isinstance(tool, dict):
        section = tool.get('grpctestify')  # type: ignore[call-overload]
        if isinstance(section, dict):
            return {str(k): v for k, v in section.items()}

    return {}


def _resolve_path(raw: str, base_dir: Path) -> Path:
    """Resolve a path that may be relative to *base_dir*."""
    p = Path(raw).expanduser()
    if p.is_absolute():
        return p
    return (base_dir / p).resolve()


def _positive_int(raw: dict[str, object], key: str, default: int) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        log.warning('config_invalid_value', key=key, value=value, default=default)
        return default
    return value


def _non_negative_number(raw: dict[str, object], key: str, default: float) -> float:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        log.warning('config_invalid_value', key=key, value=value, default=default)
        return default
    return float(value)


def _choice(raw: dict[str, object], key: str, default: str, choices: tuple[str, ...]) -> str:
    value = raw.get(key, default)
    if value not in choices:
        log.warning('config_invalid_value', key=key, value=value, default=default)
        return default
    return str(value)


def load_config(
    *,
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    address_override: str = '',
    concurrency_override: int = _UNSET,
    timeout_override: float = -1.0,
    max_attempts_override: int = _UNSET,
    retry_delay_override: int = _UNSET,
    no_retry: bool = False,
    dry_run: bool = False,
    dry_run_outcome_override: str = '',
    sort_override: str = '',
    fail_fast: bool = False,
) -> GrpcTestifyConfig:
    """Load configuration from environment and TOML, applying CLI overrides.

    Args:
        config_path: Explicit path to a ``grpctestify.toml`` or
            ``pyproject.toml``.  When ``None``, ``grpctestify.toml`` is
            auto-discovered; if none exists, defaults apply.
        env: Environment mapping (defaults to ``os.environ``).
        address_override: If non-empty, overrides the default address.
        concurrency_override: If positive, overrides the TOML concurrency.
        timeout_override: If positive, overrides the TOML timeout.
        max_attempts_override: If positive, overrides the TOML max-attempts.
        retry_delay_override: If non-negative, overrides retry-delay-ms.
        no_retry: Force retries off (OR-ed with the TOML value).
        dry_run: Force dry-run mode.
        dry_run_outcome_override: ``auto``, ``success`` or ``error`` if non-empty.
        sort_override: Sort mode if non-empty.
        fail_fast: Force fail-fast mode (OR-ed with the TOML value).

    Returns:
        Fully resolved :class:`GrpcTestifyConfig`.

    Raises:
        ConfigError: If an explicit *config_path* does not exist, the TOML is
            malformed, or a CLI override is out of range.
    """
    environ = os.environ if env is None else env

    if config_path is not None and not config_path.is_file():
        raise ConfigError(f'config file not found: {config_path}', hint='check the --config path')
    if config_path is None:
        config_path = _discover_config()

    raw: dict[str, object] = {}
    base_dir = Path.cwd()
    if config_path is not None:
        raw = _extract_section(_load_toml(config_path))
        base_dir = config_path.resolve().parent
        log.debug('config_loaded', path=str(config_path), keys=sorted(raw))

    # Address: env < TOML < CLI.
    address = environ.get(ENV_ADDRESS, '') or DEFAULT_ADDRESS
    toml_address = raw.get('address')
    if isinstance(toml_address, str) and toml_address:
        address = toml_address
    if address_override:
        address = address_override

    concurrency = _positive_int(raw, 'concurrency', _default_concurrency())
    if concurrency_override != _UNSET:
        if concurrency_override < 1:
            raise ConfigError(f'--parallel must be a positive integer, got {concurrency_override}')
        concurrency = concurrency_override

    timeout = _non_negative_number(raw, 'timeout', 30.0) or 30.0
    if timeout_override != -1.0:
        if timeout_override <= 0:
            raise ConfigError(f'--timeout must be positive, got {timeout_override}')
        timeout = timeout_override

    max_attempts = _positive_int(raw, 'max-attempts', 3)
    if max_attempts_override != _UNSET:
        if max_attempts_override < 1:
            raise ConfigError(f'--retry must be at least 1, got {max_attempts_override}')
        max_attempts = max_attempts_override

    retry_delay_ms = int(_non_negative_number(raw, 'retry-delay-ms', 1000))
    if retry_delay_override != _UNSET:
        if retry_delay_override < 0:
            raise ConfigError(f'--retry-delay must be non-negative, got {retry_delay_override}')
        retry_delay_ms = retry_delay_override

    retry_multiplier = _non_negative_number(raw, 'retry-multiplier', 2.0)
    if retry_multiplier < 1.0:
        log.warning('config_invalid_value', key='retry-multiplier', value=retry_multiplier, default=2.0)
        retry_multiplier = 2.0

    probe_timeout = _non_negative_number(raw, 'probe-timeout', 3.0) or 3.0

    # Plugin directory: env < TOML.
    plugin_dir: Path | None = None
    env_plugin_dir = environ.get(ENV_PLUGIN_DIR, '')
    if env_plugin_dir:
        plugin_dir = Path(env_plugin_dir).expanduser()
    toml_plugin_dir = raw.get('plugin-dir')
    if isinstance(toml_plugin_dir, str) and toml_plugin_dir:
        plugin_dir = _resolve_path(toml_plugin_dir, base_dir)

    dry_run_outcome = _choice(raw, 'dry-run-outcome', 'auto', DRY_RUN_OUTCOMES)
    if dry_run_outcome_override:
        if dry_run_outcome_override not in DRY_RUN_OUTCOMES:
            raise ConfigError(f'--dry-run-outcome must be one of {", ".join(DRY_RUN_OUTCOMES)}')
        dry_run_outcome = dry_run_outcome_override

    sort = _choice(raw, 'sort', 'path', SORT_MODES)
    if sort_override:
        if sort_override not in SORT_MODES:
            raise ConfigError(f'--sort must be one of {", ".join(SORT_MODES)}')
        sort = sort_override

    grpcurl = raw.get('grpcurl', 'grpcurl')
    if not isinstance(grpcurl, str) or not grpcurl:
        grpcurl = 'grpcurl'

    return GrpcTestifyConfig(
        address=address,
        concurrency=concurrency,
        timeout=timeout,
        max_attempts=max_attempts,
        retry_delay_ms=retry_delay_ms,
        retry_multiplier=retry_multiplier,
        no_retry=no_retry or raw.get('no-retry') is True,
        probe_timeout=probe_timeout,
        plugin_dir=plugin_dir,
        dry_run=dry_run,
        dry_run_outcome=dry_run_outcome,
        sort=sort,
        fail_fast=fail_fast or raw.get('fail-fast') is True,
        grpcurl=grpcurl,
    )


__all__ = [
    'DEFAULT_ADDRESS',
    'DRY_RUN_OUTCOMES',
    'ENV_ADDRESS',
    'ENV_PLUGIN_DIR',
    'SORT_MODES',
    'GrpcTestifyConfig',
    'load_config',
]
