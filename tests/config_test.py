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

"""Tests for the ``grpctestify.config`` module."""

from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest
from grpctestify.config import (
    DEFAULT_ADDRESS,
    GrpcTestifyConfig,
    _extract_section,
    _resolve_path,
    load_config,
)
from grpctestify.errors import ConfigError


def _write(tmp_path: Path, body: str, name: str = 'grpctestify.toml') -> Path:
    path = tmp_path / name
    path.write_text(dedent(body), encoding='utf-8')
    return path


# ---------------------------------------------------------------------------
# _resolve_path
# ---------------------------------------------------------------------------


class TestResolvePath:
    """Tests for _resolve_path."""

    def test_absolute_path_unchanged(self, tmp_path: Path) -> None:
        """Absolute paths are returned as-is."""
        p = tmp_path / 'plugins'
        assert _resolve_path(str(p), Path('/some/base')) == p

    def test_relative_path_resolved(self, tmp_path: Path) -> None:
        """Relative paths are resolved against the base directory."""
        assert _resolve_path('plugins', tmp_path) == (tmp_path / 'plugins').resolve()


# ---------------------------------------------------------------------------
# _extract_section
# ---------------------------------------------------------------------------


class TestExtractSection:
    """Tests for _extract_section."""

    def test_top_level(self) -> None:
        """Extract from top-level [grpctestify] section."""
        data: dict[str, object] = {'grpctestify': {'concurrency': 4}}
        assert _extract_section(data) == {'concurrency': 4}

    def test_tool_section(self) -> None:
        """Extract from [tool.grpctestify] section."""
        data: dict[str, object] = {'tool': {'grpctestify': {'concurrency': 4}}}
        assert _extract_section(data) == {'concurrency': 4}

    def test_top_level_takes_precedence(self) -> None:
        """Top-level [grpctestify] takes precedence over [tool.grpctestify]."""
        data: dict[str, object] = {
            'grpctestify': {'concurrency': 4},
            'tool': {'grpctestify': {'concurrency': 8}},
        }
        assert _extract_section(data) == {'concurrency': 4}

    def test_empty_data(self) -> None:
        """Return empty dict when no section exists."""
        assert _extract_section({'other': 'stuff'}) == {}


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfigDefaults:
    """Defaults when no config file exists."""

    def test_defaults_without_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """No file and no env yields the built-in defaults."""
        monkeypatch.chdir(tmp_path)
        cfg = load_config(env={})
        assert cfg.address == DEFAULT_ADDRESS
        assert cfg.max_attempts == 3
        assert cfg.retry_delay_ms == 1000
        assert cfg.no_retry is False
        assert cfg.plugin_dir is None
        assert cfg.concurrency >= 1

    def test_dataclass_defaults(self) -> None:
        """The dataclass defaults match load_config defaults."""
        cfg = GrpcTestifyConfig()
        assert cfg.address == 'localhost:4770'
        assert cfg.dry_run_outcome == 'auto'
        assert cfg.sort == 'path'

    def test_missing_explicit_file_raises(self, tmp_path: Path) -> None:
        """An explicit --config path that does not exist is an error."""
        with pytest.raises(ConfigError, match='not found'):
            load_config(config_path=tmp_path / 'nope.toml', env={})


class TestLoadConfigEnvironment:
    """Environment inputs."""

    def test_env_address(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """GRPCTESTIFY_ADDRESS replaces the built-in default address."""
        monkeypatch.chdir(tmp_path)
        cfg = load_config(env={'GRPCTESTIFY_ADDRESS': 'svc:9000'})
        assert cfg.address == 'svc:9000'

    def test_env_plugin_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """GRPCTESTIFY_PLUGIN_DIR sets the plugin directory."""
        monkeypatch.chdir(tmp_path)
        cfg = load_config(env={'GRPCTESTIFY_PLUGIN_DIR': str(tmp_path / 'verbs')})
        assert cfg.plugin_dir == tmp_path / 'verbs'

    def test_toml_address_beats_env(self, tmp_path: Path) -> None:
        """The TOML address wins over the environment."""
        path = _write(tmp_path, '[grpctestify]\naddress = "toml:1"\n')
        cfg = load_config(config_path=path, env={'GRPCTESTIFY_ADDRESS': 'env:2'})
        assert cfg.address == 'toml:1'

    def test_cli_address_beats_toml(self, tmp_path: Path) -> None:
        """The CLI override wins over everything."""
        path = _write(tmp_path, '[grpctestify]\naddress = "toml:1"\n')
        cfg = load_config(config_path=path, env={}, address_override='cli:3')
        assert cfg.address == 'cli:3'


class TestLoadConfigToml:
    """TOML parsing and validation."""

    def test_full_file(self, tmp_path: Path) -> None:
        """Every supported key is read."""
        path = _write(
            tmp_path,
            """\
            [grpctestify]
            concurrency = 2
            timeout = 5.5
            max-attempts = 4
            retry-delay-ms = 10
            retry-multiplier = 3.0
            no-retry = true
            probe-timeout = 1.0
            plugin-dir = "verbs"
            dry-run-outcome = "error"
            sort = "name"
            fail-fast = true
            grpcurl = "/opt/bin/grpcurl"
            """,
        )
        cfg = load_config(config_path=path, env={})
        assert cfg.concurrency == 2
        assert cfg.timeout == 5.5
        assert cfg.max_attempts == 4
        assert cfg.retry_delay_ms == 10
        assert cfg.retry_multiplier == 3.0
        assert cfg.no_retry is True
        assert cfg.probe_timeout == 1.0
        assert cfg.plugin_dir == (tmp_path / 'verbs').resolve()
        assert cfg.dry_run_outcome == 'error'
        assert cfg.sort == 'name'
        assert cfg.fail_fast is True
        assert cfg.grpcurl == '/opt/bin/grpcurl'

    def test_pyproject_layout(self, tmp_path: Path) -> None:
        """[tool.grpctestify] in pyproject.toml is honored."""
        path = _write(tmp_path, '[tool.grpctestify]\nconcurrency = 3\n', name='pyproject.toml')
        assert load_config(config_path=path, env={}).concurrency == 3

    def test_invalid_values_fall_back(self, tmp_path: Path) -> None:
        """Out-of-range TOML values fall back to defaults."""
        path = _write(
            tmp_path,
            """\
            [grpctestify]
            concurrency = 0
            max-attempts = "lots"
            sort = "sideways"
            retry-multiplier = 0.5
            """,
        )
        cfg = load_config(config_path=path, env={})
        assert cfg.concurrency >= 1
        assert cfg.max_attempts == 3
        assert cfg.sort == 'path'
        assert cfg.retry_multiplier == 2.0

    def test_malformed_toml_raises(self, tmp_path: Path) -> None:
        """Broken TOML is a ConfigError, not a crash."""
        path = _write(tmp_path, '[grpctestify\n')
        with pytest.raises(ConfigError):
            load_config(config_path=path, env={})

    def test_discovery_walks_up(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """grpctestify.toml in a parent directory is discovered."""
        _write(tmp_path, '[grpctestify]\nconcurrency = 7\n')
        nested = tmp_path / 'a' / 'b'
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        assert load_config(env={}).concurrency == 7


class TestLoadConfigOverrides:
    """CLI overrides."""

    def test_overrides_apply(self, tmp_path: Path) -> None:
        """Positive overrides replace TOML values."""
        path = _write(tmp_path, '[grpctestify]\nconcurrency = 2\n')
        cfg = load_config(
            config_path=path,
            env={},
            concurrency_override=9,
            timeout_override=1.5,
            max_attempts_override=1,
            retry_delay_override=0,
            no_retry=True,
            dry_run=True,
            dry_run_outcome_override='error',
            sort_override='random',
            fail_fast=True,
        )
        assert cfg.concurrency == 9
        assert cfg.timeout == 1.5
        assert cfg.max_attempts == 1
        assert cfg.retry_delay_ms == 0
        assert cfg.no_retry is True
        assert cfg.dry_run is True
        assert cfg.dry_run_outcome == 'error'
        assert cfg.sort == 'random'
        assert cfg.fail_fast is True

    def test_bad_parallel_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """A zero --parallel value is rejected."""
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigError, match='--parallel'):
            load_config(env={}, concurrency_override=0)

    def test_bad_sort_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """An unknown sort mode is rejected."""
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigError, match='--sort'):
            load_config(env={}, sort_override='upside-down')
