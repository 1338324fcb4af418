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

"""Metadata verbs: header, trailer, response_time."""

from __future__ import annotations

from typing import Any

from grpctestify.verbs import ResponseView, VerbRegistry


def header(view: ResponseView, name: str) -> str | None:
    """Value of response header *name* (case-insensitive), or null."""
    return view.headers.get(str(name).lower())


def trailer(view: ResponseView, name: str) -> str | None:
    """Value of response trailer *name* (case-insensitive), or null."""
    return view.trailers.get(str(name).lower())


def response_time(view: ResponseView, limit: Any = None) -> float | bool:  # noqa: ANN401 - number or "min-max"
    """Call duration in ms; with a limit, whether it is within ``max`` or ``min-max``."""
    if limit is None:
        return view.duration_ms
    if isinstance(limit, str) and '-' in limit.strip('-'):
        low, _, high = limit.partition('-')
        return float(low) <= view.duration_ms <= float(high)
    return view.duration_ms <= float(limit)


def register_verbs(registry: VerbRegistry) -> None:
    """Register the metadata verbs."""
    registry.register('header', header)
    registry.register('trailer', trailer)
    registry.register('response_time', response_time)
