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

"""TCP liveness probe, independent of the gRPC client."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

from grpctestify.logging import get_logger

log = get_logger('grpctestify.probe')

Probe = Callable[[str], Awaitable[bool]]


def split_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into host and port.

    Raises:
        ValueError: If *address* has no valid port.
    """
    host, sep, port = address.rpartition(':')
    if not sep or not port.isdigit():
        raise ValueError(f'address must be host:port, got {address!r}')
    host = host.strip('[]') or 'localhost'
    return host, int(port)


class TcpProbe:
    """Checks that something accepts TCP connections at an address."""

    def __init__(self, timeout: float = 3.0) -> None:
        """Initialize with the connect timeout in seconds."""
        self.timeout = timeout

    async def __call__(self, address: str) -> bool:
        """Return whether *address* accepted a connection within the timeout."""
        try:
            host, port = split_address(address)
        except ValueError as exc:
            log.warning('probe_bad_address', address=address, error=str(exc))
            return False
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            log.debug('probe_failed', address=address, error=str(exc) or type(exc).__name__)
            return False
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True


__all__ = ['Probe', 'TcpProbe', 'split_address']
