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

"""Tests for grpctestify.probe."""

from __future__ import annotations

import asyncio
import socket

import pytest
from grpctestify.probe import TcpProbe, split_address


class TestSplitAddress:
    """Tests for split_address."""

    @pytest.mark.parametrize(
        ('address', 'expected'),
        [('localhost:4770', ('localhost', 4770)), ('[::1]:50051', ('::1', 50051)), ('10.0.0.1:80', ('10.0.0.1', 80))],
    )
    def test_split(self, address: str, expected: tuple[str, int]) -> None:
        """Host and port are separated, IPv6 brackets removed."""
        assert split_address(address) == expected

    @pytest.mark.parametrize('address', ['localhost', 'host:port', ':'])
    def test_invalid(self, address: str) -> None:
        """Addresses without a numeric port are rejected."""
        with pytest.raises(ValueError):
            split_address(address)


class TestTcpProbe:
    """Tests for TcpProbe."""

    @pytest.mark.asyncio
    async def test_listening(self) -> None:
        """A listening socket probes alive."""
        server = await asyncio.start_server(lambda r, w: w.close(), '127.0.0.1', 0)
        port = server.sockets[0].getsockname()[1]
        async with server:
            assert await TcpProbe(timeout=1.0)(f'127.0.0.1:{port}')

    @pytest.mark.asyncio
    async def test_closed_port(self) -> None:
        """A port nobody listens on probes dead."""
        with socket.socket() as sock:
            sock.bind(('127.0.0.1', 0))
            port = sock.getsockname()[1]
        assert not await TcpProbe(timeout=1.0)(f'127.0.0.1:{port}')

    @pytest.mark.asyncio
    async def test_malformed_address(self) -> None:
        """A malformed address probes dead instead of raising."""
        assert not await TcpProbe(timeout=0.5)('no-port-here')
