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

"""Call executor: one RPC through the external ``grpcurl`` process.

Every call goes through :meth:`Executor.execute`, which provides:

- A deterministic argv (:func:`build_command`) from the definition.
- Request payloads on stdin, one compact JSON document per line.
- A hard timeout: the process is killed and the call reports exit 124.
- Dry-run support: the command is rendered, never started, and a
  simulated success or error is returned so validation still runs.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ build_command       │ Turns a test file into the exact grpcurl      │
    │                     │ command line, flags in a fixed order.          │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ CallResult          │ A receipt for the call: exit code, output,    │
    │                     │ decoded messages, headers and trailers.        │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Verbose mode (-v)   │ Only used when an assertion reads headers or  │
    │                     │ trailers; the output is then split in blocks.  │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ dry_run             │ Pretend mode. Shows the command and returns a │
    │                     │ fake answer. No network, no process.           │
    └─────────────────────┴────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import json
import shlex
import time
from dataclasses import dataclass, field
from typing import Any

from grpctestify.assertions import needs_metadata
from grpctestify.errors import ClientNotFoundError
from grpctestify.logging import get_logger, mask_header
from grpctestify.status import is_error_payload
from grpctestify.types import ProtoMode, TestDefinition, TlsMode

log = get_logger('grpctestify.executor')

# Exit code reported for a call killed on timeout, as timeout(1) does.
TIMEOUT_EXIT_CODE = 124

DRY_RUN_ERROR: dict[str, Any] = {
    'code': 999,
    'message': 'DRY-RUN: Simulated gRPC error',
    'details': [],
}

_HEADERS_MARKER = 'Response headers received:'
_TRAILERS_MARKER = 'Response trailers received:'
_CONTENTS_MARKER = 'Response contents:'


@dataclass(frozen=True)
class CallResult:
    """Result of one client invocation.

    Attributes:
        exit_code: Process exit code (0 = success, 124 = timeout).
        stdout: Captured standard output.
        stderr: Captured standard error.
        messages: Response messages decoded from stdout, in arrival order.
        headers: Response headers (verbose mode only), keys lower-cased.
        trailers: Response trailers (verbose mode only), keys lower-cased.
        duration_ms: Wall-clock duration of the call.
        dry_run: Whether the call was simulated.
        command_preview: Shell-style rendering of the call.
    """

    exit_code: int
    stdout: str = ''
    stderr: str = ''
    messages: tuple[Any, ...] = ()
    headers: dict[str, str] = field(default_factory=dict)
    trailers: dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0
    dry_run: bool = False
    command_preview: str = ''

    @property
    def ok(self) -> bool:
        """Whether the client exited successfully."""
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """stdout and stderr combined, for error matching."""
        return '\n'.join(part for part in (self.stdout, self.stderr) if part)

    @property
    def error_payload_only(self) -> bool:
        """Whether a successful call printed nothing but a status payload."""
        return len(self.messages) == 1 and is_error_payload(self.messages[0])


def _tls_flags(definition: TestDefinition) -> list[str]:
    tls = definition.tls
    flags: list[str] = []
    if tls.mode == TlsMode.PLAINTEXT:
        flags.append('-plaintext')
    elif tls.mode == TlsMode.INSECURE:
        flags.append('-insecure')
    else:
        if tls.insecure_skip_verify:
            flags.append('-insecure')
        elif tls.ca_cert:
            flags += ['-cacert', tls.ca_cert]
        if tls.cert:
            flags += ['-cert', tls.cert]
        if tls.key:
            flags += ['-key', tls.key]
        if tls.server_name:
            flags += ['-servername', tls.server_name]
    if tls.authority:
        flags += ['-authority', tls.authority]
    return flags


def _proto_flags(definition: TestDefinition) -> list[str]:
    proto = definition.proto
    flags: list[str] = []
    if proto.mode == ProtoMode.FILES:
        for path in proto.files:
            flags += ['-proto', path]
        for path in proto.import_paths:
            flags += ['-import-path', path]
    elif proto.mode == ProtoMode.DESCRIPTOR:
        flags += ['-protoset', proto.descriptor]
    return flags


def build_command(
    definition: TestDefinition,
    address: str,
    *,
    grpcurl: str = 'grpcurl',
    verbose: bool | None = None,
) -> list[str]:
    """Build the client argv for *definition* against *address*.

    Flag order: TLS, schema source, headers, ``-v``, ``-format-error``,
    ``-d @``, then address and endpoint.

    Args:
        definition: The parsed test.
        address: ``host:port`` to call.
        grpcurl: Client binary name or path.
        verbose: Force ``-v`` on or off; by default it is on only when an
            assertion reads headers or trailers.
    """
    if verbose is None:
        verbose = needs_metadata(definition.assertions)
    cmd = [grpcurl, *_tls_flags(definition), *_proto_flags(definition)]
    for name, value in definition.headers.items():
        cmd += ['-H', f'{name}: {value}']
    if verbose:
        cmd.append('-v')
    cmd.append('-format-error')
    if definition.requests:
        cmd += ['-d', '@']
    cmd += [address, definition.endpoint]
    return cmd


def encode_requests(definition: TestDefinition) -> str:
    """Request payload for stdin: one compact JSON document per line."""
    return '\n'.join(json.dumps(r, separators=(',', ':'), ensure_ascii=False) for r in definition.requests)


def render_preview(cmd: list[str], payload: str) -> str:
    """Shell-style ``echo '<payload>' | grpcurl ...`` rendering."""
    command = ' '.join(shlex.quote(part) for part in cmd)
    if not payload:
        return command
    return f'echo {shlex.quote(payload)} | {command}'


def _masked(cmd: list[str]) -> str:
    parts = []
    for i, part in enumerate(cmd):
        if i > 0 and cmd[i - 1] == '-H':
            name, _, value = part.partition(':')
            part = f'{name}: {mask_header(name, value.strip())}'
        parts.append(part)
    return ' '.join(parts)


def parse_messages(text: str) -> list[Any]:
    """Decode back-to-back JSON documents; stops at the first non-JSON text."""
    decoder = json.JSONDecoder()
    docs: list[Any] = []
    pos = 0
    while True:
        while pos < len(text) and text[pos].isspace():
            pos += 1
        if pos >= len(text):
            break
        try:
            doc, pos = decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            log.debug('non_json_output', tail=text[pos : pos + 120])
            break
        docs.append(doc)
    return docs


def _metadata_block(lines: list[str], start: int) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in lines[start:]:
        stripped = line.strip()
        if not stripped:
            break
        if stripped == '(empty)':
            continue
        name, sep, value = stripped.partition(':')
        if not sep:
            break
        values.setdefault(name.strip().lower(), value.strip())
    return values


def parse_verbose(text: str) -> tuple[list[Any], dict[str, str], dict[str, str]]:
    """Split ``-v`` output into (messages, headers, trailers)."""
    lines = text.splitlines()
    headers: dict[str, str] = {}
    trailers: dict[str, str] = {}
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped == _HEADERS_MARKER:
            headers.update(_metadata_block(lines, i + 1))
        elif stripped == _TRAILERS_MARKER:
            trailers.update(_metadata_block(lines, i + 1))

    decoder = json.JSONDecoder()
    messages: list[Any] = []
    pos = text.find(_CONTENTS_MARKER)
    while pos != -1:
        start = pos + len(_CONTENTS_MARKER)
        while start < len(text) and text[start].isspace():
            start += 1
        try:
            doc, end = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            end = start
        else:
            messages.append(doc)
        pos = text.find(_CONTENTS_MARKER, end)
    return messages, headers, trailers


class Executor:
    """Runs definitions through the external client.

    Args:
        grpcurl: Client binary name or path.
        timeout: Default per-call timeout in seconds.
        dry_run_outcome: ``auto`` (error only for tests with an ERROR
            section), ``success`` or ``error`` for simulated calls.
    """

    def __init__(self, *, grpcurl: str = 'grpcurl', timeout: float = 30.0, dry_run_outcome: str = 'auto') -> None:
        """Initialize with the client binary and defaults."""
        self.grpcurl = grpcurl
        self.timeout = timeout
        self.dry_run_outcome = dry_run_outcome

    def build_command(self, definition: TestDefinition, address: str) -> list[str]:
        """Argv for *definition*; see :func:`build_command`."""
        return build_command(definition, address, grpcurl=self.grpcurl)

    def _simulate(self, definition: TestDefinition, preview: str) -> CallResult:
        outcome = self.dry_run_outcome
        if outcome == 'auto':
            outcome = 'error' if definition.expected_error is not None else 'success'
        if outcome == 'error':
            body = json.dumps(DRY_RUN_ERROR)
            return CallResult(exit_code=1, stderr=body, dry_run=True, command_preview=preview)
        if definition.has_response and definition.expected_response is not None:
            message: Any = definition.expected_response
        else:
            message = {'dry_run': True, 'endpoint': definition.endpoint}
        return CallResult(
            exit_code=0,
            stdout=json.dumps(message),
            messages=(message,),
            dry_run=True,
            command_preview=preview,
        )

    async def execute(
        self,
        definition: TestDefinition,
        address: str,
        *,
        dry_run: bool = False,
        timeout: float | None = None,
    ) -> CallResult:
        """Run one call.

        Args:
            definition: The parsed test.
            address: ``host:port`` to call.
            dry_run: Render and simulate instead of running.
            timeout: Per-call timeout; defaults to the executor's.

        Returns:
            A :class:`CallResult`.  Non-zero exits are returned, not raised.

        Raises:
            ClientNotFoundError: If the client binary is missing or not executable.
        """
        cmd = self.build_command(definition, address)
        payload = encode_requests(definition)
        preview = render_preview(cmd, payload)
        verbose = '-v' in cmd
        limit = timeout if timeout is not None else self.timeout
        log.debug('run_command', cmd=_masked(cmd), dry_run=dry_run, timeout=limit)

        if dry_run:
            return self._simulate(definition, preview)

        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ClientNotFoundError(f'{self.grpcurl} not found in PATH') from exc
        except OSError as exc:
            raise ClientNotFoundError(f'{self.grpcurl} cannot be started: {exc.strerror or exc}') from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(payload.encode() if payload else b''),
                timeout=limit,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            duration = (time.monotonic() - start) * 1000
            log.warning('command_timeout', cmd=_masked(cmd), timeout=limit, duration=duration)
            return CallResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stderr=f'timeout: call exceeded {limit:g}s and was killed',
                duration_ms=duration,
                command_preview=preview,
            )

        duration = (time.monotonic() - start) * 1000
        stdout = stdout_bytes.decode(errors='replace')
        stderr = stderr_bytes.decode(errors='replace')
        exit_code = proc.returncode if proc.returncode is not None else -1

        if verbose:
            messages, headers, trailers = parse_verbose(stdout)
        else:
            messages, headers, trailers = parse_messages(stdout), {}, {}

        if exit_code != 0:
            log.debug('command_failed', exit_code=exit_code, stderr=stderr[:500], duration=duration)
        else:
            log.debug('command_ok', messages=len(messages), duration=duration)

        return CallResult(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            messages=tuple(messages),
            headers=headers,
            trailers=trailers,
            duration_ms=duration,
            command_preview=preview,
        )


__all__ = [
    'DRY_RUN_ERROR',
    'TIMEOUT_EXIT_CODE',
    'CallResult',
    'Executor',
    'build_command',
    'encode_requests',
    'parse_messages',
    'parse_verbose',
    'render_preview',
]
