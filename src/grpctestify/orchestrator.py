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

"""Test orchestrator: runs test files through the pipeline, many at once.

Per test file (``run_one``)::

    parse ─► resolve address ─► TCP probe ─► execute with retry ─► validate ─► outcome
             (file, else         (skipped with
              configured)         --no-retry / --dry-run)

Validation picks exactly one branch, by priority::

    ERROR  >  ASSERTS  >  RESPONSE (+ ASSERTS when with_asserts)  >  none

Batch model (``run_many``)::

    ┌─────────────┐     ┌──────────────┐     ┌──────────────────────────────┐
    │ test files  │ ──► │ WorkerPool   │ ──► │ run_one(path) ─► outcome     │
    │ (submission │     │ (K slots,    │     │ failures ─► FailureLog       │
    │  order)     │     │  semaphore)  │     │ on_complete(outcome)         │
    └─────────────┘     └──────────────┘     └──────────────────────────────┘

A test holds one slot from parse to validate and ``async with`` returns
it on every exit path.  Outcomes and failures are reported in submission
order no matter which test finishes first.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from grpctestify.assertions import AssertionEvaluator
from grpctestify.comparator import Comparator, render_diff
from grpctestify.config import GrpcTestifyConfig
from grpctestify.errors import (
    AssertionFailure,
    ClientNotFoundError,
    ComparisonMismatch,
    ConfigError,
    DefinitionIOError,
    E,
    InsufficientMessages,
    RpcApplicationError,
    TransientNetworkError,
    ValidationError,
)
from grpctestify.executor import CallResult, Executor
from grpctestify.logging import get_logger
from grpctestify.parser import DefinitionCache, Parser
from grpctestify.probe import Probe, TcpProbe
from grpctestify.retry import RetryCoordinator, RetryPolicy, Sleep
from grpctestify.status import extract_error, match_error
from grpctestify.types import ExecutionOutcome, Status, TestDefinition
from grpctestify.verbs import ResponseView, VerbRegistry

log = get_logger('grpctestify.orchestrator')

TEST_SUFFIX = '.gctf'


class WorkerPool:
    """Bounded execution slots backed by an :class:`asyncio.Semaphore`."""

    def __init__(self, size: int) -> None:
        """Create a pool with *size* slots."""
        if size < 1:
            raise ValueError(f'pool size must be positive, got {size}')
        self.size = size
        self._semaphore = asyncio.Semaphore(size)
        self._in_use = 0

    @property
    def available(self) -> int:
        """Slots not currently held."""
        return self.size - self._in_use

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one slot for the duration of the ``async with`` block."""
        await self._semaphore.acquire()
        self._in_use += 1
        try:
            yield
        finally:
            self._in_use -= 1
            self._semaphore.release()


@dataclass(frozen=True)
class Failure:
    """One entry of the end-of-batch failure log."""

    index: int
    outcome: ExecutionOutcome


class FailureLog:
    """Failures collected during a batch, rendered once at the end."""

    def __init__(self) -> None:
        """Create an empty log."""
        self._entries: list[Failure] = []

    def add(self, index: int, outcome: ExecutionOutcome) -> None:
        """Record the failed *outcome* of submission number *index*."""
        self._entries.append(Failure(index, outcome))

    def ordered(self) -> list[ExecutionOutcome]:
        """Failures in submission order."""
        return [f.outcome for f in sorted(self._entries, key=lambda f: f.index)]

    def __len__(self) -> int:
        """Number of failures."""
        return len(self._entries)


@dataclass
class BatchResult:
    """Everything a batch produced.

    Attributes:
        outcomes: One outcome per test that ran, in submission order.
        skipped: Tests never started because of fail-fast.
        failures: The ordered failure log.
        elapsed_ms: Wall-clock duration of the batch.
    """

    outcomes: list[ExecutionOutcome] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: FailureLog = field(default_factory=FailureLog)
    elapsed_ms: float = 0.0

    def count(self, status: Status) -> int:
        """Number of outcomes with *status*."""
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def ok(self) -> bool:
        """Whether every test that ran passed."""
        return all(o.ok for o in self.outcomes)


def collect_tests(paths: Sequence[Path], sort: str = 'path', *, seed: int | None = None) -> list[Path]:
    """Expand files and directories into an ordered list of test files.

    Directories are searched recursively for ``*.gctf``.  Files named
    explicitly are kept whatever their suffix.

    Raises:
        ConfigError: If a path does not exist or nothing was found.
    """
    found: dict[Path, None] = {}
    for path in paths:
        if path.is_dir():
            for child in path.rglob(f'*{TEST_SUFFIX}'):
                if child.is_file():
                    found[child] = None
        elif path.is_file():
            found[path] = None
        else:
            raise ConfigError(f'no such file or directory: {path}', code=E.NO_TESTS_FOUND)
    if not found:
        raise ConfigError(f'no {TEST_SUFFIX} files found', code=E.NO_TESTS_FOUND)

    tests = list(found)
    if sort == 'name':
        tests.sort(key=lambda p: (p.name, str(p)))
    elif sort == 'mtime':
        tests.sort(key=lambda p: (p.stat().st_mtime_ns, str(p)))
    elif sort == 'random':
        tests.sort(key=str)
        random.Random(seed).shuffle(tests)
    else:
        tests.sort(key=str)
    return tests


class Orchestrator:
    """Runs test files end to end.

    Every collaborator is injected; the defaults are built from *config*.

    Args:
        config: Resolved configuration.
        registry: Verb registry for ASSERTS.
        cache: Parsed-definition cache.
        executor: Call executor.
        probe: Liveness probe, ``async (address) -> bool``.
        retry: Retry coordinator.
        sleep: Backoff sleep, used when *retry* is not given.
    """

    def __init__(
        self,
        config: GrpcTestifyConfig,
        *,
        registry: VerbRegistry,
        cache: DefinitionCache | None = None,
        executor: Executor | None = None,
        probe: Probe | None = None,
        retry: RetryCoordinator | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        """Wire the pipeline."""
        self.config = config
        self.parser = Parser(cache)
        self.executor = executor or Executor(
            grpcurl=config.grpcurl,
            timeout=config.timeout,
            dry_run_outcome=config.dry_run_outcome,
        )
        self.probe: Probe = probe or TcpProbe(config.probe_timeout)
        self.retry = retry or RetryCoordinator(RetryPolicy.from_config(config), sleep=sleep)
        self.comparator = Comparator()
        self.evaluator = AssertionEvaluator(registry)

    # -- single test --------------------------------------------------------

    async def run_one(self, path: Path) -> ExecutionOutcome:
        """Run one test file and classify the outcome.

        Taxonomy errors become outcomes; anything else propagates.
        """
        test_id = str(path)
        start = time.monotonic()

        def outcome(status: Status, detail: str = '', preview: str = '') -> ExecutionOutcome:
            duration = (time.monotonic() - start) * 1000
            log.debug('test_finished', test=test_id, status=status.value, duration_ms=round(duration, 1))
            return ExecutionOutcome(test_id, status, duration, detail, preview)

        try:
            definition = self.parser.parse(path)
        except (ValidationError, DefinitionIOError) as exc:
            return outcome(Status.ERROR, exc.message)

        address = definition.address or self.config.address
        if not (self.config.no_retry or self.config.dry_run):
            if not await self.probe(address):
                return outcome(Status.FAILED, f'service unavailable: nothing accepts connections at {address}')

        timeout = definition.options.timeout_s or self.config.timeout

        async def attempt() -> CallResult:
            return await self.executor.execute(definition, address, dry_run=self.config.dry_run, timeout=timeout)

        try:
            result = await self.retry.execute_with_retry(
                attempt,
                attempts=definition.options.retries,
                label=test_id,
            )
        except ClientNotFoundError as exc:
            return outcome(Status.ERROR, exc.message)
        except TransientNetworkError as exc:
            expected = definition.expected_error
            if expected is not None and match_error(expected, exc.last_output)[0]:
                return outcome(Status.PASSED)
            return outcome(Status.FAILED, f'{exc.message}\n\n{exc.last_output.strip()}'.strip())

        preview = result.command_preview if result.dry_run else ''
        try:
            self.validate(definition, result)
        except (RpcApplicationError, ComparisonMismatch, AssertionFailure, InsufficientMessages) as exc:
            if result.dry_run and self.config.dry_run_outcome == 'auto':
                # A simulated answer cannot satisfy every check; previews still pass.
                log.debug('dry_run_unverified', test=test_id, reason=exc.message.partition('\n')[0])
                return outcome(Status.PASSED, f'dry-run preview, not verified: {exc.message}', preview)
            return outcome(Status.FAILED, exc.message, preview)
        return outcome(Status.PASSED, '', preview)

    def validate(self, definition: TestDefinition, result: CallResult) -> None:
        """Pick the validation branch by priority and apply it.

        Raises:
            RpcApplicationError: Unexpected RPC failure, or an expected
                error that did not occur or did not match.
            ComparisonMismatch: RESPONSE did not match.
            AssertionFailure: An ASSERTS predicate failed.
            InsufficientMessages: More ASSERTS groups than messages.
        """
        expected_error = definition.expected_error
        if expected_error is not None:
            if result.ok and not result.error_payload_only:
                raise RpcApplicationError('expected error but request succeeded', output=result.output)
            matched, reason = match_error(expected_error, result.output)
            if not matched:
                raise RpcApplicationError(
                    f'error mismatch: {reason}\n\n{result.output.strip()}',
                    status_code=extract_error(result.output).code,
                    output=result.output,
                )
            return

        if not result.ok:
            payload = extract_error(result.output)
            code = f' (code {payload.code})' if payload.code is not None else ''
            raise RpcApplicationError(
                f'unexpected gRPC error{code}: {payload.message}',
                status_code=payload.code,
                output=result.output,
            )

        if definition.has_response:
            self._check_response(definition, result)
            if not definition.response_options.with_asserts:
                return

        if definition.assertions:
            self._check_assertions(definition, result)

    def _check_response(self, definition: TestDefinition, result: CallResult) -> None:
        expected = definition.expected_response
        if expected is None:
            return
        # A unary call compares against its one message; a stream against the list.
        actual: Any = result.messages[0] if len(result.messages) == 1 else list(result.messages)
        verdict = self.comparator.compare(expected, actual, definition.response_options)
        if not verdict:
            diff = render_diff(expected, actual)
            raise ComparisonMismatch(f'response mismatch: {verdict.reason}\n\n{diff}', expected=expected, actual=actual)

    def _check_assertions(self, definition: TestDefinition, result: CallResult) -> None:
        views = [
            ResponseView(
                message=message,
                headers=result.headers,
                trailers=result.trailers,
                index=i,
                duration_ms=result.duration_ms,
            )
            for i, message in enumerate(result.messages)
        ]
        groups = self.evaluator.evaluate_all(definition.assertions, views)
        failures = [f'group {g.group_index}: {r.describe()}' for g in groups for r in g.failures]
        if failures:
            raise AssertionFailure(
                f'{len(failures)} assertion(s) failed\n' + '\n'.join(failures),
                failures=failures,
            )

    # -- batch --------------------------------------------------------------

    async def run_many(
        self,
        paths: Sequence[Path],
        concurrency: int | None = None,
        *,
        on_complete: Callable[[ExecutionOutcome], None] | None = None,
        pool: WorkerPool | None = None,
    ) -> BatchResult:
        """Run *paths* concurrently with a bounded worker pool.

        Args:
            paths: Test files in submission order.
            concurrency: Pool size; defaults to the configured concurrency.
            on_complete: Called with each outcome as it finishes.
            pool: Pre-built pool, for inspection in tests.

        Returns:
            A :class:`BatchResult` in submission order.
        """
        workers = pool or WorkerPool(concurrency or self.config.concurrency)
        results: list[ExecutionOutcome | None] = [None] * len(paths)
        failures = FailureLog()
        stop = asyncio.Event()
        start = time.monotonic()

        async def run(index: int, path: Path) -> None:
            async with workers.slot():
                if stop.is_set():
                    return
                outcome = await self.run_one(path)
            results[index] = outcome
            if not outcome.ok:
                failures.add(index, outcome)
                if self.config.fail_fast:
                    stop.set()
            if on_complete is not None:
                on_complete(outcome)

        await asyncio.gather(*(run(i, p) for i, p in enumerate(paths)))

        batch = BatchResult(failures=failures, elapsed_ms=(time.monotonic() - start) * 1000)
        for path, result in zip(paths, results):
            if result is None:
                batch.skipped.append(str(path))
            else:
                batch.outcomes.append(result)
        log.info(
            'batch_finished',
            total=len(paths),
            passed=batch.count(Status.PASSED),
            failed=batch.count(Status.FAILED),
            errors=batch.count(Status.ERROR),
            skipped=len(batch.skipped),
        )
        return batch


__all__ = [
    'BatchResult',
    'Failure',
    'FailureLog',
    'Orchestrator',
    'WorkerPool',
    'collect_tests',
]
