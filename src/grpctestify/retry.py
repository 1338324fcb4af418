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

"""Retry coordinator: bounded retries with exponential backoff.

Only transient network failures are retried.  An RPC that reached the
service and failed with an application status is final, and so is a
successful call::

    ATTEMPT ──► SUCCESS         (exit 0)                       terminal
            ──► NON_RETRYABLE   (any other failure)            terminal
            ──► RETRYABLE       (transient vocabulary matched) ──► sleep ──► ATTEMPT

The delay before retry *i* (0-based) is ``initial_delay_ms * multiplier**i``.
When the last attempt is still transient, :class:`TransientNetworkError`
is raised carrying that attempt's output.
"""

from __future__ import annotations

import asyncio
import enum
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from grpctestify.config import GrpcTestifyConfig
from grpctestify.errors import TransientNetworkError
from grpctestify.executor import CallResult
from grpctestify.logging import get_logger

log = get_logger('grpctestify.retry')

# Failure text that marks a call as transient (case-insensitive).
TRANSIENT_PATTERNS: tuple[str, ...] = (
    r'connection refused',
    r'connection reset',
    r'time(?:d)?\s?out',
    r'unavailable',
    r'deadline exceeded',
    r'deadline_exceeded',
    r'network is unreachable',
    r'no route to host',
)
_TRANSIENT_RE = re.compile('|'.join(TRANSIENT_PATTERNS), re.IGNORECASE)

Sleep = Callable[[float], Awaitable[None]]


class AttemptState(enum.Enum):
    """Classification of one attempt."""

    SUCCESS = 'success'
    NON_RETRYABLE = 'non_retryable'
    RETRYABLE = 'retryable'


def classify(result: CallResult) -> AttemptState:
    """Classify *result* by exit code and the transient vocabulary."""
    if result.ok:
        return AttemptState.SUCCESS
    if _TRANSIENT_RE.search(result.output):
        return AttemptState.RETRYABLE
    return AttemptState.NON_RETRYABLE


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between.

    Built once from configuration and shared by every test.
    """

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    backoff_multiplier: float = 2.0
    classifier: Callable[[CallResult], AttemptState] = classify
    enabled: bool = True

    @classmethod
    def disabled(cls) -> RetryPolicy:
        """A policy that makes exactly one attempt."""
        return cls(max_attempts=1, enabled=False)

    @classmethod
    def from_config(cls, config: GrpcTestifyConfig) -> RetryPolicy:
        """Build the policy from resolved configuration."""
        if config.no_retry:
            return cls.disabled()
        return cls(
            max_attempts=config.max_attempts,
            initial_delay_ms=config.retry_delay_ms,
            backoff_multiplier=config.retry_multiplier,
        )

    def with_attempts(self, attempts: int | None) -> RetryPolicy:
        """Per-test override of the attempt count; ignored when disabled."""
        if attempts is None or not self.enabled:
            return self
        return RetryPolicy(
            max_attempts=max(1, attempts),
            initial_delay_ms=self.initial_delay_ms,
            backoff_multiplier=self.backoff_multiplier,
            classifier=self.classifier,
        )

    def delay_ms(self, retry_index: int) -> float:
        """Delay before retry number *retry_index* (0-based)."""
        return self.initial_delay_ms * self.backoff_multiplier**retry_index


class RetryCoordinator:
    """Wraps a call with the retry policy.

    Args:
        policy: The shared retry policy.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(self, policy: RetryPolicy, *, sleep: Sleep | None = None) -> None:
        """Initialize with a policy and an optional sleep function."""
        self.policy = policy
        self._sleep = sleep or asyncio.sleep

    async def execute_with_retry(
        self,
        call: Callable[[], Awaitable[CallResult]],
        *,
        attempts: int | None = None,
        label: str = '',
    ) -> CallResult:
        """Run *call* until it succeeds, fails for good, or attempts run out.

        Args:
            call: Zero-argument coroutine factory performing one attempt.
            attempts: Per-test override of ``max_attempts``.
            label: Test identifier for log events.

        Returns:
            The first SUCCESS or NON_RETRYABLE result.

        Raises:
            TransientNetworkError: If every attempt was transient.
        """
        policy = self.policy.with_attempts(attempts)
        result: CallResult | None = None
        for attempt in range(policy.max_attempts):
            result = await call()
            state = policy.classifier(result)
            if state != AttemptState.RETRYABLE:
                return result
            if attempt + 1 < policy.max_attempts:
                delay = policy.delay_ms(attempt)
                log.warning(
                    'call_retry',
                    test=label,
                    attempt=attempt + 1,
                    max_attempts=policy.max_attempts,
                    delay_ms=delay,
                    error=result.output.strip()[:200],
                )
                await self._sleep(delay / 1000)

        output = result.output if result is not None else ''
        raise TransientNetworkError(
            f'transient network error after {policy.max_attempts} attempt(s): {output.strip()[:200]}',
            attempts=policy.max_attempts,
            last_output=output,
        )


__all__ = [
    'TRANSIENT_PATTERNS',
    'AttemptState',
    'RetryCoordinator',
    'RetryPolicy',
    'classify',
]
