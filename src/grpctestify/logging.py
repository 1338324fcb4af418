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

"""Structured logging for grpctestify.

Every module logs through structlog.  Two renderers are available:

- **Console** (default): human-readable, colored when stderr is a TTY.
- **JSON** (``--json-log``): one JSON object per line, for CI log shipping.

Both modes write to stderr so stdout stays clean for ``--log-format json``
reports piped to other tools.  Request header values that look like
credentials are masked by :func:`redact_secrets_processor` before any
renderer sees them.

Usage::

    from grpctestify.logging import configure_logging, get_logger

    configure_logging(verbose=args.verbose, json_log=args.json_log)
    log = get_logger('grpctestify.executor')
    log.debug('run_command', cmd='grpcurl -plaintext ...', dry_run=False)
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import MutableMapping
from typing import Any, Final

import structlog

# Header names whose values are masked in log events.
SECRET_HEADERS: Final[frozenset[str]] = frozenset({
    'authorization',
    'proxy-authorization',
    'cookie',
    'x-api-key',
    'api-key',
})

_MASK: Final[str] = '***'

# "name: value" header text embedded in strings such as rendered commands.
_SECRET_HEADER_RE = re.compile(
    r'(?i)\b(' + '|'.join(re.escape(h) for h in sorted(SECRET_HEADERS)) + r')\s*:\s*[^\'"\n]*',
)


def mask_header(name: str, value: str) -> str:
    """Return *value*, or a mask if *name* is a credential-bearing header."""
    if name.strip().lower() in SECRET_HEADERS:
        return _MASK
    return value


def _redact(obj: Any) -> Any:  # noqa: ANN401 - log values are arbitrary
    if isinstance(obj, dict):
        return {
            k: mask_header(k, v) if isinstance(k, str) and isinstance(v, str) else _redact(v) for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return type(obj)(_redact(item) for item in obj)
    if isinstance(obj, str):
        return _SECRET_HEADER_RE.sub(lambda m: f'{m.group(1)}: {_MASK}', obj)
    return obj


def redact_secrets_processor(
    logger: object,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Structlog processor that masks credential header values in all event values."""
    return {k: _redact(v) for k, v in event_dict.items()}


def configure_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    json_log: bool = False,
) -> None:
    """Route stdlib logging and structlog through one stderr handler.

    Call once from the CLI before the first event is logged.  *quiet* wins
    over *verbose*: warnings only.  *verbose* adds debug events such as the
    rendered grpcurl command line.  *json_log* switches to one JSON object
    per line.
    """
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        format='%(message)s',
        stream=sys.stderr,
        level=level,
        force=True,
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt='iso'),
        redact_secrets_processor,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_log:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    for handler in logging.root.handlers:
        handler.setFormatter(formatter)


def get_logger(name: str = 'grpctestify') -> structlog.stdlib.BoundLogger:
    """Logger named after the calling module, e.g. ``grpctestify.retry``."""
    return structlog.get_logger(name)


__all__ = [
    'SECRET_HEADERS',
    'configure_logging',
    'get_logger',
    'mask_header',
    'redact_secrets_processor',
]
