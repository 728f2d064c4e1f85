"""Logging helpers shared by every awsacme module.

The package logs through the standard library under the ``awsacme``
namespace and stays silent until the application configures handlers.
Context is passed as ``extra={}`` fields rather than formatted into the
message, so handlers with structured formatters can pick it up.
"""

import logging
import time
from contextvars import ContextVar, Token

logging.getLogger("awsacme").addHandler(logging.NullHandler())

_domain: ContextVar[str | None] = ContextVar("awsacme_domain", default=None)


def set_domain(domain: str | None) -> Token[str | None]:
    """Mark ``domain`` as the subject of the running workflow.

    Returns:
        Token to pass to reset_domain() when the workflow ends.
    """
    return _domain.set(domain)


def reset_domain(token: Token[str | None]) -> None:
    _domain.reset(token)


def get_domain_extra() -> dict[str, str]:
    """Return ``{"domain": ...}`` for log extras, or {} outside a workflow."""
    domain = _domain.get()
    return {} if domain is None else {"domain": domain}


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class Timer:
    """Measure wall time of a block in milliseconds.

    ``elapsed_ms`` stays 0 until the block exits.
    """

    def __init__(self) -> None:
        self.elapsed_ms: float = 0
        self._start: float = 0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000
