"""
core/timeouts.py -- Bounded waits for blocking calls made from async handlers.

Stores (SQLAlchemy Core over a sync driver), bcrypt, and SMTP all block. Route
handlers are async, so each such call is pushed to Starlette's threadpool and
awaited under asyncio.wait_for. A call that exceeds the budget fails the
request with DependencyError; the worker thread is left to finish on its own
and the process keeps serving other requests.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/,
inventory/, or notify/.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from core.config import get_settings
from core.errors import CarLotError, DependencyError

logger = logging.getLogger("carlot.timeouts")

T = TypeVar("T")


async def call_with_timeout(
    func: Callable[..., T],
    *args: Any,
    timeout: float | None = None,
    what: str = "store",
    **kwargs: Any,
) -> T:
    """Run a blocking callable in the threadpool with an upper time bound.

    Args:
        func:    The blocking callable.
        timeout: Seconds to wait. Defaults to Settings.store_timeout_seconds.
        what:    Short label for log lines ("store", "mail", "hash").

    Raises:
        DependencyError: On timeout, on any SQLAlchemyError, or on OSError
            (SMTP and socket failures). CarLotError subclasses raised by func
            propagate unchanged so domain errors keep their meaning.
    """
    budget = timeout if timeout is not None else get_settings().store_timeout_seconds
    call = functools.partial(func, *args, **kwargs)
    try:
        return await asyncio.wait_for(run_in_threadpool(call), timeout=budget)
    except asyncio.TimeoutError as exc:
        logger.error("%s call %s timed out after %.1fs", what, getattr(func, "__name__", func), budget)
        raise DependencyError(f"The {what} did not respond in time.") from exc
    except CarLotError:
        raise
    except (SQLAlchemyError, OSError) as exc:
        logger.exception("%s call %s failed", what, getattr(func, "__name__", func))
        raise DependencyError() from exc
