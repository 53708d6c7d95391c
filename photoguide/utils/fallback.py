import time
from typing import Awaitable, Callable, Sequence, Tuple, TypeVar

import structlog

from photoguide.core.errors import UpstreamFailure, truncate

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Attempt = Tuple[str, Callable[[], Awaitable[T]]]


async def try_in_order(attempts: Sequence[Attempt], stage: str) -> T:
    """
    Run named attempts one after the other and return the first success.

    Each attempt is a ``(label, factory)`` pair; the factory is only called
    when its turn comes. If every attempt fails the last error is re-raised.
    """
    if not attempts:
        raise UpstreamFailure(f"{stage}: no providers configured", source=stage)

    last_error: Exception = UpstreamFailure(f"{stage}: all providers failed", source=stage)
    for index, (label, factory) in enumerate(attempts):
        started = time.perf_counter()
        try:
            return await factory()
        except Exception as e:
            last_error = e
            logger.warning(
                "provider_attempt_failed",
                stage=stage,
                provider=label,
                attempt=index + 1,
                elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
                error=truncate(e),
            )
    raise last_error
