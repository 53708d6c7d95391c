import asyncio
from typing import Dict, Protocol

import structlog

logger = structlog.get_logger(__name__)


class Sweepable(Protocol):
    def sweep(self) -> int: ...


def sweep_all(stores: Dict[str, Sweepable]) -> Dict[str, int]:
    """Run one sweep over every store and return evictions per store name."""
    evicted = {}
    for name, store in stores.items():
        try:
            evicted[name] = store.sweep()
        except Exception as e:
            logger.error("sweep_failed", store=name, error=str(e))
            evicted[name] = 0
    return evicted


async def run_sweeper(stores: Dict[str, Sweepable], interval_s: float) -> None:
    """Sweep expired entries every ``interval_s`` seconds until cancelled."""
    logger.info("sweeper_started", interval_s=interval_s, stores=sorted(stores))
    while True:
        await asyncio.sleep(interval_s)
        evicted = sweep_all(stores)
        if any(evicted.values()):
            logger.info("sweep_completed", **evicted)
