"""
Scan session: owns the scanner state for one process.

Holds the latest opportunity snapshot, a bounded scan log and the scan
counter, and runs periodic rescans. Starting a new scan cancels the one in
flight, so a stale scan can never overwrite a newer snapshot.
"""
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

from .arbitrage_finder import ArbitrageFinder, ArbitrageOpportunity
from .jupiter_client import JupiterClient
from .utils import format_route, get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

DEFAULT_SCAN_INTERVAL_SECONDS = 20.0


@dataclass(frozen=True)
class ScanRecord:
    """One completed (or failed) scan pass."""
    scan_id: int
    started_at: float
    finished_at: float
    opportunities_found: int
    error: Optional[str] = None


class ScanSession:
    """Process-scoped scanner state with explicit construction and teardown."""

    def __init__(
        self,
        jupiter_client: JupiterClient,
        finder: ArbitrageFinder,
        scan_interval: float = DEFAULT_SCAN_INTERVAL_SECONDS,
        log_size: int = 100
    ):
        self.jupiter = jupiter_client
        self.finder = finder
        self.scan_interval = scan_interval
        self.opportunities: List[ArbitrageOpportunity] = []
        self.last_scan_at: Optional[float] = None
        self.scan_log: Deque[ScanRecord] = deque(maxlen=log_size)
        self.scan_count = 0
        self._scan_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._closed = False

    async def __aenter__(self) -> "ScanSession":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _scan(self, scan_id: int) -> List[ArbitrageOpportunity]:
        started_at = time.time()
        try:
            opportunities = await self.finder.find_opportunities()
        except asyncio.CancelledError:
            logger.debug(f"Scan #{scan_id} superseded")
            raise
        except Exception as e:
            self.scan_log.append(ScanRecord(scan_id, started_at, time.time(), 0, error=str(e)))
            logger.error(f"Scan #{scan_id} failed: {e}")
            raise

        self.opportunities = opportunities
        self.last_scan_at = time.time()
        self.scan_log.append(ScanRecord(scan_id, started_at, self.last_scan_at, len(opportunities)))

        if opportunities:
            logger.info(f"Scan #{scan_id}: {colors['GREEN']}{len(opportunities)}{colors['RESET']} opportunities")
            for opp in opportunities:
                logger.info(
                    f"  {colors['CYAN']}{format_route(opp.cycle)}{colors['RESET']} "
                    f"({' / '.join(step.dex.value for step in opp.path)}) | "
                    f"{colors['YELLOW']}{opp.profit_percentage:.3f}% (${opp.estimated_profit:.2f}){colors['RESET']}"
                    + (" [fallback price]" if opp.price_fallback_used else "")
                )
        else:
            logger.info(f"{colors['DIM']}Scan #{scan_id}: no profitable opportunities{colors['RESET']}")
        return opportunities

    async def scan(self) -> Optional[List[ArbitrageOpportunity]]:
        """
        Run one scan pass, cancelling any scan still in flight.

        Returns:
            The new opportunity snapshot (also stored on the session), or None
            if a newer scan superseded this one before it finished
        """
        if self._closed:
            raise RuntimeError("Scan session is closed")

        if self._scan_task is not None and not self._scan_task.done():
            self._scan_task.cancel()

        self.scan_count += 1
        task = asyncio.ensure_future(self._scan(self.scan_count))
        self._scan_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._scan_task is not task and task.cancelled():
                return None
            raise
        finally:
            if self._scan_task is task:
                self._scan_task = None

    refresh = scan

    async def run(self, max_scans: Optional[int] = None):
        """Rescan every `scan_interval` seconds until stop() or `max_scans`."""
        self._stop_event.clear()
        completed = 0
        while not self._stop_event.is_set():
            try:
                await self.scan()
            except Exception as e:
                logger.warning(f"Scan loop continuing after error: {e}")

            completed += 1
            if max_scans is not None and completed >= max_scans:
                break

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.scan_interval)
            except asyncio.TimeoutError:
                pass

    def stop(self):
        """Stop the periodic loop after the current pass."""
        self._stop_event.set()

    async def close(self):
        """Cancel any scan in flight and release the HTTP client."""
        if self._closed:
            return
        self._closed = True
        self.stop()
        if self._scan_task is not None and not self._scan_task.done():
            self._scan_task.cancel()
            try:
                await self._scan_task
            except asyncio.CancelledError:
                pass
        await self.jupiter.close()
        logger.info(f"{colors['DIM']}Scan session closed after {self.scan_count} scans{colors['RESET']}")
