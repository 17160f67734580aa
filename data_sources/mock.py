"""
Mock Data Source - Load surge simulator.

============================================================
PURPOSE
============================================================
Generates realistic-looking telemetry without a network
connection: steady background load punctuated by surges.

SURGE CYCLE:
- NORMAL:        100 TPS for 10-20 s (random)
- RAMPING_UP:    15 s, cubic easing up to 70 000 TPS
- HIGH:          held for 20 s
- RAMPING_DOWN:  5 s, quadratic easing back to normal

Total TPS is spread randomly across 100 para ids, none above
3 200 TPS. Busy chains produce blocks faster (2/3/6 s), idle
chains fall back to their own 6-12 s block time.

============================================================
"""

import asyncio
import logging
import random
from enum import Enum
from typing import Any, Dict, List, Optional

from aggregation import Aggregator
from core.clock import ClockProtocol, SystemClock

from .base import DataSource


logger = logging.getLogger(__name__)


class SurgePhase(Enum):
    """Surge simulator phases."""

    NORMAL = "NORMAL"
    RAMPING_UP = "RAMPING_UP"
    HIGH = "HIGH"
    RAMPING_DOWN = "RAMPING_DOWN"


# ============================================================
# SIMULATION CONSTANTS
# ============================================================

NORMAL_TPS = 100.0
HIGH_TPS = 70_000.0
RAMP_UP_MS = 15_000
HIGH_DURATION_MS = 20_000
RAMP_DOWN_MS = 5_000
MIN_GAP_MS = 10_000
MAX_GAP_MS = 20_000
PARA_COUNT = 100
MAX_PARA_TPS = 3_200.0


class MockDataSource(DataSource):
    """
    Surge simulator emitting one update per para id per tick.

    Randomness comes from a private random.Random so runs can be
    reproduced with a seed; time comes from the injected clock.
    """

    def __init__(
        self,
        aggregator: Aggregator,
        clock: Optional[ClockProtocol] = None,
        seed: Optional[int] = None,
        tick_seconds: float = 1.0,
        relay: str = "Kusama",
        name: str = "mock",
    ) -> None:
        super().__init__(aggregator, name)
        self._clock = clock or SystemClock()
        self._rng = random.Random(seed)
        self._tick_seconds = tick_seconds
        self._relay = relay
        self._para_ids = list(range(1, PARA_COUNT + 1))

        self._phase = SurgePhase.NORMAL
        self._phase_started_ms = 0
        self._next_surge_ms: Optional[int] = None
        self._current_tps = NORMAL_TPS

        # para_id -> [initial, current] block time in seconds
        self._block_times: Dict[int, List[float]] = {}
        self._task: Optional[asyncio.Task] = None

    @property
    def phase(self) -> SurgePhase:
        return self._phase

    @property
    def current_tps(self) -> float:
        """Total TPS the simulator is currently producing."""
        return self._current_tps

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """Start emitting updates every tick."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"[{self.name}] Mock source started (tick={self._tick_seconds}s)")

    async def stop(self) -> None:
        """Stop emitting. Safe to call repeatedly."""
        if not self._running and self._task is None:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"[{self.name}] Mock source stopped")

    async def _run(self) -> None:
        while self._running:
            for payload in self.generate_updates():
                self._deliver(payload)
            await asyncio.sleep(self._tick_seconds)

    # --------------------------------------------------------
    # GENERATION
    # --------------------------------------------------------

    def generate_updates(self, now_ms: Optional[int] = None) -> List[Dict[str, Any]]:
        """Advance the surge cycle to now and build one raw update per para id."""
        if now_ms is None:
            now_ms = self._clock.now_ms()

        self._advance(now_ms)
        para_tps = self._distribute(self._current_tps)

        updates = []
        for para_id in self._para_ids:
            tps = para_tps.get(para_id, 0.0)
            block_time = self._block_time_for(para_id, tps)
            updates.append({
                "relay": self._relay,
                "para_id": para_id,
                "block_number": self._rng.randrange(1_000_000),
                "extrinsics_num": round(tps * block_time),
                "block_time_seconds": block_time,
                "timestamp": now_ms,
                "total_proof_size": self._rng.random(),
            })
        return updates

    def _advance(self, now_ms: int) -> None:
        """Move the surge state machine forward; phases may chain within one call."""
        if self._next_surge_ms is None:
            self._next_surge_ms = now_ms

        if self._phase == SurgePhase.NORMAL and now_ms >= self._next_surge_ms:
            self._enter(SurgePhase.RAMPING_UP, now_ms)

        if self._phase == SurgePhase.RAMPING_UP:
            elapsed = now_ms - self._phase_started_ms
            if elapsed >= RAMP_UP_MS:
                self._enter(SurgePhase.HIGH, now_ms)
                self._current_tps = HIGH_TPS
            else:
                eased = (elapsed / RAMP_UP_MS) ** 3
                self._current_tps = NORMAL_TPS + eased * (HIGH_TPS - NORMAL_TPS)

        if self._phase == SurgePhase.HIGH:
            if now_ms - self._phase_started_ms >= HIGH_DURATION_MS:
                self._enter(SurgePhase.RAMPING_DOWN, now_ms)

        if self._phase == SurgePhase.RAMPING_DOWN:
            elapsed = now_ms - self._phase_started_ms
            if elapsed >= RAMP_DOWN_MS:
                self._enter(SurgePhase.NORMAL, now_ms)
                self._current_tps = NORMAL_TPS
                self._next_surge_ms = now_ms + int(MIN_GAP_MS + self._rng.random() * (MAX_GAP_MS - MIN_GAP_MS))
            else:
                eased = 1 - (1 - elapsed / RAMP_DOWN_MS) ** 2
                self._current_tps = HIGH_TPS - eased * (HIGH_TPS - NORMAL_TPS)

    def _enter(self, phase: SurgePhase, now_ms: int) -> None:
        logger.debug(f"[{self.name}] Surge phase {self._phase.value} -> {phase.value}")
        self._phase = phase
        self._phase_started_ms = now_ms

    def _distribute(self, total_tps: float) -> Dict[int, float]:
        """Split total TPS randomly across para ids, capping each one."""
        shuffled = list(self._para_ids)
        self._rng.shuffle(shuffled)

        allocation: Dict[int, float] = {}
        remaining = total_tps
        for para_id in shuffled:
            if remaining <= 0:
                allocation[para_id] = 0.0
                continue
            share = self._rng.random() * min(MAX_PARA_TPS, remaining)
            allocation[para_id] = share
            remaining -= share

        for para_id in shuffled:
            if remaining <= 0:
                break
            extra = min(MAX_PARA_TPS - allocation[para_id], remaining)
            allocation[para_id] += extra
            remaining -= extra

        return allocation

    def _block_time_for(self, para_id: int, tps: float) -> float:
        times = self._block_times.get(para_id)
        if times is None:
            initial = 6 + self._rng.random() * 6
            times = [initial, initial]
            self._block_times[para_id] = times

        if tps > 3000:
            block_time = 2.0
        elif tps > 2000:
            block_time = 3.0
        elif tps > 1000:
            block_time = 6.0
        else:
            block_time = times[0]

        times[1] = block_time
        return block_time
