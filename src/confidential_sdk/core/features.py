"""
Capability detection for the on-chain proof-verification program.

A feature gate is activated when its feature account exists on the ledger.
Statuses are cached per feature id (5-minute TTL, at most 100 entries,
oldest evicted first); failed queries are cached as inactive with the error
message so a flaky endpoint is not hammered. Concurrent lookups for the same
id share one in-flight query.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable

from confidential_sdk.config import ConfidentialConfig
from confidential_sdk.core.ledger import LedgerQuery
from confidential_sdk.core.models import FeatureStatus

logger = logging.getLogger("confidential_sdk.features")

DEFAULT_CACHE_TTL = 300.0
DEFAULT_CACHE_SIZE = 100
DEFAULT_MONITOR_INTERVAL = 30.0

Clock = Callable[[], float]
FeatureCallback = Callable[[FeatureStatus], Awaitable[None] | None]


def parse_activation_slot(data: bytes | None) -> int | None:
    """
    Extract the activation slot from feature account data.

    The account holds an optional u64: a 0x01 tag followed by the slot
    (little-endian), or 0x00 while activation is pending.
    """
    if data and len(data) >= 9 and data[0] == 1:
        return int.from_bytes(data[1:9], "little")
    return None


class FeatureStatusCache:
    """
    TTL cache of feature statuses with insertion-order eviction.

    Args:
        ttl:         seconds an entry stays fresh (0 disables caching)
        max_entries: entries kept before the oldest is evicted
        clock:       time source in seconds, injectable for tests
    """

    def __init__(
        self,
        ttl: float = DEFAULT_CACHE_TTL,
        max_entries: int = DEFAULT_CACHE_SIZE,
        clock: Clock = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self.clock = clock
        self._entries: OrderedDict[str, FeatureStatus] = OrderedDict()

    def get(self, feature_id: str) -> FeatureStatus | None:
        """Return the fresh status for `feature_id`, dropping it if expired."""
        status = self._entries.get(feature_id)
        if status is None:
            return None
        if self.clock() - status.last_checked >= self.ttl:
            del self._entries[feature_id]
            return None
        return status

    def put(self, feature_id: str, status: FeatureStatus) -> None:
        self._entries.pop(feature_id, None)
        self._entries[feature_id] = status
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted feature status for {evicted}")

    def invalidate(self, feature_id: str) -> None:
        self._entries.pop(feature_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, feature_id: object) -> bool:
        return feature_id in self._entries


class FeatureGateDetector:
    """
    Determines whether ledger features are active, with caching.

    Statuses are stamped with the cache's clock. Pass `clock` only when the
    detector builds its own cache; a supplied cache brings its own clock.

    Usage:
        async with LedgerClient(rpc_url) as ledger:
            detector = FeatureGateDetector(ledger)
            status = await detector.check_feature_gate(feature_id)

    Raises:
        ValueError: both `cache` and `clock` are given.
    """

    def __init__(
        self,
        ledger: LedgerQuery,
        cache: FeatureStatusCache | None = None,
        clock: Clock | None = None,
    ) -> None:
        if cache is not None and clock is not None:
            raise ValueError("Pass clock to the FeatureStatusCache, not alongside it")
        self._ledger = ledger
        self.cache = cache if cache is not None else FeatureStatusCache(clock=clock if clock is not None else time.time)
        self._inflight: dict[str, asyncio.Future[FeatureStatus]] = {}

    @classmethod
    def from_config(cls, ledger: LedgerQuery, config: ConfidentialConfig) -> FeatureGateDetector:
        cache = FeatureStatusCache(
            ttl=config.feature_cache_ttl, max_entries=config.feature_cache_size
        )
        return cls(ledger, cache)

    async def check_feature_gate(self, feature_id: str) -> FeatureStatus:
        """
        Return the activation status of `feature_id`.

        Never raises for ledger failures: the error is reported in
        `FeatureStatus.error` (with activated=False) and cached for the TTL.
        """
        cached = self.cache.get(feature_id)
        if cached is not None:
            logger.debug(f"Feature status cache hit for {feature_id}")
            return cached

        pending = self._inflight.get(feature_id)
        if pending is None:
            pending = asyncio.ensure_future(self._query(feature_id))
            self._inflight[feature_id] = pending
            pending.add_done_callback(
                lambda fut, fid=feature_id: self._forget(fid, fut)
            )
        return await asyncio.shield(pending)

    async def is_feature_active(self, feature_id: str) -> bool:
        status = await self.check_feature_gate(feature_id)
        return status.activated

    def monitor_feature_gate(
        self,
        feature_id: str,
        callback: FeatureCallback,
        interval: float = DEFAULT_MONITOR_INTERVAL,
    ) -> FeatureMonitor:
        """
        Poll `feature_id` every `interval` seconds on the running event loop.

        The callback (sync or async) receives the first observed status and
        afterwards only statuses whose activation state changed.

        Returns:
            FeatureMonitor; call it (or its cancel()) to stop polling.
        """
        return FeatureMonitor(self, feature_id, callback, interval)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _forget(self, feature_id: str, fut: asyncio.Future[FeatureStatus]) -> None:
        if self._inflight.get(feature_id) is fut:
            del self._inflight[feature_id]

    async def _query(self, feature_id: str) -> FeatureStatus:
        checked_at = self.cache.clock()
        try:
            data = await self._ledger.fetch_account(feature_id)
        except Exception as e:
            logger.warning(f"Feature gate query for {feature_id} failed: {e}")
            status = FeatureStatus(
                activated=False,
                last_checked=checked_at,
                error=str(e) or type(e).__name__,
            )
        else:
            status = FeatureStatus(
                activated=data is not None,
                last_checked=checked_at,
                activation_slot=parse_activation_slot(data),
            )
            logger.info(
                f"Feature {feature_id} is {'active' if status.activated else 'inactive'}"
            )
        self.cache.put(feature_id, status)
        return status


class FeatureMonitor:
    """
    Handle for a running feature-gate poll loop.

    cancel() is idempotent. A callback already running when cancel() is
    called completes normally; the loop is never re-armed afterwards.
    """

    def __init__(
        self,
        detector: FeatureGateDetector,
        feature_id: str,
        callback: FeatureCallback,
        interval: float,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.feature_id = feature_id
        self.interval = interval
        self.last_status: FeatureStatus | None = None
        self._detector = detector
        self._callback = callback
        self._cancelled = False
        self._in_callback = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if not self._in_callback and not self._task.done():
            self._task.cancel()
        logger.debug(f"Stopped monitoring feature {self.feature_id}")

    def __call__(self) -> None:
        self.cancel()

    async def wait(self) -> None:
        """Wait until the poll loop has exited."""
        await asyncio.wait([self._task])

    async def _run(self) -> None:
        last_activated: bool | None = None
        while not self._cancelled:
            status = await self._detector.check_feature_gate(self.feature_id)
            if self._cancelled:
                break
            self.last_status = status
            if last_activated is None or status.activated != last_activated:
                last_activated = status.activated
                self._in_callback = True
                try:
                    result = self._callback(status)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.warning(f"Feature monitor callback for {self.feature_id} raised: {e}")
                finally:
                    self._in_callback = False
            if self._cancelled:
                break
            await asyncio.sleep(self.interval)
