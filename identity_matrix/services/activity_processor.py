"""
Activity batch processor

Activities are queued per visitor in memory and written to the durable
store by a recurring flush task. The flush swaps the whole queue map for
an empty one while holding the lock, so a push that lands during a flush
goes into the fresh map and is picked up by the next cycle. Snapshots whose
write fails are put back in front of anything queued since, giving
at-least-once delivery; the store ignores activity ids it already holds.
"""

import asyncio
import threading
from typing import Dict, List, Optional

import structlog

from identity_matrix.core.exceptions import NotFound
from identity_matrix.schemas.activity import Activity

logger = structlog.get_logger(__name__)


class ActivityBatchProcessor:
    """Per-visitor activity queue with a stoppable periodic flush"""

    def __init__(self, store, broadcaster=None, batch_size: int = 100, flush_interval: float = 5.0):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.broadcaster = broadcaster
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self._lock = threading.Lock()
        self._queues: Dict[str, List[Activity]] = {}
        self._task: Optional[asyncio.Task] = None

    def push(self, activity: Activity):
        with self._lock:
            self._queues.setdefault(activity.visitor_id, []).append(activity)

    def pending(self, visitor_id: Optional[str] = None) -> int:
        """Number of queued activities, for one visitor or overall"""
        with self._lock:
            if visitor_id is not None:
                return len(self._queues.get(visitor_id, []))
            return sum(len(q) for q in self._queues.values())

    def discard(self, visitor_id: str) -> int:
        """Drop a visitor's queued activities (GDPR erasure)"""
        with self._lock:
            return len(self._queues.pop(visitor_id, []))

    def _swap(self) -> Dict[str, List[Activity]]:
        with self._lock:
            snapshot, self._queues = self._queues, {}
        return {vid: acts for vid, acts in snapshot.items() if acts}

    def _requeue(self, visitor_id: str, activities: List[Activity]):
        with self._lock:
            self._queues[visitor_id] = activities + self._queues.get(visitor_id, [])

    async def flush(self) -> int:
        """Write every queued activity; returns how many were stored"""
        snapshot = self._swap()
        if not snapshot:
            return 0

        items = list(snapshot.items())
        # Anything still here when we leave (failure or cancellation) is requeued
        unwritten = dict(snapshot)
        written = 0
        try:
            for start in range(0, len(items), self.batch_size):
                group = items[start:start + self.batch_size]
                results = await asyncio.gather(
                    *(self.store.update_activities(vid, acts) for vid, acts in group),
                    return_exceptions=True,
                )
                for (visitor_id, activities), result in zip(group, results):
                    if isinstance(result, NotFound):
                        # Visitor erased or never stored; retrying cannot succeed
                        logger.warning("Dropping activities for unknown visitor",
                                       visitor_id=visitor_id, count=len(activities))
                        del unwritten[visitor_id]
                        continue
                    if isinstance(result, BaseException):
                        logger.error("Activity batch write failed", visitor_id=visitor_id,
                                     count=len(activities), error=str(result))
                        continue
                    del unwritten[visitor_id]
                    written += len(activities)
                    if self.broadcaster is not None:
                        await self.broadcaster.publish("visitor:update", {
                            "visitor_id": visitor_id,
                            "activity_count": len(activities),
                        })
        finally:
            for visitor_id, activities in unwritten.items():
                self._requeue(visitor_id, activities)

        logger.debug("Activity flush completed", visitors=len(items), written=written)
        return written

    async def _run(self):
        while True:
            await asyncio.sleep(self.flush_interval)
            try:
                await self.flush()
            except Exception as e:
                logger.error("Activity flush cycle failed", error=str(e), exc_info=True)

    def start(self):
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Activity batch processor started", interval=self.flush_interval,
                    batch_size=self.batch_size)

    async def stop(self, final_flush: bool = True):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if final_flush:
            await self.flush()
        logger.info("Activity batch processor stopped", pending=self.pending())

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
