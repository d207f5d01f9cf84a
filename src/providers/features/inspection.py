"""
In-memory inspection backend.

Keeps one task per (cluster, feature) pair and a pending queue per feature.
Data collection is delegated to a collector registered for the feature.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from providers.base import (
    ANNO_IMPORTED_URI,
    ClusterDescriptor,
    InspectionTask,
    TaskState,
)
from providers.features.base import InspectionBackend

logger = logging.getLogger(__name__)

Collector = Callable[[InspectionTask], Awaitable[Dict[str, Any]]]


class InMemoryInspectionBackend(InspectionBackend):
    """Process-local task store and queue."""

    def __init__(self, collectors: Optional[Dict[str, Collector]] = None):
        self.collectors: Dict[str, Collector] = dict(collectors or {})
        self._tasks: Dict[tuple, InspectionTask] = {}
        self._queues: Dict[str, asyncio.Queue] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        self._initialized = True
        logger.info(
            f"Initialized in-memory inspection backend "
            f"(collectors: {', '.join(self.collectors) or 'none'})"
        )

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError(
                "Inspection backend not initialized. Call initialize() first."
            )

    def _queue(self, feature_name: str) -> asyncio.Queue:
        if feature_name not in self._queues:
            self._queues[feature_name] = asyncio.Queue()
        return self._queues[feature_name]

    @staticmethod
    def _key(cluster: ClusterDescriptor, feature_name: str) -> tuple:
        return (cluster.namespace, cluster.name, feature_name)

    async def exists(self, cluster: ClusterDescriptor, feature_name: str) -> bool:
        self._ensure_initialized()
        task = self._tasks.get(self._key(cluster, feature_name))
        return task is not None and task.state is not TaskState.FAILED

    async def enqueue(
        self, cluster: ClusterDescriptor, feature_name: str
    ) -> InspectionTask:
        self._ensure_initialized()
        key = self._key(cluster, feature_name)
        async with self._lock:
            existing = self._tasks.get(key)
            # A failed task is replaced so the cluster gets another attempt
            if existing is not None and existing.state is not TaskState.FAILED:
                return existing

            task = InspectionTask(
                cluster_name=cluster.name,
                namespace=cluster.namespace,
                feature_name=feature_name,
                endpoint=cluster.annotations.get(ANNO_IMPORTED_URI, ""),
            )
            self._tasks[key] = task
            self._queue(feature_name).put_nowait(task)

        logger.info(
            f"Enqueued {feature_name} inspection for "
            f"{cluster.namespace}/{cluster.name}"
        )
        return task

    async def next_task(self, feature_name: str) -> InspectionTask:
        self._ensure_initialized()
        return await self._queue(feature_name).get()

    def pending_count(self, feature_name: str) -> int:
        return self._queue(feature_name).qsize()

    def get_task(
        self, cluster: ClusterDescriptor, feature_name: str
    ) -> Optional[InspectionTask]:
        return self._tasks.get(self._key(cluster, feature_name))

    async def collect(self, task: InspectionTask) -> InspectionTask:
        """
        Run the collector for the task's feature.

        The outcome is recorded on the task; a collector failure is recorded
        and then re-raised.
        """
        self._ensure_initialized()
        collector = self.collectors.get(task.feature_name)
        if collector is None:
            raise RuntimeError(f"No collector registered for {task.feature_name}")

        try:
            task.result = await collector(task)
        except Exception as e:
            task.state = TaskState.FAILED
            task.error = str(e)
            logger.error(
                f"{task.feature_name} inspection of "
                f"{task.namespace}/{task.cluster_name} failed: {e}"
            )
            raise

        task.state = TaskState.COMPLETED
        task.error = None
        return task
