"""
Feature Provider Base - Abstract interface for inspection features.

A feature provider drives one periodic inspection capability: equal()
detects whether a cluster needs a task, sync() enqueues one, and do()
executes a dequeued task. init() sets up shared clients exactly once no
matter how many clusters use the feature.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List

from providers.base import ClusterDescriptor, InspectionTask

logger = logging.getLogger(__name__)


class InspectionBackend(ABC):
    """Stores and executes inspection tasks."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections or clients needed by the backend."""
        pass

    @abstractmethod
    async def exists(self, cluster: ClusterDescriptor, feature_name: str) -> bool:
        """Whether a queued or completed task exists for (cluster, feature)."""
        pass

    @abstractmethod
    async def enqueue(
        self, cluster: ClusterDescriptor, feature_name: str
    ) -> InspectionTask:
        """
        Enqueue a task, returning the existing one if it is still pending or
        completed. A failed task is replaced by a fresh pending one.
        """
        pass

    @abstractmethod
    async def next_task(self, feature_name: str) -> InspectionTask:
        """Wait for and dequeue the next pending task of a feature."""
        pass

    @abstractmethod
    async def collect(self, task: InspectionTask) -> InspectionTask:
        """Run the task's data collection and record its result."""
        pass


@dataclass
class FeatureContext:
    """Collaborators shared by every instance of a feature provider."""

    backend_factory: Callable[[], InspectionBackend]
    config: Dict[str, Any] = field(default_factory=dict)


class InitOnce:
    """
    Run an async initializer exactly once.

    Concurrent first callers wait on the same lock; once the initializer
    succeeds it never runs again. A failed attempt leaves the guard open so
    the next call retries.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    async def run(self, fn: Callable[[], Awaitable[None]]) -> None:
        if self._done:
            return
        async with self._lock:
            if self._done:
                return
            await fn()
            self._done = True


class FeatureProvider(ABC):
    """Abstract base class for feature providers."""

    PROVIDER_NAME: str = ""

    def __init__(self, ctx: FeatureContext):
        self.ctx = ctx

    @property
    def name(self) -> str:
        return self.PROVIDER_NAME

    @abstractmethod
    async def init(self) -> None:
        """Initialize shared resources. Idempotent."""
        pass

    @abstractmethod
    async def equal(self, cluster: ClusterDescriptor) -> bool:
        """True when the cluster has no queued or completed task yet."""
        pass

    @abstractmethod
    async def sync(self, cluster: ClusterDescriptor) -> None:
        """Enqueue a task for the cluster. Safe to repeat."""
        pass

    @abstractmethod
    async def do(self, task: InspectionTask) -> None:
        """Execute one dequeued task."""
        pass


def enabled_features(cluster: ClusterDescriptor, allowed: List[str]) -> List[str]:
    """Feature names the cluster enables, filtered by an allow-list."""
    return [
        name
        for name, enabled in cluster.feature_gates.items()
        if enabled and (not allowed or name in allowed)
    ]
