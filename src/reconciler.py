"""
Cluster Reconciler - Drives one reconciliation pass per cluster.

Looks up the cluster's provider by name, runs the create, update or delete
hooks as the observed state requires, recomputes the status, and schedules
inspection tasks for the features the cluster enables. Looping, backoff and
fan-out across clusters are left to the caller.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from config import Config, get_config
from providers.base import ClusterDescriptor, ClusterStatus, InspectionTask, TLSInfo
from providers.clusters.base import ClusterProvider, ClusterProviderContext
from providers.clusters.health import EtcdHTTPProber
from providers.features.base import FeatureContext, FeatureProvider, enabled_features
from providers.features.request import (
    DEFAULT_COLLECT_TIMEOUT,
    RequestFeatureProvider,
    new_feature_context,
)
from providers.registry import ProviderRegistry, get_registry
from store import NotFoundError, ResourceStore

logger = logging.getLogger(__name__)


class ReconcileAction(Enum):
    """What a reconciliation pass did to the cluster resource."""

    NONE = "none"
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    action: ReconcileAction = ReconcileAction.NONE
    drift_field: Optional[str] = None
    status: Optional[ClusterStatus] = None
    probe_error: Optional[Exception] = None
    duration_seconds: float = 0.0


class ClusterReconciler:
    """
    Runs provider lifecycles for managed clusters.

    Calls for the same cluster are serialized; calls for different clusters
    may run concurrently.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cluster_ctx: ClusterProviderContext,
        feature_ctx: Optional[FeatureContext] = None,
        allowed_features: Optional[List[str]] = None,
        tls_info: Optional[TLSInfo] = None,
    ):
        self.registry = registry
        self.cluster_ctx = cluster_ctx
        self.feature_ctx = feature_ctx
        self.allowed_features = allowed_features or []
        self.tls_info = tls_info

        self._locks: Dict[tuple, asyncio.Lock] = {}
        # One provider per feature, shared across clusters
        self._features: Dict[str, FeatureProvider] = {}

    @classmethod
    def from_config(
        cls,
        store: ResourceStore,
        config: Optional[Config] = None,
        registry: Optional[ProviderRegistry] = None,
    ) -> "ClusterReconciler":
        """
        Build a reconciler wired from configuration.

        Args:
            store: Connected resource store
            config: Configuration (defaults to get_config())
            registry: Provider registry (defaults to the global registry)
        """
        config = config or get_config()
        tls_info = config.probe.tls_info()
        request_config = config.providers.get_provider_config(
            RequestFeatureProvider.PROVIDER_NAME
        )
        return cls(
            registry=registry or get_registry(),
            cluster_ctx=ClusterProviderContext(
                store=store, prober=EtcdHTTPProber(timeout=config.probe.timeout)
            ),
            feature_ctx=new_feature_context(
                timeout=float(request_config.get("timeout", DEFAULT_COLLECT_TIMEOUT)),
                tls_info=tls_info,
                config=request_config,
            ),
            allowed_features=config.providers.enabled_features,
            tls_info=tls_info,
        )

    def _lock_for(self, cluster: ClusterDescriptor) -> asyncio.Lock:
        key = (cluster.namespace, cluster.name)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def cluster_provider(self, cluster: ClusterDescriptor) -> ClusterProvider:
        """
        Build the provider named by the cluster's type.

        Raises:
            ProviderNotFoundError: If no provider has that name
        """
        return self.registry.new_cluster_provider(cluster, self.cluster_ctx)

    async def reconcile(self, cluster: ClusterDescriptor) -> ReconcileResult:
        """
        Reconcile one cluster and refresh its status.

        Store and provider errors propagate unmodified. A probe failure does
        not raise; it is returned in the result next to the conservative
        status, which is also written to cluster.status.
        """
        async with self._lock_for(cluster):
            start_time = time.monotonic()
            provider = self.cluster_provider(cluster)
            result = ReconcileResult()
            cluster_id = f"{cluster.namespace}/{cluster.name}"

            if cluster.deletion_timestamp:
                logger.info(f"Deleting cluster {cluster_id} ({provider.name})")
                await provider.run_delete()
                result.action = ReconcileAction.DELETED
                self._locks.pop((cluster.namespace, cluster.name), None)
                result.duration_seconds = time.monotonic() - start_time
                return result

            try:
                drift = await provider.equal()
            except NotFoundError:
                logger.info(f"Creating cluster {cluster_id} ({provider.name})")
                await provider.run_create()
                result.action = ReconcileAction.CREATED
            else:
                if not drift:
                    logger.info(
                        f"Updating cluster {cluster_id}: {drift.field} changed"
                    )
                    await provider.run_update()
                    result.action = ReconcileAction.UPDATED
                    result.drift_field = drift.field

            status, probe_error = await provider.status(self.tls_info)
            cluster.status = status
            result.status = status
            result.probe_error = probe_error
            if probe_error is not None:
                logger.warning(
                    f"Status of {cluster_id} is {status.phase.value}; "
                    f"probe failed: {probe_error}"
                )
            result.duration_seconds = time.monotonic() - start_time
            return result

    async def feature_provider(self, name: str) -> FeatureProvider:
        """Get the initialized provider for a feature."""
        if self.feature_ctx is None:
            raise RuntimeError("No feature context configured")
        provider = self._features.get(name)
        if provider is None:
            provider = self.registry.new_feature_provider(name, self.feature_ctx)
            self._features[name] = provider
        await provider.init()
        return provider

    async def schedule_features(self, cluster: ClusterDescriptor) -> List[str]:
        """
        Enqueue inspection tasks for every feature the cluster needs.

        Returns:
            Names of the features a task was enqueued for.
        """
        scheduled = []
        for name in enabled_features(cluster, self.allowed_features):
            provider = await self.feature_provider(name)
            if await provider.equal(cluster):
                await provider.sync(cluster)
                scheduled.append(name)
        return scheduled

    async def execute_task(self, task: InspectionTask) -> None:
        """Execute one dequeued inspection task with its feature's provider."""
        provider = await self.feature_provider(task.feature_name)
        await provider.do(task)
