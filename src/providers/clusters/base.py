"""
Cluster Provider Base - Abstract interface for cluster providers.

A cluster provider implements one way of hosting a managed etcd cluster.
An instance is bound to a single cluster descriptor for one reconciliation
pass and exposes before/main/after hooks for create, update and delete,
plus drift detection and status computation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Tuple

from providers.base import ClusterDescriptor, ClusterStatus, TLSInfo
from providers.clusters.etcdspec import DriftReport
from providers.clusters.health import (
    EtcdHTTPProber,
    HealthProber,
    MemberDiscovery,
    StatusMemberDiscovery,
)
from store import ResourceStore


@dataclass
class ClusterProviderContext:
    """Collaborators shared by every cluster provider instance."""

    store: ResourceStore
    discovery: MemberDiscovery = field(default_factory=StatusMemberDiscovery)
    prober: HealthProber = field(default_factory=EtcdHTTPProber)


class ClusterProvider(ABC):
    """
    Abstract base class for cluster providers.

    Hooks default to no-ops; create, update, delete, equal and status must
    be implemented. Errors raised by the store are propagated unmodified
    and nothing is retried here.
    """

    PROVIDER_NAME: str = ""

    def __init__(self, cluster: ClusterDescriptor, ctx: ClusterProviderContext):
        self.cluster = cluster
        self.ctx = ctx

    @property
    def name(self) -> str:
        return self.PROVIDER_NAME

    async def before_create(self) -> None:
        pass

    @abstractmethod
    async def create(self) -> None:
        """Create the cluster resource. Must tolerate an existing resource."""
        pass

    async def after_create(self) -> None:
        pass

    async def before_update(self) -> None:
        pass

    @abstractmethod
    async def update(self) -> None:
        """Bring the cluster resource in line with the descriptor."""
        pass

    async def after_update(self) -> None:
        pass

    async def before_delete(self) -> None:
        pass

    @abstractmethod
    async def delete(self) -> None:
        """Remove the cluster resource."""
        pass

    async def after_delete(self) -> None:
        pass

    @abstractmethod
    async def equal(self) -> DriftReport:
        """
        Compare the descriptor with the observed resource.

        Raises:
            NotFoundError: If the resource does not exist yet
        """
        pass

    @abstractmethod
    async def status(
        self, tls_info: Optional[TLSInfo] = None
    ) -> Tuple[ClusterStatus, Optional[Exception]]:
        """
        Recompute the cluster status.

        Returns:
            Tuple of (status, probe_error); see compute_status().
        """
        pass

    async def run_create(self) -> None:
        """Run the create hooks in order."""
        await self.before_create()
        await self.create()
        await self.after_create()

    async def run_update(self) -> None:
        """Run the update hooks in order."""
        await self.before_update()
        await self.update()
        await self.after_update()

    async def run_delete(self) -> None:
        """Run the delete hooks in order."""
        await self.before_delete()
        await self.delete()
        await self.after_delete()
