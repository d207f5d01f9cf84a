"""
kstone-etcd-operator cluster provider.

Manages clusters hosted by kstone-etcd-operator: each managed cluster is
mirrored as an etcd.tkestack.io/v1alpha1 EtcdCluster resource whose spec is
synthesized from the descriptor.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from providers.base import (
    ANNO_CERT_NAME,
    ANNO_EXT_CLIENT_URL,
    ANNO_IMPORTED_URI,
    ClusterStatus,
    SecurityMode,
    TLSInfo,
)
from providers.clusters.base import ClusterProvider
from providers.clusters.document import MalformedDocumentError, set_nested_field
from providers.clusters.etcdspec import DriftReport, generate_etcd_spec, spec_equal
from providers.clusters.health import compute_status
from store import AlreadyExistsError, GroupVersionResource
from validation import validate_observed_document

logger = logging.getLogger(__name__)

ETCD_CLUSTER_RESOURCE = GroupVersionResource(
    group="etcd.tkestack.io", version="v1alpha1", resource="etcdclusters"
)
ETCD_CLUSTER_KIND = "EtcdCluster"

# The managed cluster descriptor, used as owner of the operator resource
OWNER_API_VERSION = "kstone.tkestack.io/v1alpha1"
OWNER_KIND = "EtcdCluster"

CLIENT_PORT = 2379


def imported_address(scheme: str, name: str, namespace: str) -> str:
    return f"{scheme}://{name}-etcd.{namespace}.svc.cluster.local:{CLIENT_PORT}"


def ext_client_url(name: str, namespace: str, size: int) -> str:
    """Map each member's short client address to its headless service address."""
    pairs = []
    for i in range(size):
        key = f"{name}-etcd-{i}:{CLIENT_PORT}"
        value = (
            f"{name}-etcd-{i}.{name}-etcd-headless.{namespace}"
            f".svc.cluster.local:{CLIENT_PORT}"
        )
        pairs.append(f"{key}->{value}")
    return ",".join(pairs)


class KstoneClusterProvider(ClusterProvider):
    """Cluster provider backed by kstone-etcd-operator."""

    PROVIDER_NAME = "kstone-etcd-operator"

    def _owner_references(self) -> list:
        if not self.cluster.uid:
            return []
        return [
            {
                "apiVersion": OWNER_API_VERSION,
                "kind": OWNER_KIND,
                "name": self.cluster.name,
                "uid": self.cluster.uid,
                "controller": True,
                "blockOwnerDeletion": True,
            }
        ]

    def build_resource(self) -> Dict[str, Any]:
        """Build the full EtcdCluster document for a create request."""
        metadata: Dict[str, Any] = {
            "name": self.cluster.name,
            "namespace": self.cluster.namespace,
        }
        owners = self._owner_references()
        if owners:
            metadata["ownerReferences"] = owners

        return {
            "apiVersion": ETCD_CLUSTER_RESOURCE.api_version,
            "kind": ETCD_CLUSTER_KIND,
            "metadata": metadata,
            "spec": generate_etcd_spec(self.cluster),
        }

    async def _get_observed(self) -> Dict[str, Any]:
        return await self.ctx.store.get(
            ETCD_CLUSTER_RESOURCE, self.cluster.namespace, self.cluster.name
        )

    async def create(self) -> None:
        """Create the EtcdCluster; an existing one counts as created."""
        try:
            await self.ctx.store.create(
                ETCD_CLUSTER_RESOURCE, self.cluster.namespace, self.build_resource()
            )
        except AlreadyExistsError:
            logger.info(
                f"EtcdCluster {self.cluster.namespace}/{self.cluster.name} "
                f"already exists"
            )
            return
        logger.info(
            f"Created EtcdCluster {self.cluster.namespace}/{self.cluster.name}"
        )

    async def after_create(self) -> None:
        """Record the derived service addresses on the descriptor."""
        annotations = self.cluster.annotations
        name, namespace = self.cluster.name, self.cluster.namespace

        if self.cluster.security_mode is SecurityMode.TLS:
            annotations[ANNO_CERT_NAME] = f"{namespace}/{name}-etcd-client-cert"
        annotations[ANNO_IMPORTED_URI] = imported_address(
            self.cluster.scheme, name, namespace
        )
        annotations[ANNO_EXT_CLIENT_URL] = ext_client_url(
            name, namespace, self.cluster.size
        )

    def update_spec(self, observed: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replace the spec subtree of an observed document.

        Raises:
            MalformedDocumentError: If the document has no spec mapping
        """
        is_valid, error = validate_observed_document(observed)
        if not is_valid:
            raise MalformedDocumentError(f"get spec error: {error}")
        set_nested_field(observed, generate_etcd_spec(self.cluster), "spec")
        return observed

    async def update(self) -> None:
        observed = await self._get_observed()
        self.update_spec(observed)
        try:
            await self.ctx.store.update(
                ETCD_CLUSTER_RESOURCE, self.cluster.namespace, observed
            )
        except Exception as e:
            logger.error(
                f"Failed to update EtcdCluster "
                f"{self.cluster.namespace}/{self.cluster.name}: {e}"
            )
            raise
        logger.info(
            f"Updated EtcdCluster {self.cluster.namespace}/{self.cluster.name}"
        )

    async def delete(self) -> None:
        # The EtcdCluster is owned by the descriptor and garbage collected with it
        pass

    async def equal(self) -> DriftReport:
        observed = await self._get_observed()
        return spec_equal(self.cluster, observed)

    async def status(
        self, tls_info: Optional[TLSInfo] = None
    ) -> Tuple[ClusterStatus, Optional[Exception]]:
        return await compute_status(
            self.cluster, self.ctx.discovery, self.ctx.prober, tls_info
        )
