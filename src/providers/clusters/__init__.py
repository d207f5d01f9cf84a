"""
Cluster providers package.

Cluster providers create, update, delete and observe one way of hosting a
managed etcd cluster.
"""

from providers.clusters.base import ClusterProvider, ClusterProviderContext
from providers.clusters.etcdspec import DriftReport, generate_etcd_spec, spec_equal

__all__ = [
    "ClusterProvider",
    "ClusterProviderContext",
    "DriftReport",
    "generate_etcd_spec",
    "spec_equal",
]
