"""Pytest configuration and fixtures."""

from typing import Any, Dict

import pytest

from providers.base import ClusterDescriptor, EnvVar
from providers.clusters.etcdspec import generate_etcd_spec


@pytest.fixture
def sample_cluster():
    """A plain-text three member cluster."""
    return ClusterDescriptor(
        name="demo",
        namespace="kstone",
        uid="6f1c2a7e-0000-4000-8000-000000000001",
        size=3,
        version="3.5.0",
        disk_size=20,
        total_cpu=4,
        total_mem=8,
        env=[EnvVar(name="ETCD_QUOTA_BACKEND_BYTES", value="8589934592")],
        labels={"team": "storage"},
        annotations={"scheme": "http"},
    )


@pytest.fixture
def tls_cluster():
    """A cluster with automatic TLS and extra server SANs."""
    return ClusterDescriptor(
        name="secure",
        namespace="kstone",
        size=3,
        version="3.5.0",
        disk_size=50,
        total_cpu=8,
        total_mem=16,
        annotations={
            "scheme": "https",
            "extraServerCertSANs": "a.example.com, b.example.com ",
        },
    )


def observed_for(cluster: ClusterDescriptor) -> Dict[str, Any]:
    """An observed EtcdCluster document matching the descriptor."""
    return {
        "apiVersion": "etcd.tkestack.io/v1alpha1",
        "kind": "EtcdCluster",
        "metadata": {
            "name": cluster.name,
            "namespace": cluster.namespace,
            "resourceVersion": "1001",
        },
        "spec": generate_etcd_spec(cluster),
    }


@pytest.fixture
def observed_document(sample_cluster):
    return observed_for(sample_cluster)
