"""
EtcdCluster spec synthesis and drift detection.

generate_etcd_spec() renders a ClusterDescriptor into the spec subtree of
an etcd.tkestack.io/v1alpha1 EtcdCluster document. spec_equal() compares a
descriptor against an observed document and reports the first field that
differs.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from providers.base import ClusterDescriptor, EnvVar, SecurityMode, env_to_list
from providers.clusters.document import (
    MalformedDocumentError,
    nested_int,
    nested_list,
    nested_str,
)

logger = logging.getLogger(__name__)

BASE_EXTRA_ARGS = ["logger=zap"]
CLIENT_CERT_AUTH_ARG = "client-cert-auth=true"
UNIT_SUFFIX = "Gi"

_env_adapter = TypeAdapter(List[EnvVar])


def generate_etcd_spec(cluster: ClusterDescriptor) -> Dict[str, Any]:
    """
    Render the EtcdCluster spec for a descriptor.

    The result depends only on the descriptor and is a fresh structure on
    every call.

    Args:
        cluster: The desired cluster state

    Returns:
        The spec subtree as nested dicts and lists.
    """
    extra_args = list(BASE_EXTRA_ARGS)
    cpu = str(cluster.total_cpu)
    memory = f"{cluster.total_mem}{UNIT_SUFFIX}"

    spec: Dict[str, Any] = {
        "size": cluster.size,
        "version": cluster.version,
        "template": {
            "extraArgs": extra_args,
            "labels": dict(cluster.labels),
            "annotations": dict(cluster.annotations),
            "env": env_to_list(cluster.env),
            "persistentVolumeClaimSpec": {
                "accessModes": ["ReadWriteOnce"],
                "resources": {
                    "requests": {
                        "storage": f"{cluster.disk_size}{UNIT_SUFFIX}",
                    },
                },
            },
            "resources": {
                "requests": {"cpu": cpu, "memory": memory},
                "limits": {"cpu": cpu, "memory": memory},
            },
        },
    }

    if cluster.security_mode is SecurityMode.TLS:
        spec["secure"] = {
            "tls": {
                "autoTLSCert": {
                    "autoGenerateClientCert": True,
                    "autoGeneratePeerCert": True,
                    "autoGenerateServerCert": True,
                    "extraServerCertSANs": cluster.extra_server_cert_sans,
                },
            },
        }
        extra_args.append(CLIENT_CERT_AUTH_ARG)

    return spec


@dataclass
class DriftReport:
    """Result of comparing desired and observed state."""

    equal: bool = True
    field: Optional[str] = None

    def __bool__(self) -> bool:
        return self.equal


def parse_env_list(items: List[Any]) -> List[EnvVar]:
    """
    Deserialize a generic env list into EnvVar models.

    Raises:
        MalformedDocumentError: If an item is not a valid env var.
    """
    try:
        return _env_adapter.validate_python(items)
    except ValidationError as e:
        raise MalformedDocumentError(f"spec.template.env is malformed: {e}") from e


def _strip_unit(value: str) -> str:
    return value.rstrip(UNIT_SUFFIX)


def _drift(field_name: str) -> DriftReport:
    logger.info(f"{field_name} is different")
    return DriftReport(equal=False, field=field_name)


def spec_equal(cluster: ClusterDescriptor, observed: Dict[str, Any]) -> DriftReport:
    """
    Compare a descriptor against an observed EtcdCluster document.

    Fields are checked in a fixed order (size, version, storage, cpu,
    memory, env) and the comparison stops at the first difference.

    Args:
        cluster: The desired cluster state
        observed: The full document fetched from the store

    Returns:
        DriftReport naming the first differing field, if any.

    Raises:
        MalformedDocumentError: If a compared field has the wrong shape.
    """
    old_size, _ = nested_int(observed, "spec", "size")
    if old_size != cluster.size:
        return _drift("size")

    old_version, _ = nested_str(observed, "spec", "version")
    if old_version.lstrip("v") != cluster.version.lstrip("v"):
        return _drift("version")

    old_storage, _ = nested_str(
        observed,
        "spec",
        "template",
        "persistentVolumeClaimSpec",
        "resources",
        "requests",
        "storage",
    )
    if _strip_unit(old_storage) != str(cluster.disk_size):
        return _drift("storage")

    old_cpu, _ = nested_str(observed, "spec", "template", "resources", "requests", "cpu")
    if old_cpu != str(cluster.total_cpu):
        return _drift("cpu")

    old_memory, _ = nested_str(
        observed, "spec", "template", "resources", "requests", "memory"
    )
    if _strip_unit(old_memory) != str(cluster.total_mem):
        return _drift("memory")

    old_env_items, _ = nested_list(observed, "spec", "template", "env")
    old_env = parse_env_list(old_env_items)
    if not old_env and not cluster.env:
        return DriftReport()
    if old_env != cluster.env:
        return _drift("env")

    return DriftReport()
