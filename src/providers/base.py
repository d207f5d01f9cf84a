"""
Core provider types.

This module contains the shared data model used across the provider
framework: the cluster descriptor, its environment variables, status and
member health, and inspection tasks.
"""

import logging
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# Annotation keys read and written by cluster providers
ANNO_SCHEME = "scheme"
ANNO_EXTRA_SANS = "extraServerCertSANs"
ANNO_IMPORTED_URI = "importedAddr"
ANNO_CERT_NAME = "certName"
ANNO_EXT_CLIENT_URL = "extClientURL"


class SecurityMode(Enum):
    """Transport security of a managed cluster."""

    PLAIN = "plain"
    TLS = "tls"


class ClusterPhase(Enum):
    """Coarse-grained cluster health state."""

    CREATING = "Creating"
    RUNNING = "Running"
    UPDATING = "Updating"
    UNKNOWN = "Unknown"
    ERROR = "Error"


class MemberRole(Enum):
    """Raft role of an etcd member."""

    LEADER = "Leader"
    FOLLOWER = "Follower"
    LEARNER = "Learner"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class KeySelector(_Model):
    """Selects a key of a Secret or ConfigMap."""

    name: Optional[str] = None
    key: str
    optional: Optional[bool] = None


class ObjectFieldSelector(_Model):
    """Selects a field of the pod running the member."""

    api_version: Optional[str] = Field(default=None, alias="apiVersion")
    field_path: str = Field(alias="fieldPath")


class EnvVarSource(_Model):
    """Source for an environment variable's value."""

    secret_key_ref: Optional[KeySelector] = Field(default=None, alias="secretKeyRef")
    config_map_key_ref: Optional[KeySelector] = Field(
        default=None, alias="configMapKeyRef"
    )
    field_ref: Optional[ObjectFieldSelector] = Field(default=None, alias="fieldRef")


class EnvVar(_Model):
    """An environment variable passed to every cluster member."""

    name: str
    value: str = ""
    value_from: Optional[EnvVarSource] = Field(default=None, alias="valueFrom")


def env_to_list(env: List[EnvVar]) -> List[Dict[str, Any]]:
    """
    Serialize environment variables to the generic list-of-maps shape.

    Empty and unset fields are omitted, so a value that round-trips through
    the remote store compares equal to the original.
    """
    return [
        var.model_dump(by_alias=True, exclude_none=True, exclude_defaults=True)
        for var in env
    ]


class MemberStatus(_Model):
    """Per-member entry of the cluster status."""

    name: str = ""
    member_id: str = Field(default="", alias="memberId")
    client_url: str = Field(default="", alias="clientUrl")
    role: Optional[MemberRole] = None
    status: str = "Unhealthy"
    version: str = ""

    @classmethod
    def from_health(cls, health: "MemberHealth") -> "MemberStatus":
        return cls(
            name=health.name,
            member_id=health.member_id,
            client_url=health.endpoint,
            role=health.role,
            status="Healthy" if health.healthy else "Unhealthy",
            version=health.version,
        )


class ClusterStatus(_Model):
    """Observed state of a managed cluster."""

    phase: ClusterPhase = ClusterPhase.CREATING
    members: List[MemberStatus] = Field(default_factory=list)
    service_name: str = Field(default="", alias="serviceName")


class ClusterDescriptor(_Model):
    """Desired state of one managed etcd cluster."""

    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    cluster_type: str = Field(default="kstone-etcd-operator", alias="clusterType")
    size: int = Field(default=3, ge=1)
    version: str = "3.5.0"
    disk_size: int = Field(default=0, ge=0, alias="diskSize")  # Gi
    total_cpu: int = Field(default=0, ge=0, alias="totalCpu")  # cores
    total_mem: int = Field(default=0, ge=0, alias="totalMem")  # Gi
    env: List[EnvVar] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    feature_gates: Dict[str, bool] = Field(default_factory=dict, alias="featureGates")
    deletion_timestamp: Optional[str] = Field(default=None, alias="deletionTimestamp")
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @field_validator("env")
    @classmethod
    def validate_env_names(cls, v: List[EnvVar]) -> List[EnvVar]:
        seen = set()
        for var in v:
            if var.name in seen:
                raise ValueError(f"Duplicate environment variable: {var.name}")
            seen.add(var.name)
        return v

    @property
    def security_mode(self) -> SecurityMode:
        if self.annotations.get(ANNO_SCHEME) == "https":
            return SecurityMode.TLS
        return SecurityMode.PLAIN

    @property
    def scheme(self) -> str:
        return "https" if self.security_mode is SecurityMode.TLS else "http"

    @property
    def extra_server_cert_sans(self) -> Optional[List[str]]:
        """Extra server certificate SANs, or None when none are configured."""
        raw = self.annotations.get(ANNO_EXTRA_SANS, "")
        sans = [s.strip() for s in raw.split(",") if s.strip()]
        return sans or None


@dataclass
class MemberHealth:
    """Health observation for a single member, recomputed on every probe."""

    name: str
    member_id: str = ""
    endpoint: str = ""
    healthy: bool = False
    role: Optional[MemberRole] = None
    version: str = ""
    raft_term: Optional[int] = None
    raft_index: Optional[int] = None
    error: Optional[str] = None


@dataclass
class TLSInfo:
    """Client certificate material used when probing members."""

    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    trusted_ca_file: Optional[str] = None
    insecure_skip_verify: bool = False

    def empty(self) -> bool:
        return not (self.cert_file or self.key_file or self.trusted_ca_file)

    def to_ssl_context(self) -> ssl.SSLContext:
        """Build a client SSL context from the configured files."""
        ctx = ssl.create_default_context(cafile=self.trusted_ca_file)
        if self.cert_file:
            ctx.load_cert_chain(self.cert_file, self.key_file)
        if self.insecure_skip_verify:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return ctx


class TaskState(Enum):
    """Lifecycle of an inspection task."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class InspectionTask:
    """A unit of scheduled inspection work for one (cluster, feature) pair."""

    cluster_name: str
    namespace: str
    feature_name: str
    endpoint: str = ""
    state: TaskState = TaskState.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    result: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.namespace, self.cluster_name, self.feature_name)
