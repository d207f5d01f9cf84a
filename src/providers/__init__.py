"""
Provider framework for managed etcd clusters.

This package provides the registry and the shared data model for cluster
providers and feature providers.
"""

from providers.base import (
    ClusterDescriptor,
    ClusterPhase,
    ClusterStatus,
    EnvVar,
    InspectionTask,
    MemberHealth,
    SecurityMode,
    TLSInfo,
)
from providers.registry import (
    DuplicateProviderError,
    ProviderKind,
    ProviderNotFoundError,
    ProviderRegistry,
    get_registry,
    register_builtin_providers,
)

__all__ = [
    "ClusterDescriptor",
    "ClusterPhase",
    "ClusterStatus",
    "EnvVar",
    "InspectionTask",
    "MemberHealth",
    "SecurityMode",
    "TLSInfo",
    "DuplicateProviderError",
    "ProviderKind",
    "ProviderNotFoundError",
    "ProviderRegistry",
    "get_registry",
    "register_builtin_providers",
]
