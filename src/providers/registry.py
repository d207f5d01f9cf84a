"""
Provider Registry - Registration and lookup of provider factories.

Maps a (kind, name) pair to a factory that builds a provider bound to one
cluster or feature context. Registration happens once at process start;
lookups happen on every reconciliation pass.
"""

import logging
import threading
from enum import Enum
from importlib.metadata import entry_points
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ProviderFactory = Callable[..., Any]


class ProviderKind(Enum):
    """The two provider contracts the registry serves."""

    CLUSTER = "cluster"
    FEATURE = "feature"


# Entry point groups scanned for third-party providers
ENTRY_POINT_GROUPS = {
    ProviderKind.CLUSTER: "etcd_providers.clusters",
    ProviderKind.FEATURE: "etcd_providers.features",
}


class ProviderNotFoundError(LookupError):
    """No provider is registered under the requested name."""

    def __init__(self, kind: ProviderKind, name: str, available: List[str]):
        self.kind = kind
        self.name = name
        self.available = available
        super().__init__(
            f"Unknown {kind.value} provider: {name}. "
            f"Available providers: {', '.join(available) or 'none'}"
        )


class DuplicateProviderError(ValueError):
    """A provider name was registered twice for the same kind."""


class ProviderRegistry:
    """
    Central registry for cluster and feature provider factories.

    Inserts are serialized by a lock and never overwrite an existing entry.
    Lookups read the underlying dict without locking.
    """

    def __init__(self):
        self._factories: Dict[Tuple[ProviderKind, str], ProviderFactory] = {}
        self._lock = threading.Lock()

    def register(
        self, kind: ProviderKind, name: str, factory: ProviderFactory
    ) -> None:
        """
        Register a provider factory.

        Args:
            kind: Provider kind
            name: Provider name, unique within the kind
            factory: Callable producing a provider instance

        Raises:
            DuplicateProviderError: If (kind, name) is already registered
        """
        if not name:
            raise ValueError("Provider name must not be empty")

        key = (kind, name)
        with self._lock:
            if key in self._factories:
                raise DuplicateProviderError(
                    f"{kind.value} provider '{name}' is already registered"
                )
            self._factories[key] = factory
        logger.info(f"Registered {kind.value} provider: {name}")

    def lookup(self, kind: ProviderKind, name: str) -> ProviderFactory:
        """
        Look up a provider factory.

        Raises:
            ProviderNotFoundError: If nothing is registered under (kind, name)
        """
        factory = self._factories.get((kind, name))
        if factory is None:
            raise ProviderNotFoundError(kind, name, self.list_providers(kind))
        return factory

    def has_provider(self, kind: ProviderKind, name: str) -> bool:
        return (kind, name) in self._factories

    def list_providers(self, kind: ProviderKind) -> List[str]:
        """List registered provider names of one kind."""
        return sorted(n for k, n in list(self._factories) if k is kind)

    # Convenience wrappers

    def register_cluster_provider(self, name: str, factory: ProviderFactory) -> None:
        self.register(ProviderKind.CLUSTER, name, factory)

    def register_feature_provider(self, name: str, factory: ProviderFactory) -> None:
        self.register(ProviderKind.FEATURE, name, factory)

    def new_cluster_provider(self, cluster: Any, ctx: Any) -> Any:
        """Build the cluster provider named by the descriptor's cluster type."""
        factory = self.lookup(ProviderKind.CLUSTER, cluster.cluster_type)
        return factory(cluster, ctx)

    def new_feature_provider(self, name: str, ctx: Any) -> Any:
        """Build a feature provider bound to a feature context."""
        factory = self.lookup(ProviderKind.FEATURE, name)
        return factory(ctx)


# Default registry for callers that do not pass one explicitly
_registry: Optional[ProviderRegistry] = None


def get_registry() -> ProviderRegistry:
    """Get the default provider registry."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the default registry (mainly for testing)."""
    global _registry
    _registry = None


def discover_providers(registry: ProviderRegistry) -> None:
    """
    Register third-party providers advertised through entry points.

    A provider that fails to import is skipped with a warning; a name that
    collides with one already registered raises DuplicateProviderError.
    """
    for kind, group in ENTRY_POINT_GROUPS.items():
        for ep in entry_points(group=group):
            try:
                factory = ep.load()
            except Exception as e:
                logger.warning(f"Could not load {kind.value} provider {ep.name}: {e}")
                continue
            registry.register(kind, ep.name, factory)


def register_builtin_providers(
    registry: Optional[ProviderRegistry] = None,
) -> ProviderRegistry:
    """
    Register the providers shipped with this package, then discover
    installed third-party providers.

    Called once during process start-up, before any reconciliation.

    Args:
        registry: Registry to populate (defaults to the global registry)

    Returns:
        The populated registry.
    """
    registry = registry or get_registry()

    from providers.clusters.kstone import KstoneClusterProvider
    from providers.features.request import RequestFeatureProvider

    registry.register_cluster_provider(
        KstoneClusterProvider.PROVIDER_NAME, KstoneClusterProvider
    )
    registry.register_feature_provider(
        RequestFeatureProvider.PROVIDER_NAME, RequestFeatureProvider
    )

    discover_providers(registry)
    return registry
