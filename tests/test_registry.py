"""Unit tests for the provider registry."""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest

from providers.base import ClusterDescriptor
from providers.clusters.kstone import KstoneClusterProvider
from providers.features.request import RequestFeatureProvider
from providers.registry import (
    DuplicateProviderError,
    ProviderKind,
    ProviderNotFoundError,
    ProviderRegistry,
    discover_providers,
    get_registry,
    register_builtin_providers,
    reset_registry,
)


def _factory(*args):
    return ("built", args)


# ==================== Registration ====================


class TestRegister:
    """Tests for register() and lookup()."""

    def test_register_and_lookup(self):
        registry = ProviderRegistry()
        registry.register(ProviderKind.CLUSTER, "kstone", _factory)
        assert registry.lookup(ProviderKind.CLUSTER, "kstone") is _factory

    def test_duplicate_registration_rejected(self):
        registry = ProviderRegistry()
        registry.register(ProviderKind.CLUSTER, "kstone", _factory)

        with pytest.raises(DuplicateProviderError):
            registry.register(ProviderKind.CLUSTER, "kstone", lambda *a: None)

        # First registration is kept
        assert registry.lookup(ProviderKind.CLUSTER, "kstone") is _factory

    def test_same_name_different_kind_allowed(self):
        registry = ProviderRegistry()
        registry.register(ProviderKind.CLUSTER, "request", _factory)
        registry.register(ProviderKind.FEATURE, "request", _factory)

        assert registry.has_provider(ProviderKind.CLUSTER, "request")
        assert registry.has_provider(ProviderKind.FEATURE, "request")

    def test_empty_name_rejected(self):
        registry = ProviderRegistry()
        with pytest.raises(ValueError):
            registry.register(ProviderKind.FEATURE, "", _factory)

    def test_lookup_unknown_raises_not_found(self):
        registry = ProviderRegistry()
        registry.register(ProviderKind.CLUSTER, "kstone", _factory)

        with pytest.raises(ProviderNotFoundError) as exc_info:
            registry.lookup(ProviderKind.CLUSTER, "imported")

        err = exc_info.value
        assert isinstance(err, LookupError)
        assert err.name == "imported"
        assert err.available == ["kstone"]
        assert "kstone" in str(err)

    def test_lookup_empty_registry_message(self):
        registry = ProviderRegistry()
        with pytest.raises(ProviderNotFoundError, match="none"):
            registry.lookup(ProviderKind.FEATURE, "request")

    def test_list_providers_per_kind(self):
        registry = ProviderRegistry()
        registry.register(ProviderKind.CLUSTER, "b", _factory)
        registry.register(ProviderKind.CLUSTER, "a", _factory)
        registry.register(ProviderKind.FEATURE, "c", _factory)

        assert registry.list_providers(ProviderKind.CLUSTER) == ["a", "b"]
        assert registry.list_providers(ProviderKind.FEATURE) == ["c"]

    def test_concurrent_registration_inserts_once(self):
        registry = ProviderRegistry()
        barrier = threading.Barrier(8)

        def attempt(i):
            barrier.wait()
            try:
                registry.register(ProviderKind.CLUSTER, "kstone", lambda *a, i=i: i)
                return True
            except DuplicateProviderError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(8)))

        assert results.count(True) == 1
        assert registry.list_providers(ProviderKind.CLUSTER) == ["kstone"]


# ==================== Provider construction ====================


class TestNewProvider:
    """Tests for the convenience constructors."""

    def test_new_cluster_provider_uses_cluster_type(self):
        registry = ProviderRegistry()
        factory = MagicMock(return_value="provider")
        registry.register_cluster_provider("custom", factory)
        cluster = ClusterDescriptor(name="demo", cluster_type="custom")
        ctx = object()

        assert registry.new_cluster_provider(cluster, ctx) == "provider"
        factory.assert_called_once_with(cluster, ctx)

    def test_new_cluster_provider_unknown_type(self):
        registry = ProviderRegistry()
        cluster = ClusterDescriptor(name="demo", cluster_type="missing")

        with pytest.raises(ProviderNotFoundError):
            registry.new_cluster_provider(cluster, object())

    def test_new_feature_provider(self):
        registry = ProviderRegistry()
        factory = MagicMock(return_value="feature")
        registry.register_feature_provider("request", factory)
        ctx = object()

        assert registry.new_feature_provider("request", ctx) == "feature"
        factory.assert_called_once_with(ctx)


# ==================== Start-up registration ====================


class TestBuiltinProviders:
    """Tests for register_builtin_providers() and entry point discovery."""

    def setup_method(self):
        reset_registry()

    def teardown_method(self):
        reset_registry()

    def test_registers_builtins(self):
        registry = ProviderRegistry()
        with patch("providers.registry.entry_points", return_value=[]):
            result = register_builtin_providers(registry)

        assert result is registry
        assert (
            registry.lookup(ProviderKind.CLUSTER, "kstone-etcd-operator")
            is KstoneClusterProvider
        )
        assert registry.lookup(ProviderKind.FEATURE, "request") is RequestFeatureProvider

    def test_defaults_to_global_registry(self):
        with patch("providers.registry.entry_points", return_value=[]):
            register_builtin_providers()

        assert get_registry().has_provider(ProviderKind.FEATURE, "request")

    def test_calling_twice_fails_fast(self):
        registry = ProviderRegistry()
        with patch("providers.registry.entry_points", return_value=[]):
            register_builtin_providers(registry)
            with pytest.raises(DuplicateProviderError):
                register_builtin_providers(registry)

    def test_discovers_entry_points(self):
        registry = ProviderRegistry()
        ep = MagicMock()
        ep.name = "imported"
        ep.load.return_value = _factory

        def fake_entry_points(group):
            return [ep] if group == "etcd_providers.clusters" else []

        with patch("providers.registry.entry_points", side_effect=fake_entry_points):
            discover_providers(registry)

        assert registry.lookup(ProviderKind.CLUSTER, "imported") is _factory
        assert registry.list_providers(ProviderKind.FEATURE) == []

    def test_broken_entry_point_skipped(self):
        registry = ProviderRegistry()
        ep = MagicMock()
        ep.name = "broken"
        ep.load.side_effect = ImportError("missing dependency")

        with patch("providers.registry.entry_points", return_value=[ep]):
            discover_providers(registry)

        assert not registry.has_provider(ProviderKind.CLUSTER, "broken")

    def test_entry_point_collision_raises(self):
        registry = ProviderRegistry()
        registry.register_feature_provider("request", _factory)
        ep = MagicMock()
        ep.name = "request"
        ep.load.return_value = _factory

        def fake_entry_points(group):
            return [ep] if group == "etcd_providers.features" else []

        with patch("providers.registry.entry_points", side_effect=fake_entry_points):
            with pytest.raises(DuplicateProviderError):
                discover_providers(registry)


class TestGlobalRegistry:
    """Tests for the default registry helpers."""

    def teardown_method(self):
        reset_registry()

    def test_singleton(self):
        assert get_registry() is get_registry()

    def test_reset(self):
        first = get_registry()
        reset_registry()
        assert get_registry() is not first
