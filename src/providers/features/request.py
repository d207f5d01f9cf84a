"""
Request inspection feature.

Periodically collects per-method gRPC request counts from a cluster's
Prometheus metrics endpoint.
"""

import logging
from typing import Any, Dict, Optional

import aiohttp
from prometheus_client.parser import text_string_to_metric_families

from providers.base import ClusterDescriptor, InspectionTask, TLSInfo
from providers.features.base import (
    FeatureContext,
    FeatureProvider,
    InitOnce,
    InspectionBackend,
)
from providers.features.inspection import InMemoryInspectionBackend

logger = logging.getLogger(__name__)

REQUEST_METRIC = "grpc_server_handled_total"
DEFAULT_COLLECT_TIMEOUT = 10.0


def summarize_requests(metrics_text: str) -> Dict[str, Any]:
    """Sum handled gRPC requests by method from a metrics exposition."""
    by_method: Dict[str, float] = {}
    for family in text_string_to_metric_families(metrics_text):
        for sample in family.samples:
            if sample.name != REQUEST_METRIC:
                continue
            method = sample.labels.get("grpc_method", "unknown")
            by_method[method] = by_method.get(method, 0.0) + sample.value
    return {
        "total": sum(by_method.values()),
        "methods": dict(sorted(by_method.items())),
    }


class RequestMetricsCollector:
    """Scrapes /metrics from the task's endpoint."""

    def __init__(
        self,
        timeout: float = DEFAULT_COLLECT_TIMEOUT,
        tls_info: Optional[TLSInfo] = None,
    ):
        self.timeout = timeout
        self.tls_info = tls_info

    async def __call__(self, task: InspectionTask) -> Dict[str, Any]:
        if not task.endpoint:
            raise ValueError(
                f"No endpoint recorded for {task.namespace}/{task.cluster_name}"
            )
        url = f"{task.endpoint.rstrip('/')}/metrics"
        ssl_option: Any = True
        if self.tls_info is not None:
            ssl_option = self.tls_info.to_ssl_context()

        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            connector=aiohttp.TCPConnector(ssl=ssl_option),
        ) as session:
            async with session.get(url) as response:
                response.raise_for_status()
                text = await response.text()

        summary = summarize_requests(text)
        logger.debug(
            f"Collected {summary['total']:.0f} requests from {url} "
            f"across {len(summary['methods'])} methods"
        )
        return summary


class RequestFeatureProvider(FeatureProvider):
    """Feature provider for request inspection."""

    PROVIDER_NAME = "request"

    def __init__(self, ctx: FeatureContext):
        super().__init__(ctx)
        self._once = InitOnce()
        self._backend: Optional[InspectionBackend] = None

    @property
    def backend(self) -> InspectionBackend:
        if self._backend is None:
            raise RuntimeError(
                f"Feature provider '{self.name}' used before init() completed"
            )
        return self._backend

    async def _init_backend(self) -> None:
        backend = self.ctx.backend_factory()
        await backend.initialize()
        self._backend = backend
        logger.info(f"Initialized feature provider: {self.name}")

    async def init(self) -> None:
        await self._once.run(self._init_backend)

    async def equal(self, cluster: ClusterDescriptor) -> bool:
        return not await self.backend.exists(cluster, self.name)

    async def sync(self, cluster: ClusterDescriptor) -> None:
        await self.backend.enqueue(cluster, self.name)

    async def do(self, task: InspectionTask) -> None:
        await self.backend.collect(task)


def new_feature_context(
    timeout: float = DEFAULT_COLLECT_TIMEOUT,
    tls_info: Optional[TLSInfo] = None,
    config: Optional[Dict[str, Any]] = None,
) -> FeatureContext:
    """Feature context backed by an in-memory backend with the request collector."""
    return FeatureContext(
        config=dict(config or {}),
        backend_factory=lambda: InMemoryInspectionBackend(
            collectors={
                RequestFeatureProvider.PROVIDER_NAME: RequestMetricsCollector(
                    timeout=timeout, tls_info=tls_info
                )
            }
        ),
    )
