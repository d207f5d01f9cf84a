"""
Cluster health aggregation.

Member endpoints come from a MemberDiscovery, per-member health from a
HealthProber, and compute_status() folds them into one ClusterStatus.
The folding rules never downgrade a cluster on an inconclusive probe
unless it was already Running, which keeps phases from flapping.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from providers.base import (
    ANNO_EXT_CLIENT_URL,
    ANNO_IMPORTED_URI,
    ClusterDescriptor,
    ClusterPhase,
    ClusterStatus,
    MemberHealth,
    MemberRole,
    MemberStatus,
    TLSInfo,
)

logger = logging.getLogger(__name__)


class ProbeError(Exception):
    """A member answered, but not with something we can interpret."""


# Failures that mean "the probe could not complete"
PROBE_ERRORS = (ProbeError, aiohttp.ClientError, asyncio.TimeoutError, OSError)


class MemberDiscovery(ABC):
    """Resolves the client endpoints of a cluster's members."""

    @abstractmethod
    async def endpoints(self, cluster: ClusterDescriptor) -> List[str]:
        """
        Return the currently known member endpoints.

        An empty list means no member is known yet.
        """
        pass


class HealthProber(ABC):
    """Probes members for health."""

    @abstractmethod
    async def probe(
        self,
        endpoints: List[str],
        ext_client_url: str = "",
        tls_info: Optional[TLSInfo] = None,
    ) -> List[MemberHealth]:
        """
        Return one MemberHealth per cluster member.

        Raises:
            ProbeError, aiohttp.ClientError, asyncio.TimeoutError: If no
                endpoint could be used to list members
        """
        pass


class StatusMemberDiscovery(MemberDiscovery):
    """Uses the client URLs recorded in the cluster's last status."""

    async def endpoints(self, cluster: ClusterDescriptor) -> List[str]:
        return [m.client_url for m in cluster.status.members if m.client_url]


def aggregate_phase(members: List[MemberHealth], size: int) -> ClusterPhase:
    """Running when every declared member is present and healthy."""
    if len(members) == size and all(m.healthy for m in members):
        return ClusterPhase.RUNNING
    return ClusterPhase.UNKNOWN


def next_phase(previous: ClusterPhase, candidate: ClusterPhase) -> ClusterPhase:
    """Only a Running cluster may be moved to Unknown."""
    if previous is ClusterPhase.RUNNING or candidate is not ClusterPhase.UNKNOWN:
        return candidate
    return previous


async def compute_status(
    cluster: ClusterDescriptor,
    discovery: MemberDiscovery,
    prober: HealthProber,
    tls_info: Optional[TLSInfo] = None,
) -> Tuple[ClusterStatus, Optional[Exception]]:
    """
    Recompute the status of a cluster.

    Args:
        cluster: The cluster, carrying its previous status
        discovery: Member endpoint discovery
        prober: Member health prober
        tls_info: Client TLS material for the probe

    Returns:
        Tuple of (status, probe_error). The status is always usable; the
        error, when set, is the probe failure behind a conservative phase.
    """
    status = cluster.status.model_copy(deep=True)

    endpoints = await discovery.endpoints(cluster)
    if not endpoints:
        addr = cluster.annotations.get(ANNO_IMPORTED_URI)
        if not addr:
            status.phase = ClusterPhase.CREATING
            return status, None
        endpoints = [addr]
        status.service_name = addr

    error: Optional[Exception] = None
    try:
        members = await prober.probe(
            endpoints, cluster.annotations.get(ANNO_EXT_CLIENT_URL, ""), tls_info
        )
    except PROBE_ERRORS as e:
        logger.warning(f"Failed to probe cluster {cluster.namespace}/{cluster.name}: {e}")
        members, error = [], e

    if not members or len(members) != cluster.size:
        if status.phase is ClusterPhase.RUNNING:
            status.phase = ClusterPhase.UNKNOWN
        return status, error

    status.members = [MemberStatus.from_health(m) for m in members]
    status.phase = next_phase(status.phase, aggregate_phase(members, cluster.size))
    return status, None


def parse_ext_client_url(value: str) -> Dict[str, str]:
    """Parse "host:port->host:port,..." into a rewrite map."""
    mapping = {}
    for pair in value.split(","):
        if "->" not in pair:
            continue
        src, dst = pair.split("->", 1)
        if src.strip() and dst.strip():
            mapping[src.strip()] = dst.strip()
    return mapping


def rewrite_client_url(url: str, mapping: Dict[str, str]) -> str:
    """Replace the host:port of a URL according to an extClientURL map."""
    parts = urlsplit(url)
    target = mapping.get(parts.netloc)
    if not target:
        return url
    return urlunsplit(parts._replace(netloc=target))


def _to_int(value: Any) -> Optional[int]:
    # the JSON gateway encodes 64-bit integers as strings
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class EtcdHTTPProber(HealthProber):
    """
    Probes members through the etcd v3 JSON gateway.

    The member list is read from the first endpoint that answers, then each
    member's own client URL is asked for its maintenance status.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def _url(self, endpoint: str, tls_info: Optional[TLSInfo]) -> str:
        if "://" in endpoint:
            return endpoint.rstrip("/")
        scheme = "http" if tls_info is None else "https"
        return f"{scheme}://{endpoint}"

    async def _post(
        self, session: aiohttp.ClientSession, url: str, path: str
    ) -> Dict[str, Any]:
        async with session.post(f"{url}{path}", json={}) as response:
            if response.status != 200:
                raise ProbeError(
                    f"{url}{path} returned {response.status}: {await response.text()}"
                )
            try:
                payload = await response.json(content_type=None)
            except ValueError as e:
                raise ProbeError(f"{url}{path} returned invalid JSON: {e}") from e
            if not isinstance(payload, dict):
                raise ProbeError(f"{url}{path} returned a non-object payload")
            return payload

    async def _member_list(
        self,
        session: aiohttp.ClientSession,
        endpoints: List[str],
        tls_info: Optional[TLSInfo],
    ) -> List[Dict[str, Any]]:
        last_error: Optional[Exception] = None
        for endpoint in endpoints:
            url = self._url(endpoint, tls_info)
            try:
                payload = await self._post(session, url, "/v3/cluster/member/list")
            except PROBE_ERRORS as e:
                logger.debug(f"Member list from {url} failed: {e}")
                last_error = e
                continue
            members = payload.get("members")
            if not isinstance(members, list):
                raise ProbeError(f"{url} returned no member list")
            return members
        raise last_error or ProbeError("No endpoints to probe")

    async def _member_health(
        self,
        session: aiohttp.ClientSession,
        member: Dict[str, Any],
        mapping: Dict[str, str],
    ) -> MemberHealth:
        member_id = str(member.get("ID", ""))
        health = MemberHealth(name=member.get("name", ""), member_id=member_id)
        client_urls = member.get("clientURLs") or []
        if not client_urls:
            health.error = "member has not started"
            return health

        health.endpoint = rewrite_client_url(client_urls[0], mapping)
        try:
            payload = await self._post(session, health.endpoint, "/v3/maintenance/status")
        except PROBE_ERRORS as e:
            logger.warning(f"Member {health.name} ({health.endpoint}) is unhealthy: {e}")
            health.error = str(e)
            return health

        header = payload.get("header") or {}
        if member.get("isLearner"):
            health.role = MemberRole.LEARNER
        elif str(payload.get("leader", "")) == str(header.get("member_id", member_id)):
            health.role = MemberRole.LEADER
        else:
            health.role = MemberRole.FOLLOWER
        health.version = payload.get("version", "")
        health.raft_term = _to_int(payload.get("raftTerm", header.get("raft_term")))
        health.raft_index = _to_int(payload.get("raftIndex"))
        health.healthy = True
        return health

    async def probe(
        self,
        endpoints: List[str],
        ext_client_url: str = "",
        tls_info: Optional[TLSInfo] = None,
    ) -> List[MemberHealth]:
        ssl_option: Any = True
        if tls_info is not None:
            ssl_option = tls_info.to_ssl_context()

        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            connector=aiohttp.TCPConnector(ssl=ssl_option),
        ) as session:
            members = await self._member_list(session, endpoints, tls_info)
            mapping = parse_ext_client_url(ext_client_url)
            return list(
                await asyncio.gather(
                    *(self._member_health(session, m, mapping) for m in members)
                )
            )
