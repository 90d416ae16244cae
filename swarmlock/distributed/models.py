"""
Cluster Models - the shared lock record and the per-node derived state.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional, Union

from ..constants import LockAttributes, LEASE_TIMESTAMP_FORMAT


@dataclass(frozen=True)
class ClusterLock:
    """
    The single lock row of a cluster, keyed by cluster name.

    Every attribute except the key may be absent in the store; absent
    attributes are represented as empty strings.
    """
    cluster_name: str
    lease_expires_at: str = ""
    manager_instance_id: str = ""
    manager_private_ip: str = ""
    swarm_join_token_manager: str = ""
    swarm_join_token_worker: str = ""
    swarm_overlay_network_name: str = ""

    @classmethod
    def from_item(cls, item: Dict[str, str], cluster_name: Optional[str] = None) -> 'ClusterLock':
        """Build from a plain attribute mapping (already deserialized)."""
        return cls(
            cluster_name=item.get(LockAttributes.CLUSTER_NAME) or cluster_name or "",
            lease_expires_at=item.get(LockAttributes.LEASE_EXPIRES_AT) or "",
            manager_instance_id=item.get(LockAttributes.MANAGER_INSTANCE_ID) or "",
            manager_private_ip=item.get(LockAttributes.MANAGER_PRIVATE_IP) or "",
            swarm_join_token_manager=item.get(LockAttributes.JOIN_TOKEN_MANAGER) or "",
            swarm_join_token_worker=item.get(LockAttributes.JOIN_TOKEN_WORKER) or "",
            swarm_overlay_network_name=item.get(LockAttributes.OVERLAY_NETWORK_NAME) or "",
        )

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @property
    def has_leader_address(self) -> bool:
        return bool(self.manager_private_ip)

    def join_token(self, prefer_manager: bool = True) -> str:
        """
        Token a joining node should present.

        Join tokens are only meaningful once a leader address is published.
        """
        if not self.has_leader_address:
            return ""
        if prefer_manager:
            return self.swarm_join_token_manager or self.swarm_join_token_worker
        return self.swarm_join_token_worker


class NodeLocalState(Enum):
    """Local membership of this node, derived from the engine on every run."""
    NOT_IN_CLUSTER = "not_in_cluster"
    PENDING_JOIN = "pending_join"
    ACTIVE_LEADER = "active_leader"
    ACTIVE_FOLLOWER = "active_follower"

    @property
    def in_cluster(self) -> bool:
        return self in (NodeLocalState.ACTIVE_LEADER, NodeLocalState.ACTIVE_FOLLOWER)


@dataclass(frozen=True)
class JoinTokens:
    """Join credentials issued by the leader's engine."""
    manager: str = ""
    worker: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.manager and self.worker)


@dataclass(frozen=True)
class NodeIdentity:
    """Stable identifier and private address of this host."""
    instance_id: str
    private_ip: str


# =============================================================================
# JOIN MODE
# =============================================================================

@dataclass(frozen=True)
class Bounded:
    """Give up joining after `timeout` seconds of wall-clock time."""
    timeout: float

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError(f"join timeout must be positive, got {self.timeout}")


@dataclass(frozen=True)
class Unbounded:
    """Keep trying to join until it succeeds or the process is terminated."""
    pass


JoinMode = Union[Bounded, Unbounded]


# =============================================================================
# LEASE TIMESTAMPS
# =============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_lease(moment: datetime) -> str:
    """Render a lease timestamp (UTC, second precision, `Z` suffix)."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(LEASE_TIMESTAMP_FORMAT)


def lease_expiry(lease_seconds: int, now: Optional[datetime] = None) -> str:
    """Lease timestamp `lease_seconds` from now."""
    now = now or utc_now()
    return format_lease(now + timedelta(seconds=lease_seconds))


__all__ = [
    'ClusterLock',
    'NodeLocalState',
    'JoinTokens',
    'NodeIdentity',
    'Bounded',
    'Unbounded',
    'JoinMode',
    'utc_now',
    'format_lease',
    'lease_expiry',
]
