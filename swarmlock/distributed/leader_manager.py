"""
Leader Manager - claims, renews and follows swarm leadership.

Run once per node on a recurring schedule (systemd timer or cron). Each
invocation derives the local node state from the engine and reconciles
it against the shared lock row:

    ACTIVE_LEADER     ensure the overlay network, renew the lease and
                      republish the join tokens
    NOT_IN_CLUSTER    claim leadership and initialize a new swarm, or
    PENDING_JOIN      join the leader published in the lock row
    ACTIVE_FOLLOWER   nothing to do

Mutual exclusion between nodes comes only from the lock store's
conditional update: a writer presents the lease value it just read, and
at most one writer presenting a given value can win. The lease timestamp
is never compared against the wall clock; a crashed leader's row is
reclaimed by the next node that reads its stale lease and wins the
conditional update against it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from ..config.settings import CoordinatorConfig
from ..constants import LockAttributes
from ..engine.swarm_engine import OrchestrationEngine
from ..identity import IdentitySource
from ..utils.error_handling import (
    ErrorCategory,
    ErrorSeverity,
    JoinTimeout,
    LockReadFailure,
    LockWriteFailure,
    handle_error,
    safe_execute,
)
from .joiner import ClusterJoiner
from .lock_store import LockStore
from .models import (
    Bounded,
    JoinTokens,
    NodeIdentity,
    NodeLocalState,
    Unbounded,
    lease_expiry,
    utc_now,
)
from .polling import Poller

logger = logging.getLogger(__name__)


class LeaderOutcome(Enum):
    """What a single invocation did."""
    RENEWED = "renewed"                 # leader, lease renewed
    RENEWAL_LOST = "renewal_lost"       # leader, another writer replaced the lease
    CLAIMED = "claimed"                 # won the claim, initialized a new swarm
    JOINED = "joined"                   # joined the published leader
    FOLLOWER = "follower"               # already a follower


@dataclass
class LeaderRunResult:
    """Result of LeaderManager.run()."""
    outcome: LeaderOutcome
    state: NodeLocalState
    identity: NodeIdentity
    lease: str = ""
    network_created: bool = False

    def to_dict(self) -> Dict[str, str]:
        return {
            'outcome': self.outcome.value,
            'state': self.state.value,
            'instance_id': self.identity.instance_id,
            'private_ip': self.identity.private_ip,
            'lease': self.lease,
        }


class LeaderManager:
    """
    Leadership coordinator for one node.

    All collaborators are injected so the state machine can be exercised
    without AWS, a metadata service, or a docker daemon.
    """

    def __init__(
        self,
        config: CoordinatorConfig,
        store: LockStore,
        engine: OrchestrationEngine,
        identity_source: IdentitySource,
        poller: Optional[Poller] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            config: Validated coordinator configuration
            store: Lock record store
            engine: Local orchestration engine
            identity_source: Resolves this node's instance id and private IP
            poller: Join loop driver (defaults to the configured poll interval)
            now: UTC clock used to compute lease timestamps
        """
        self.config = config
        self.store = store
        self.engine = engine
        self.identity_source = identity_source
        self.poller = poller or Poller(config.join_poll_interval_seconds)
        self.now = now
        self.joiner = ClusterJoiner(
            store, engine, self.poller,
            cluster_name=config.cluster_name,
            swarm_port=config.swarm_port,
            prefer_manager_token=True,
        )
        self._identity: Optional[NodeIdentity] = None

    @property
    def cluster_name(self) -> str:
        return self.config.cluster_name

    @property
    def network_name(self) -> str:
        return self.config.overlay_network_name

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def run(self) -> LeaderRunResult:
        """
        Reconcile this node against the lock row once.

        Returns:
            LeaderRunResult describing what happened

        Raises:
            IdentitySourceUnavailable: identity could not be resolved
            LockReadFailure: the lock row could not be read
            LockWriteFailure: a conditional update failed for a reason
                              other than losing the race
            EngineError: swarm init failed after winning the claim
            JoinTimeout: the bounded join loop expired
        """
        identity = self.identity_source.resolve()
        self._identity = identity

        state = self.engine.local_role()
        lock = self.store.get_lock(self.cluster_name)
        lease = lock.lease_expires_at if lock else ""

        logger.info(
            f"Node state: {state.value}",
            extra={'extra_data': {
                'instance_id': identity.instance_id,
                'cluster': self.cluster_name,
                'lease': lease or None,
            }},
        )

        if state is NodeLocalState.ACTIVE_LEADER:
            return self._renew(state, lease)

        if state is NodeLocalState.ACTIVE_FOLLOWER:
            logger.info("Node is an active follower; nothing to reconcile")
            return LeaderRunResult(LeaderOutcome.FOLLOWER, state, identity, lease)

        return self._bootstrap(state, lease)

    # -------------------------------------------------------------------------
    # Already leader
    # -------------------------------------------------------------------------

    def _renew(self, state: NodeLocalState, lease: str) -> LeaderRunResult:
        created = self._ensure_network()
        new_lease = lease_expiry(self.config.lease_seconds, self.now())

        if self._write_lock(new_lease, lease, self.engine.join_tokens()):
            logger.info(f"Leader lease renewed until {new_lease}")
            return LeaderRunResult(LeaderOutcome.RENEWED, state, self._identity,
                                   new_lease, network_created=created)

        logger.warning(
            f"Lease renewal lost: lease {lease or '(none)'} was replaced by another writer",
        )
        return LeaderRunResult(LeaderOutcome.RENEWAL_LOST, state, self._identity,
                               lease, network_created=created)

    # -------------------------------------------------------------------------
    # Not in cluster
    # -------------------------------------------------------------------------

    def _bootstrap(self, state: NodeLocalState, lease: str) -> LeaderRunResult:
        logger.info("Node is not in a swarm; attempting to claim leadership")
        if self.claim(lease):
            return self._initialize_swarm(state)

        logger.info("Claim lost; joining the existing swarm")
        if self.joiner.join(Unbounded()):
            return LeaderRunResult(LeaderOutcome.JOINED, state, self._identity, lease)

        logger.info("Join abandoned; attempting to claim leadership again")
        if self.claim(lease):
            return self._initialize_swarm(state)

        timeout = self.config.join_timeout_seconds
        logger.info(f"Second claim lost; joining with a {timeout:g}s deadline")
        if self.joiner.join(Bounded(timeout)):
            return LeaderRunResult(LeaderOutcome.JOINED, state, self._identity, lease)

        raise JoinTimeout(
            f"Failed to join swarm within {timeout:g}s",
            timeout=timeout,
            attempts=self.joiner.last_attempts,
        )

    def claim(self, expected_lease: str) -> bool:
        """
        Conditionally write this node as leader.

        Args:
            expected_lease: The lease value just read, or "" when no row exists

        Returns:
            True if the claim won, False if another writer got there first
        """
        new_lease = lease_expiry(self.config.lease_seconds, self.now())
        won = self._write_lock(new_lease, expected_lease)
        if won:
            logger.info(
                f"Claimed leadership of {self.cluster_name}",
                extra={'extra_data': {'lease': new_lease}},
            )
        else:
            logger.info(f"Leadership claim for {self.cluster_name} rejected")
        return won

    def _initialize_swarm(self, state: NodeLocalState) -> LeaderRunResult:
        identity = self._identity
        logger.info(f"Initializing swarm advertising {identity.private_ip}")
        tokens = self.engine.init_cluster(identity.private_ip)
        created = self._ensure_network()

        # Best effort: the next renewal republishes the tokens.
        lease = ""
        try:
            lock = self.store.get_lock(self.cluster_name)
            previous = lock.lease_expires_at if lock else ""
            lease = lease_expiry(self.config.lease_seconds, self.now())
            if not self._write_lock(lease, previous, tokens):
                logger.warning("Join token publication lost a race; next renewal will republish")
        except (LockReadFailure, LockWriteFailure) as e:
            handle_error(e, "publishing join tokens",
                         category=ErrorCategory.LOCK_STORE,
                         severity=ErrorSeverity.WARNING)

        logger.info(f"Swarm initialized; leader is {identity.instance_id}")
        return LeaderRunResult(LeaderOutcome.CLAIMED, state, identity, lease,
                               network_created=created)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def lease_update_attributes(self, new_lease: str,
                                tokens: Optional[JoinTokens] = None) -> Dict[str, str]:
        """Attributes written on claim and renewal."""
        identity = self._identity
        attributes = {
            LockAttributes.MANAGER_INSTANCE_ID: identity.instance_id,
            LockAttributes.MANAGER_PRIVATE_IP: identity.private_ip,
            LockAttributes.LEASE_EXPIRES_AT: new_lease,
        }
        if self.network_name:
            attributes[LockAttributes.OVERLAY_NETWORK_NAME] = self.network_name
        if tokens is not None and tokens.complete:
            attributes[LockAttributes.JOIN_TOKEN_MANAGER] = tokens.manager
            attributes[LockAttributes.JOIN_TOKEN_WORKER] = tokens.worker
        return attributes

    def _write_lock(self, new_lease: str, expected_lease: str,
                    tokens: Optional[JoinTokens] = None) -> bool:
        return self.store.conditional_update(
            self.cluster_name,
            self.lease_update_attributes(new_lease, tokens),
            expected_lease or None,
        )

    def _ensure_network(self) -> bool:
        if not self.network_name:
            return False
        with safe_execute(f"ensuring overlay network '{self.network_name}'",
                          ErrorCategory.ENGINE, default_return=False) as result:
            result.value = self.engine.ensure_overlay_network(self.network_name)
        created = result.value
        if created:
            logger.info(f"Created overlay network '{self.network_name}'")
        return created


__all__ = [
    'LeaderManager',
    'LeaderOutcome',
    'LeaderRunResult',
]
