"""
Cluster Joiner - joins the leader currently published in the lock row.

Each attempt re-reads the lock row, because the leader and its tokens
may change while a node is waiting. The freshest non-empty leader
address and token seen so far are kept, so a transient read failure or
a half-populated row does not throw away what is already known.
"""

import logging
from typing import Optional

from ..engine.swarm_engine import OrchestrationEngine
from ..utils.error_handling import ClusterJoinError, LockReadFailure
from .lock_store import LockStore
from .models import Bounded, JoinMode
from .polling import Poller

logger = logging.getLogger(__name__)


class ClusterJoiner:
    """Polls the lock row and joins the published leader."""

    def __init__(self, store: LockStore, engine: OrchestrationEngine, poller: Poller,
                 cluster_name: str, swarm_port: int, prefer_manager_token: bool = True):
        """
        Args:
            store: Lock record store
            engine: Local orchestration engine
            poller: Drives the retry loop
            cluster_name: Lock row key
            swarm_port: Leader's cluster management port
            prefer_manager_token: Join as manager-capable when a manager token
                                  is published (manager nodes), else worker-only
        """
        self.store = store
        self.engine = engine
        self.poller = poller
        self.cluster_name = cluster_name
        self.swarm_port = swarm_port
        self.prefer_manager_token = prefer_manager_token
        self.last_attempts = 0
        self.joined_address: Optional[str] = None

    def join(self, mode: JoinMode) -> bool:
        """
        Try to join until success or until the mode's deadline passes.

        Returns:
            True once joined; False if a bounded mode timed out. An
            unbounded mode only returns on success.
        """
        target_ip = ""
        token = ""
        self.last_attempts = 0
        self.joined_address = None

        for attempt in self.poller.attempts(mode):
            self.last_attempts = attempt

            try:
                lock = self.store.get_lock(self.cluster_name)
            except LockReadFailure as e:
                logger.warning(f"Join attempt {attempt}: could not refresh lock, using last known leader: {e}")
                lock = None

            if lock is not None:
                target_ip = lock.manager_private_ip or target_ip
                token = lock.join_token(prefer_manager=self.prefer_manager_token) or token

            if not target_ip or not token:
                logger.info(f"Join attempt {attempt}: waiting for a leader to publish its address and token")
                continue

            try:
                logger.info(f"Join attempt {attempt}: joining swarm at {target_ip}:{self.swarm_port}")
                self.engine.join_cluster(token, target_ip, self.swarm_port)
            except ClusterJoinError as e:
                logger.info(f"Join attempt {attempt} failed: {e}")
                continue

            self.joined_address = target_ip
            logger.info(
                "Joined existing swarm",
                extra={'extra_data': {'leader': target_ip, 'attempts': attempt}},
            )
            return True

        if isinstance(mode, Bounded):
            logger.warning(f"Join gave up after {self.last_attempts} attempts ({mode.timeout:g}s)")
        return False


__all__ = ['ClusterJoiner']
