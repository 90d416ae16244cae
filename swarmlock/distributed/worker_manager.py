"""
Worker Manager - keeps a worker-only node joined to the swarm.

Worker nodes never compete for leadership. Each scheduled run checks
local membership and, when the node is outside the swarm, joins the
leader published in the lock row using the worker token.
"""

import logging
from typing import Optional

from ..config.settings import CoordinatorConfig
from ..engine.swarm_engine import OrchestrationEngine
from ..utils.error_handling import JoinTimeout
from .joiner import ClusterJoiner
from .lock_store import LockStore
from .models import Bounded, NodeLocalState
from .polling import Poller

logger = logging.getLogger(__name__)


class WorkerManager:
    """Joins this node to the swarm as a worker when it is not a member."""

    def __init__(self, config: CoordinatorConfig, store: LockStore,
                 engine: OrchestrationEngine, poller: Optional[Poller] = None):
        self.config = config
        self.engine = engine
        self.joiner = ClusterJoiner(
            store, engine, poller or Poller(config.join_poll_interval_seconds),
            cluster_name=config.cluster_name,
            swarm_port=config.swarm_port,
            prefer_manager_token=False,
        )

    def run(self) -> NodeLocalState:
        """
        Join the swarm if needed.

        Returns:
            The local state observed at the start of the run

        Raises:
            JoinTimeout: the leader could not be joined before the deadline
        """
        state = self.engine.local_role()
        if state is not NodeLocalState.NOT_IN_CLUSTER:
            logger.info(f"Node already in swarm ({state.value}); nothing to do")
            return state

        timeout = self.config.join_timeout_seconds
        logger.info(f"Node not in swarm; joining as worker (deadline {timeout:g}s)")
        if not self.joiner.join(Bounded(timeout)):
            raise JoinTimeout(
                f"Timed out joining swarm as worker after {timeout:g}s; will retry next run",
                timeout=timeout,
                attempts=self.joiner.last_attempts,
            )
        return state


__all__ = ['WorkerManager']
