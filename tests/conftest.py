"""
Pytest configuration and shared fixtures for swarmlock tests.

This module provides an in-memory swarm that several fake engines can
share, a fake clock/sleeper for polling loops, and file-backed lock
stores, so the coordinators can be exercised without AWS, a metadata
service or a docker daemon.
"""

import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Generator, List, Optional, Set

import pytest

# Add the parent directory to the path for imports
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from swarmlock.config.settings import CoordinatorConfig
from swarmlock.distributed.lock_store import FileLockStore
from swarmlock.distributed.models import JoinTokens, NodeLocalState
from swarmlock.distributed.polling import Poller
from swarmlock.engine.swarm_engine import OrchestrationEngine
from swarmlock.identity import StaticIdentitySource
from swarmlock.utils.error_handling import ClusterJoinError, EngineError, NetworkCreationError


FIXED_NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ===========================================================================
# Fake Clock
# ===========================================================================

class FakeClock:
    """Monotonic clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds

    @property
    def elapsed(self) -> float:
        return sum(self.sleeps)


# ===========================================================================
# Fake Swarm / Engine
# ===========================================================================

class FakeSwarm:
    """A single in-memory swarm shared by several FakeEngines."""

    def __init__(self):
        self.leader_address: Optional[str] = None
        self.manager_token = "SWMTKN-1-manager"
        self.worker_token = "SWMTKN-1-worker"
        self.members: List[str] = []
        self.networks: Set[str] = set()
        self.reachable = True

    @property
    def initialized(self) -> bool:
        return self.leader_address is not None


class FakeEngine(OrchestrationEngine):
    """Scripted OrchestrationEngine backed by a FakeSwarm."""

    def __init__(self, address: str, swarm: Optional[FakeSwarm] = None,
                 role: NodeLocalState = NodeLocalState.NOT_IN_CLUSTER):
        self.address = address
        self.swarm = swarm or FakeSwarm()
        self.role = role
        self.fail_init = False
        self.fail_network = False
        self.on_join: Optional[Callable[[str, str], None]] = None
        self.init_calls: List[str] = []
        self.join_calls: List[tuple] = []
        self.network_calls: List[str] = []
        self.networks_created = 0

    def local_role(self) -> NodeLocalState:
        return self.role

    def init_cluster(self, advertise_address: str) -> JoinTokens:
        self.init_calls.append(advertise_address)
        if self.fail_init:
            raise EngineError("swarm init failed", returncode=1)
        self.swarm.leader_address = advertise_address
        self.swarm.members.append(advertise_address)
        self.role = NodeLocalState.ACTIVE_LEADER
        return self.join_tokens()

    def join_tokens(self) -> JoinTokens:
        if self.role is not NodeLocalState.ACTIVE_LEADER:
            return JoinTokens()
        return JoinTokens(manager=self.swarm.manager_token, worker=self.swarm.worker_token)

    def join_cluster(self, token: str, leader_address: str, port: int = 2377) -> None:
        self.join_calls.append((token, leader_address, port))
        if self.on_join is not None:
            self.on_join(token, leader_address)
        if not self.swarm.reachable or leader_address != self.swarm.leader_address:
            raise ClusterJoinError(f"cannot reach {leader_address}:{port}")
        if token not in (self.swarm.manager_token, self.swarm.worker_token):
            raise ClusterJoinError("invalid join token")
        self.swarm.members.append(self.address)
        self.role = NodeLocalState.ACTIVE_FOLLOWER

    def ensure_overlay_network(self, name: str) -> bool:
        self.network_calls.append(name)
        if self.fail_network:
            raise NetworkCreationError(f"cannot create {name}")
        if name in self.swarm.networks:
            return False
        self.swarm.networks.add(name)
        self.networks_created += 1
        return True


# ===========================================================================
# Temporary Directory Fixtures
# ===========================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    tmpdir = tempfile.mkdtemp(prefix="swarmlock_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


# ===========================================================================
# Coordinator Fixtures
# ===========================================================================

@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def poller(fake_clock: FakeClock) -> Poller:
    """Poller with the default 10s interval that never really sleeps."""
    return Poller(10.0, clock=fake_clock.monotonic, sleeper=fake_clock.sleep)


@pytest.fixture
def config(temp_dir: Path) -> CoordinatorConfig:
    """File-backed configuration with default timings."""
    return CoordinatorConfig(
        lock_table="swarm-lock",
        cluster_name="auth-sample-cluster",
        lock_backend="file",
        lock_file_dir=str(temp_dir / "lock"),
    ).validate()


@pytest.fixture
def file_store(config: CoordinatorConfig) -> FileLockStore:
    return FileLockStore(config.lock_file_dir, table_name=config.lock_table)


@pytest.fixture
def swarm() -> FakeSwarm:
    return FakeSwarm()


@pytest.fixture
def engine_factory(swarm: FakeSwarm) -> Callable[..., FakeEngine]:
    """Create engines that share one swarm."""
    def factory(address: str, role: NodeLocalState = NodeLocalState.NOT_IN_CLUSTER) -> FakeEngine:
        return FakeEngine(address, swarm=swarm, role=role)
    return factory


@pytest.fixture
def identity_x() -> StaticIdentitySource:
    return StaticIdentitySource("i-0000000000000000x", "10.0.1.10")


@pytest.fixture
def identity_y() -> StaticIdentitySource:
    return StaticIdentitySource("i-0000000000000000y", "10.0.1.20")


# ===========================================================================
# Pytest Configuration
# ===========================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Tests spanning several components")
    config.addinivalue_line("markers", "slow: Slow tests (>1s)")
