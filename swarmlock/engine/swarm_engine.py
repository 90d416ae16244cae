"""
Swarm Engine Adapter - wraps the local Docker Engine in swarm mode.

The coordinator only needs the narrow OrchestrationEngine contract:
local role, cluster init, join tokens, join, and idempotent overlay
network creation. DockerSwarmEngine additionally exposes the secret,
config, stack and container queries used by the deployment hooks.

All calls go through the docker CLI on the local host; every call is
synchronous and bounded by a timeout.
"""

import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ..constants import Defaults, Timeouts
from ..distributed.models import JoinTokens, NodeLocalState
from ..utils.error_handling import ClusterJoinError, EngineError, NetworkCreationError

logger = logging.getLogger(__name__)


class OrchestrationEngine(ABC):
    """Local orchestration engine contract used by the coordinator."""

    @abstractmethod
    def local_role(self) -> NodeLocalState:
        """Membership of this node, derived in a single query."""
        pass

    @abstractmethod
    def init_cluster(self, advertise_address: str) -> JoinTokens:
        """
        Initialize a new cluster with this node as its leader.

        Raises:
            EngineError: init failed
        """
        pass

    @abstractmethod
    def join_tokens(self) -> JoinTokens:
        """Current join tokens (empty strings when not a manager)."""
        pass

    @abstractmethod
    def join_cluster(self, token: str, leader_address: str, port: int = Defaults.SWARM_PORT) -> None:
        """
        Join an existing cluster.

        Raises:
            ClusterJoinError: the join attempt failed
        """
        pass

    @abstractmethod
    def ensure_overlay_network(self, name: str) -> bool:
        """
        Create the attachable overlay network if it does not exist.

        Returns:
            True if the network was created, False if it already existed

        Raises:
            NetworkCreationError: creation failed
        """
        pass


@dataclass
class CommandResult:
    """Outcome of one docker CLI call."""
    args: Sequence[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return self.stdout.strip()

    @property
    def lines(self) -> List[str]:
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]

    def describe_failure(self) -> str:
        detail = self.stderr.strip() or self.stdout.strip() or f"exit code {self.returncode}"
        return f"`{' '.join(self.args[:3])}` failed: {detail}"


class DockerSwarmEngine(OrchestrationEngine):
    """Docker Engine in swarm mode, driven through the docker CLI."""

    def __init__(self, docker_bin: str = 'docker',
                 timeout: float = Timeouts.ENGINE_DEFAULT,
                 runner: Optional[Callable[..., subprocess.CompletedProcess]] = None):
        """
        Args:
            docker_bin: docker executable
            timeout: Default per-call timeout in seconds
            runner: subprocess.run compatible callable (tests)
        """
        self.docker_bin = docker_bin
        self.timeout = timeout
        self._runner = runner

    def _run(self, *args: str, timeout: Optional[float] = None) -> CommandResult:
        cmd = [self.docker_bin, *args]
        runner = self._runner or subprocess.run
        try:
            proc = runner(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"docker {' '.join(args[:2])} timed out")
            return CommandResult(cmd, 124, '', 'timed out')
        except OSError as e:
            return CommandResult(cmd, 127, '', str(e))

        result = CommandResult(cmd, proc.returncode, proc.stdout or '', proc.stderr or '')
        if not result.ok:
            logger.debug(result.describe_failure())
        return result

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def local_node_state(self) -> str:
        """Raw swarm LocalNodeState (inactive, pending, active, error, locked)."""
        result = self._run('info', '--format', '{{.Swarm.LocalNodeState}}',
                           timeout=Timeouts.ENGINE_SHORT)
        return result.output.lower() if result.ok and result.output else 'inactive'

    def is_leader(self) -> bool:
        result = self._run('node', 'inspect', 'self', '--format', '{{ .ManagerStatus.Leader }}',
                           timeout=Timeouts.ENGINE_SHORT)
        return result.ok and result.output.lower() == 'true'

    def local_role(self) -> NodeLocalState:
        if self.is_leader():
            return NodeLocalState.ACTIVE_LEADER

        state = self.local_node_state()
        if state == 'active':
            return NodeLocalState.ACTIVE_FOLLOWER
        if state == 'pending':
            return NodeLocalState.PENDING_JOIN
        return NodeLocalState.NOT_IN_CLUSTER

    # -------------------------------------------------------------------------
    # Cluster lifecycle
    # -------------------------------------------------------------------------

    def init_cluster(self, advertise_address: str) -> JoinTokens:
        result = self._run('swarm', 'init', '--advertise-addr', advertise_address)
        if not result.ok:
            raise EngineError(f"Swarm init failed: {result.describe_failure()}",
                              returncode=result.returncode)
        return self.join_tokens()

    def join_tokens(self) -> JoinTokens:
        worker = self._run('swarm', 'join-token', '-q', 'worker', timeout=Timeouts.ENGINE_SHORT)
        manager = self._run('swarm', 'join-token', '-q', 'manager', timeout=Timeouts.ENGINE_SHORT)
        return JoinTokens(
            manager=manager.output if manager.ok else '',
            worker=worker.output if worker.ok else '',
        )

    def join_cluster(self, token: str, leader_address: str, port: int = Defaults.SWARM_PORT) -> None:
        if not token or not leader_address:
            raise ClusterJoinError("Join requires a token and a leader address")

        result = self._run('swarm', 'join', '--token', token, f'{leader_address}:{port}')
        if not result.ok:
            raise ClusterJoinError(
                f"Join to {leader_address}:{port} failed: {result.describe_failure()}",
                returncode=result.returncode,
            )

    # -------------------------------------------------------------------------
    # Networks
    # -------------------------------------------------------------------------

    def network_exists(self, name: str) -> bool:
        return self._run('network', 'inspect', name, timeout=Timeouts.ENGINE_SHORT).ok

    def ensure_overlay_network(self, name: str) -> bool:
        if self.network_exists(name):
            logger.debug(f"Overlay network '{name}' already exists")
            return False

        result = self._run('network', 'create', '--driver', 'overlay', '--attachable', name)
        if result.ok:
            return True

        # Lost a create race with another manager
        if self.network_exists(name):
            return False

        raise NetworkCreationError(
            f"Failed to create overlay network '{name}': {result.describe_failure()}",
            returncode=result.returncode,
        )

    # -------------------------------------------------------------------------
    # Secrets and configs (deployment hooks)
    # -------------------------------------------------------------------------

    def secret_exists(self, name: str) -> bool:
        return self._run('secret', 'inspect', name, timeout=Timeouts.ENGINE_SHORT).ok

    def config_exists(self, name: str) -> bool:
        return self._run('config', 'inspect', name, timeout=Timeouts.ENGINE_SHORT).ok

    def create_config(self, name: str, path: str) -> None:
        result = self._run('config', 'create', name, path)
        if not result.ok:
            raise EngineError(f"Failed to create config '{name}': {result.describe_failure()}",
                              returncode=result.returncode)

    def list_configs(self) -> List[str]:
        result = self._run('config', 'ls', '--format', '{{.Name}}', timeout=Timeouts.ENGINE_SHORT)
        if not result.ok:
            raise EngineError(f"Failed to list configs: {result.describe_failure()}",
                              returncode=result.returncode)
        return result.lines

    def remove_config(self, name: str) -> bool:
        return self._run('config', 'rm', name).ok

    # -------------------------------------------------------------------------
    # Stacks, services and containers (deployment hooks)
    # -------------------------------------------------------------------------

    def stack_deploy(self, compose_file: str, stack_name: str) -> None:
        result = self._run('stack', 'deploy', '--with-registry-auth',
                           '--compose-file', compose_file, stack_name,
                           timeout=Timeouts.ENGINE_DEPLOY)
        if not result.ok:
            raise EngineError(f"Stack deploy of '{stack_name}' failed: {result.describe_failure()}",
                              returncode=result.returncode)

    def stack_task_states(self, stack_name: str, desired_running: bool = False) -> List[str]:
        """CurrentState of each task of a stack, e.g. 'Running 2 minutes ago'."""
        args = ['stack', 'ps', stack_name]
        if desired_running:
            args += ['--filter', 'desired-state=running']
        args += ['--format', '{{.CurrentState}}']
        result = self._run(*args, timeout=Timeouts.ENGINE_SHORT)
        return result.lines if result.ok else []

    def service_state(self, service_label: str) -> Optional[str]:
        """CurrentState of the first task of the service labelled service=<label>."""
        services = self._run('service', 'ls', '--filter', f'label=service={service_label}',
                             '--format', '{{.ID}}', timeout=Timeouts.ENGINE_SHORT)
        if not services.ok or not services.lines:
            return None

        tasks = self._run('service', 'ps', services.lines[0], '--format', '{{.CurrentState}}',
                          timeout=Timeouts.ENGINE_SHORT)
        return tasks.lines[0] if tasks.ok and tasks.lines else None

    def service_containers(self, service_name: str) -> List[str]:
        result = self._run('ps', '-q', '--filter',
                           f'label=com.docker.swarm.service.name={service_name}',
                           timeout=Timeouts.ENGINE_SHORT)
        return result.lines if result.ok else []

    def container_health(self, container_id: str) -> str:
        """healthy / unhealthy / starting, or 'none' for images without a HEALTHCHECK."""
        result = self._run(
            'inspect', '--format',
            '{{if .State.Health}}{{.State.Health.Status}}{{else}}none{{end}}',
            container_id,
            timeout=Timeouts.ENGINE_SHORT,
        )
        return result.output if result.ok and result.output else 'unknown'


__all__ = [
    'OrchestrationEngine',
    'DockerSwarmEngine',
    'CommandResult',
]
