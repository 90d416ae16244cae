"""
Deployment Hooks - rolling stack updates that read the cluster lock row.

Each hook is an independent process started by the deployment agent
(BeforeInstall, ApplicationStart, ValidateService). The hooks consume the
lock row only to learn the overlay network name; nothing they do feeds
back into leadership.

ApplicationStart:
    1. publish versioned docker configs from the revision's configs/
    2. pick the newest certificate bundle whose secrets all exist
    3. render the stack manifest and deploy it
    4. wait for tasks to leave Starting, then prune old config versions

ValidateService:
    wait until every desired-running task is Running, then until every
    service container reports healthy (or has no HEALTHCHECK)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from ..config.settings import parse_env_file
from ..constants import (
    CONFIG_FILE_SUFFIXES,
    MANIFEST_PLACEHOLDERS,
    Defaults,
    DeploymentPaths,
    Retries,
    Timeouts,
)
from ..distributed.lock_store import LockStore
from ..distributed.models import ClusterLock
from ..distributed.polling import Poller
from ..engine.swarm_engine import DockerSwarmEngine
from ..utils.error_handling import ConfigurationError, DeploymentError, EngineError

logger = logging.getLogger(__name__)


# Variables each hook needs from the hook environment
BEFORE_INSTALL_VARS = ('STACK_FILE', 'SERVICE_NAME', 'ENVIRONMENT')
APPLICATION_START_VARS = ('STACK_FILE', 'SERVICE_NAME', 'VERSION', 'ENVIRONMENT')
VALIDATE_SERVICE_VARS = ('SERVICE_NAME',)


@dataclass
class DeploymentContext:
    """Where the revision lives and what it deploys."""
    archive_root: Path
    deployment_group_id: str = ""
    deployment_id: str = ""
    stack_file: str = ""
    service_name: str = ""
    version: str = ""
    environment: str = ""

    @property
    def config_dir(self) -> Path:
        return self.archive_root / DeploymentPaths.CONFIG_DIR_NAME

    @property
    def stack_source(self) -> Path:
        return self.archive_root / self.stack_file

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None,
                         required: Sequence[str] = APPLICATION_START_VARS) -> 'DeploymentContext':
        """
        Build the context from the hook environment.

        The archive root is derived from DEPLOYMENT_GROUP_ID and
        DEPLOYMENT_ID unless DEPLOYMENT_ARCHIVE_ROOT is set. Values from
        the revision's scripts/env.sh fill in anything the process
        environment does not provide.

        Raises:
            ConfigurationError: a required variable is missing
        """
        environ = os.environ if environ is None else environ

        archive_root = environ.get('DEPLOYMENT_ARCHIVE_ROOT')
        group_id = environ.get('DEPLOYMENT_GROUP_ID', '')
        deployment_id = environ.get('DEPLOYMENT_ID', '')
        if not archive_root:
            missing = [name for name, value in (('DEPLOYMENT_GROUP_ID', group_id),
                                                ('DEPLOYMENT_ID', deployment_id)) if not value]
            if missing:
                raise ConfigurationError(f"Missing {', '.join(missing)}")
            archive_root = os.path.join(DeploymentPaths.DEPLOYMENT_ROOT, group_id,
                                        deployment_id, DeploymentPaths.ARCHIVE_DIR_NAME)
        archive_root = Path(archive_root)

        values: Dict[str, str] = {}
        hook_env = archive_root / DeploymentPaths.HOOK_ENV_FILE
        if hook_env.is_file():
            values.update(parse_env_file(hook_env))
        else:
            logger.debug(f"No hook env file at {hook_env}")
        values.update({key: value for key, value in environ.items() if value})

        missing = [name for name in required if not values.get(name)]
        if missing:
            raise ConfigurationError(f"Missing {', '.join(missing)}")

        return cls(
            archive_root=archive_root,
            deployment_group_id=group_id,
            deployment_id=deployment_id,
            stack_file=values.get('STACK_FILE', ''),
            service_name=values.get('SERVICE_NAME', ''),
            version=values.get('VERSION', ''),
            environment=values.get('ENVIRONMENT', ''),
        )


def config_base_name(path: Path) -> str:
    """Docker config name stem for a config file: extension dropped, dots -> underscores."""
    return path.stem.replace('.', '_')


def render_manifest(text: str, values: Mapping[str, str]) -> str:
    """
    Substitute the known ${PLACEHOLDER} tokens in a stack manifest.

    Only the names in MANIFEST_PLACEHOLDERS are replaced; every other `$`
    sequence (compose interpolation, `$$` escapes) is left untouched.
    """
    for name in MANIFEST_PLACEHOLDERS:
        if name in values:
            text = text.replace('${' + name + '}', str(values[name]))
    return text


class DeploymentHooks:
    """The three deployment lifecycle hooks for one revision."""

    def __init__(
        self,
        context: DeploymentContext,
        store: LockStore,
        engine: DockerSwarmEngine,
        cluster_name: str,
        poller: Optional[Poller] = None,
        cert_dir: str = Defaults.CERT_DIR,
        staging_dir: str = DeploymentPaths.STAGING_DIR,
    ):
        self.context = context
        self.store = store
        self.engine = engine
        self.cluster_name = cluster_name
        self.poller = poller or Poller(Timeouts.TASK_POLL_INTERVAL)
        self.cert_dir = Path(cert_dir)
        self.staging_dir = Path(staging_dir)

    @property
    def service_name(self) -> str:
        return self.context.service_name

    # -------------------------------------------------------------------------
    # Lock row
    # -------------------------------------------------------------------------

    def read_cluster_lock(self) -> Optional[ClusterLock]:
        return self.store.get_lock(self.cluster_name)

    def resolve_network_name(self) -> str:
        lock = self.read_cluster_lock()
        if lock is None:
            raise DeploymentError(f"No lock row for cluster '{self.cluster_name}'")
        if not lock.swarm_overlay_network_name:
            raise DeploymentError("Network name not found in cluster lock row")
        logger.info(f"Overlay network from cluster lock: {lock.swarm_overlay_network_name}")
        return lock.swarm_overlay_network_name

    def verify_network(self, name: str) -> None:
        if not self.engine.network_exists(name):
            raise DeploymentError(f"Required overlay network '{name}' not found")
        logger.info(f"Overlay network '{name}' exists")

    # -------------------------------------------------------------------------
    # Certificates
    # -------------------------------------------------------------------------

    def select_certificate_timestamp(self, cert_dir: Optional[Path] = None) -> str:
        """
        Newest certificate bundle that is fully published as secrets.

        Bundles live in numeric subdirectories (timestamps). A bundle is
        usable when it holds at least one file and every file `f` has a
        matching secret `f_<timestamp>`.
        """
        cert_dir = Path(cert_dir) if cert_dir else self.cert_dir
        if not cert_dir.is_dir():
            raise DeploymentError(f"Certificate directory not found: {cert_dir}")

        candidates = sorted(
            (entry for entry in cert_dir.iterdir() if entry.is_dir() and entry.name.isdigit()),
            key=lambda entry: int(entry.name),
            reverse=True,
        )

        for bundle in candidates:
            files = sorted(entry.name for entry in bundle.iterdir() if entry.is_file())
            if not files:
                continue

            missing = next((f for f in files
                            if not self.engine.secret_exists(f"{f}_{bundle.name}")), None)
            if missing is None:
                logger.info(f"Using certificate bundle {bundle.name}")
                return bundle.name
            logger.debug(f"Bundle {bundle.name} incomplete: no secret {missing}_{bundle.name}")

        raise DeploymentError(f"No valid certificate timestamp found in {cert_dir}")

    # -------------------------------------------------------------------------
    # Docker configs
    # -------------------------------------------------------------------------

    def _config_files(self, config_dir: Path) -> List[Path]:
        if not config_dir.is_dir():
            return []
        return sorted(path for path in config_dir.iterdir()
                      if path.is_file() and path.suffix in CONFIG_FILE_SUFFIXES)

    def publish_versioned_configs(self, config_dir: Optional[Path] = None,
                                  version: Optional[str] = None) -> List[str]:
        """
        Create `<base>_config_<version>` for each config file, reusing existing ones.

        Returns:
            Names of the configs for this version
        """
        config_dir = Path(config_dir) if config_dir else self.context.config_dir
        version = version or self.context.version
        if not config_dir.is_dir():
            logger.warning(f"Config directory not found: {config_dir} (skipping config creation)")
            return []

        names = []
        for path in self._config_files(config_dir):
            name = f"{config_base_name(path)}_config_{version}"
            if self.engine.config_exists(name):
                logger.info(f"Docker config '{name}' already exists for this version, reusing")
            else:
                logger.info(f"Creating docker config '{name}' from {path.name}")
                try:
                    self.engine.create_config(name, str(path))
                except EngineError as e:
                    raise DeploymentError(str(e))
            names.append(name)
        return names

    def prune_configs(self, config_dir: Optional[Path] = None,
                      keep: int = Retries.CONFIG_VERSIONS_KEPT) -> List[str]:
        """Remove all but the newest `keep` versions of each config."""
        config_dir = Path(config_dir) if config_dir else self.context.config_dir
        files = self._config_files(config_dir)
        if not files:
            return []

        try:
            existing = self.engine.list_configs()
        except EngineError as e:
            logger.warning(f"Skipping config pruning: {e}")
            return []

        removed = []
        for path in files:
            prefix = f"{config_base_name(path)}_config_"
            versions = sorted((name for name in existing if name.startswith(prefix)), reverse=True)
            for name in versions[keep:]:
                logger.info(f"Removing outdated config: {name}")
                if self.engine.remove_config(name):
                    removed.append(name)
                else:
                    logger.warning(f"Could not remove config {name} (still in use?)")
        return removed

    # -------------------------------------------------------------------------
    # Manifest and deploy
    # -------------------------------------------------------------------------

    def manifest_values(self, network_name: str, cert_timestamp: str) -> Dict[str, str]:
        return {
            'NETWORK_NAME': network_name,
            'TS': cert_timestamp,
            'ENVIRONMENT': self.context.environment,
            'VERSION': self.context.version,
            'SERVICE_NAME': self.context.service_name,
        }

    def stage_manifest(self, values: Mapping[str, str]) -> Path:
        """Render the revision's stack file into the staging directory."""
        source = self.context.stack_source
        if not source.is_file():
            raise DeploymentError(f"Stack file not found: {source}")

        rendered = render_manifest(source.read_text(encoding='utf-8'), values)
        target = self.staging_dir / source.name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(rendered, encoding='utf-8')
        logger.debug(f"Rendered {source} -> {target}")
        return target

    def wait_for_tasks_to_start(self, max_attempts: int = Retries.STARTING_ATTEMPTS,
                                interval: float = Timeouts.STARTING_POLL_INTERVAL) -> List[str]:
        """Wait until no task is Starting, then require a Running or Pending task."""
        poller = self.poller.with_interval(interval)
        for attempt in poller.limited(max_attempts + 1):
            states = self.engine.stack_task_states(self.service_name)
            if not any(state.startswith('Starting') for state in states):
                break
            logger.info(f"Service still starting (attempt {attempt}/{max_attempts})")
        else:
            raise DeploymentError(
                f"Service failed to move past Starting state after {max_attempts} attempts"
            )

        states = self.engine.stack_task_states(self.service_name)
        if not any('Running' in state or 'Pending' in state for state in states):
            raise DeploymentError("Deployment failed to start properly")
        return states

    def report_service_state(self) -> Optional[str]:
        state = self.engine.service_state(self.service_name)
        if state is None:
            logger.warning("Service not found for validation")
        elif state.startswith('Running'):
            logger.info(f"Service state: {state}; hot-swap successful")
        else:
            logger.warning(f"Service state: {state}; service still starting")
        return state

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def wait_for_running_replicas(self, max_attempts: int = Retries.TASK_RUNNING_ATTEMPTS,
                                  interval: float = Timeouts.TASK_POLL_INTERVAL) -> int:
        """
        Wait until every task desired to run is Running.

        Returns:
            Number of running replicas

        Raises:
            DeploymentError: not all replicas running after max_attempts
        """
        poller = self.poller.with_interval(interval)
        for attempt in poller.limited(max_attempts):
            states = self.engine.stack_task_states(self.service_name, desired_running=True)
            total = len(states)
            running = sum(1 for state in states if state.startswith('Running'))
            logger.info(f"Attempt {attempt}/{max_attempts}: {running}/{total} replicas running")
            if total > 0 and running == total:
                return running
        raise DeploymentError("Service failed to start within expected time")

    def wait_for_healthy_containers(self, max_attempts: int = Retries.HEALTH_ATTEMPTS,
                                    interval: float = Timeouts.HEALTH_POLL_INTERVAL) -> int:
        """
        Wait until every service container is healthy or has no HEALTHCHECK.

        The container list is refreshed each pass since tasks may be rescheduled.
        """
        poller = self.poller.with_interval(interval)
        for attempt in poller.limited(max_attempts):
            containers = self.engine.service_containers(self.service_name)
            unhealthy = [cid for cid in containers
                         if self.engine.container_health(cid) not in ('healthy', 'none')]
            logger.info(f"Attempt {attempt}/{max_attempts}: "
                        f"{len(containers) - len(unhealthy)}/{len(containers)} containers healthy")
            if not unhealthy:
                return len(containers)
        raise DeploymentError("Containers did not become healthy within expected time")

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    def before_install(self) -> str:
        logger.info(
            f"Starting BeforeInstall hook for {self.service_name}",
            extra={'extra_data': {
                'deployment_id': self.context.deployment_id,
                'environment': self.context.environment,
            }},
        )
        network = self.resolve_network_name()
        self.verify_network(network)
        logger.info("BeforeInstall hook completed successfully")
        return network

    def application_start(self) -> Path:
        logger.info(f"Starting ApplicationStart hook for {self.service_name}")

        self.publish_versioned_configs()
        self.poller.sleeper(Timeouts.CONFIG_PROPAGATION)

        cert_timestamp = self.select_certificate_timestamp()
        network = self.resolve_network_name()
        manifest = self.stage_manifest(self.manifest_values(network, cert_timestamp))
        self.verify_network(network)

        logger.info(f"Deploying stack '{self.service_name}'")
        try:
            self.engine.stack_deploy(str(manifest), self.service_name)
        except EngineError as e:
            raise DeploymentError(str(e))

        self.poller.sleeper(Timeouts.SERVICE_SETTLE)
        self.wait_for_tasks_to_start()
        logger.info("Service is running")
        self.report_service_state()

        self.prune_configs()
        logger.info("ApplicationStart hook completed successfully")
        return manifest

    def validate_service(self) -> None:
        logger.info(f"Starting ValidateService hook for {self.service_name}")
        self.wait_for_running_replicas()
        self.wait_for_healthy_containers()
        logger.info("All replicas running and all health checks passed")


__all__ = [
    'DeploymentContext',
    'DeploymentHooks',
    'render_manifest',
    'config_base_name',
    'BEFORE_INSTALL_VARS',
    'APPLICATION_START_VARS',
    'VALIDATE_SERVICE_VARS',
]
