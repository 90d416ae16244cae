"""
Coordinator Settings - explicit configuration for every swarmlock component.

The settings are resolved once at process start and passed by reference
into the coordinator, the lock store, the engine adapter and the hooks.
Nothing reads the environment after `load_config()` returns.

Sources, lowest to highest precedence:
- built-in defaults (constants.Defaults)
- an optional YAML file (--config / SWARMLOCK_CONFIG)
- a shell-style env file (/etc/leader-manager.env / SWARMLOCK_ENV_FILE)
- the process environment
"""

import logging
import os
import shlex
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import yaml

from ..constants import Defaults, Timeouts
from ..utils.error_handling import ConfigurationError

logger = logging.getLogger(__name__)

LOCK_BACKENDS = ('dynamodb', 'file')


@dataclass(frozen=True)
class CoordinatorConfig:
    """Resolved configuration of one node."""
    lock_table: str = ""
    aws_region: str = ""
    cluster_name: str = Defaults.CLUSTER_NAME
    join_timeout_seconds: float = Defaults.JOIN_TIMEOUT_SECONDS
    lease_seconds: int = Defaults.LEASE_SECONDS
    join_poll_interval_seconds: float = Defaults.JOIN_POLL_INTERVAL_SECONDS
    overlay_network_name: str = Defaults.OVERLAY_NETWORK_NAME
    swarm_port: int = Defaults.SWARM_PORT
    lock_backend: str = Defaults.LOCK_BACKEND
    lock_file_dir: str = Defaults.LOCK_FILE_DIR
    store_max_attempts: int = Defaults.STORE_MAX_ATTEMPTS
    node_instance_id: Optional[str] = None
    node_private_ip: Optional[str] = None
    engine_timeout_seconds: float = Timeouts.ENGINE_DEFAULT
    imds_endpoint: str = Defaults.IMDS_ENDPOINT
    cert_dir: str = Defaults.CERT_DIR

    @property
    def has_static_identity(self) -> bool:
        """True when both identity overrides are set."""
        return bool(self.node_instance_id and self.node_private_ip)

    def validate(self) -> 'CoordinatorConfig':
        """Raise ConfigurationError listing every missing or invalid setting."""
        problems = []
        if not self.lock_table:
            problems.append("SWARM_LOCK_TABLE is required")
        if not self.cluster_name:
            problems.append("CLUSTER_NAME must not be empty")
        if self.lock_backend not in LOCK_BACKENDS:
            problems.append(
                f"LOCK_BACKEND must be one of {', '.join(LOCK_BACKENDS)} (got {self.lock_backend!r})"
            )
        if self.lock_backend == 'dynamodb' and not self.aws_region:
            problems.append("AWS_REGION is required for the dynamodb lock backend")
        if bool(self.node_instance_id) != bool(self.node_private_ip):
            problems.append("NODE_INSTANCE_ID and NODE_PRIVATE_IP must be set together")
        if not self.has_static_identity and not self.imds_endpoint:
            problems.append("IMDS_ENDPOINT must not be empty without a static identity")

        if problems:
            raise ConfigurationError(
                "Invalid configuration: " + "; ".join(problems),
                reason="missing_or_invalid_settings",
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _positive(converter: Callable[[str], Any]) -> Callable[[str], Any]:
    def convert(raw: str) -> Any:
        value = converter(raw)
        if value <= 0:
            raise ValueError(f"must be positive, got {raw}")
        return value
    return convert


def _optional_str(raw: str) -> Optional[str]:
    raw = raw.strip()
    return raw or None


# field name -> (environment name, converter)
SETTINGS: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    'lock_table': ('SWARM_LOCK_TABLE', str.strip),
    'aws_region': ('AWS_REGION', str.strip),
    'cluster_name': ('CLUSTER_NAME', str.strip),
    'join_timeout_seconds': ('JOIN_TIMEOUT_SECONDS', _positive(float)),
    'lease_seconds': ('LEASE_SECONDS', _positive(int)),
    'join_poll_interval_seconds': ('JOIN_POLL_INTERVAL_SECONDS', _positive(float)),
    'overlay_network_name': ('SWARM_OVERLAY_NETWORK_NAME', str.strip),
    'swarm_port': ('SWARM_PORT', _positive(int)),
    'lock_backend': ('LOCK_BACKEND', lambda raw: raw.strip().lower()),
    'lock_file_dir': ('LOCK_FILE_DIR', str.strip),
    'store_max_attempts': ('STORE_MAX_ATTEMPTS', _positive(int)),
    'node_instance_id': ('NODE_INSTANCE_ID', _optional_str),
    'node_private_ip': ('NODE_PRIVATE_IP', _optional_str),
    'engine_timeout_seconds': ('ENGINE_TIMEOUT_SECONDS', _positive(float)),
    'imds_endpoint': ('IMDS_ENDPOINT', str.strip),
    'cert_dir': ('CERT_DIR', str.strip),
}


# =============================================================================
# SOURCES
# =============================================================================

def parse_env_file(path) -> Dict[str, str]:
    """
    Parse a shell-style environment file.

    Accepts `KEY=VALUE` and `export KEY=VALUE` lines with optional single
    or double quotes. Blank lines and `#` comments are ignored. Anything
    shell-specific beyond that (substitution, arrays) is not supported.
    """
    values: Dict[str, str] = {}
    path = Path(path)

    with open(path, 'r', encoding='utf-8') as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line or line.startswith('#'):
                continue
            if line.startswith('export '):
                line = line[len('export '):].lstrip()

            key, sep, value = line.partition('=')
            key = key.strip()
            if not sep or not key.isidentifier():
                logger.warning(f"{path}:{lineno}: ignoring malformed line")
                continue

            try:
                parts = shlex.split(value, comments=True)
            except ValueError as e:
                raise ConfigurationError(f"{path}:{lineno}: cannot parse value for {key}: {e}")
            values[key] = ' '.join(parts)

    return values


def _load_yaml(path) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def _convert(name: str, raw: Any, source: str) -> Any:
    env_name, converter = SETTINGS[name]
    try:
        return converter(str(raw))
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid value for {env_name} from {source}: {e}")


def load_config(
    config_path: Optional[str] = None,
    env_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    validate: bool = True,
) -> CoordinatorConfig:
    """
    Resolve the node configuration.

    Args:
        config_path: Optional YAML file (falls back to SWARMLOCK_CONFIG)
        env_file: Shell-style env file (falls back to SWARMLOCK_ENV_FILE,
                  then /etc/leader-manager.env; a missing file is skipped)
        environ: Environment mapping (defaults to os.environ)
        validate: Run CoordinatorConfig.validate() on the result

    Returns:
        CoordinatorConfig
    """
    environ = os.environ if environ is None else environ
    resolved: Dict[str, Any] = {}

    config_path = config_path or environ.get('SWARMLOCK_CONFIG')
    if config_path:
        for key, raw in _load_yaml(config_path).items():
            if key not in SETTINGS:
                logger.warning(f"Unknown setting '{key}' in {config_path}, ignoring")
                continue
            if raw is None:
                continue
            resolved[key] = _convert(key, raw, config_path)

    explicit_env_file = env_file or environ.get('SWARMLOCK_ENV_FILE')
    env_file = explicit_env_file or Defaults.ENV_FILE
    if os.path.isfile(env_file):
        file_values = parse_env_file(env_file)
        for name, (env_name, _) in SETTINGS.items():
            if env_name in file_values:
                resolved[name] = _convert(name, file_values[env_name], env_file)
    elif explicit_env_file:
        raise ConfigurationError(f"Env file not found: {env_file}")

    for name, (env_name, _) in SETTINGS.items():
        if env_name in environ:
            resolved[name] = _convert(name, environ[env_name], 'environment')

    config = CoordinatorConfig(**resolved)
    logger.debug(
        "Configuration resolved",
        extra={'extra_data': {
            'cluster': config.cluster_name,
            'table': config.lock_table,
            'backend': config.lock_backend,
        }},
    )

    if validate:
        config.validate()
    return config


__all__ = [
    'CoordinatorConfig',
    'SETTINGS',
    'LOCK_BACKENDS',
    'parse_env_file',
    'load_config',
]
