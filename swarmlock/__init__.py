"""
swarmlock - Swarm Leadership & Bootstrap Coordinator

Elects a single Docker Swarm leader per cluster through a conditional
update on a shared lock row, bootstraps or joins the swarm accordingly,
and drives the deployment hooks that consume the same row.
"""

__version__ = "1.0.0"

from .constants import Defaults, Timeouts, Retries, ExitCodes
from .config import CoordinatorConfig, load_config
from .utils.error_handling import (
    SwarmLockError,
    ConfigurationError,
    IdentitySourceUnavailable,
    LockReadFailure,
    LockWriteFailure,
    EngineError,
    JoinTimeout,
    DeploymentError,
)

__all__ = [
    '__version__',
    'Defaults',
    'Timeouts',
    'Retries',
    'ExitCodes',
    'CoordinatorConfig',
    'load_config',
    'SwarmLockError',
    'ConfigurationError',
    'IdentitySourceUnavailable',
    'LockReadFailure',
    'LockWriteFailure',
    'EngineError',
    'JoinTimeout',
    'DeploymentError',
]
