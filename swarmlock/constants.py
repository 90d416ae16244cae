"""
Centralized Constants Module for swarmlock.

This module consolidates the defaults, timeouts and well-known names used
by the leader routine, the worker join agent and the deployment hooks so
that every component agrees on them.

Usage:
    from swarmlock.constants import Defaults, Timeouts, LockAttributes

    subprocess.run(cmd, timeout=Timeouts.ENGINE_DEFAULT)
"""

from dataclasses import dataclass
from typing import Tuple


# =============================================================================
# COORDINATOR DEFAULTS
# =============================================================================

@dataclass(frozen=True)
class Defaults:
    """Defaults for the recognized configuration options."""
    CLUSTER_NAME: str = "auth-sample-cluster"
    OVERLAY_NETWORK_NAME: str = "app-network"
    JOIN_TIMEOUT_SECONDS: float = 300.0
    LEASE_SECONDS: int = 300
    JOIN_POLL_INTERVAL_SECONDS: float = 10.0
    SWARM_PORT: int = 2377
    LOCK_BACKEND: str = "dynamodb"
    LOCK_FILE_DIR: str = "/var/lib/swarmlock"
    STORE_MAX_ATTEMPTS: int = 3
    ENV_FILE: str = "/etc/leader-manager.env"
    IMDS_ENDPOINT: str = "http://169.254.169.254"
    CERT_DIR: str = "/var/lib/certificate-manager/certs"


# =============================================================================
# TIMEOUT CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class Timeouts:
    """
    Centralized timeout values in seconds.

    Engine calls are local but may block while the swarm reconciles;
    metadata calls go to the link-local instance metadata service.
    """
    # Orchestration engine CLI
    ENGINE_SHORT: float = 10.0          # info / inspect
    ENGINE_DEFAULT: float = 30.0        # init / join / network create
    ENGINE_DEPLOY: float = 300.0        # stack deploy

    # Instance metadata service
    IMDS_TOKEN: float = 2.0
    IMDS_REQUEST: float = 5.0
    IMDS_TOKEN_TTL: int = 60

    # Deployment hook polling
    TASK_POLL_INTERVAL: float = 10.0
    HEALTH_POLL_INTERVAL: float = 5.0
    STARTING_POLL_INTERVAL: float = 5.0
    CONFIG_PROPAGATION: float = 5.0
    SERVICE_SETTLE: float = 10.0


@dataclass(frozen=True)
class Retries:
    """Attempt budgets for bounded polling loops."""
    TASK_RUNNING_ATTEMPTS: int = 30
    HEALTH_ATTEMPTS: int = 30
    STARTING_ATTEMPTS: int = 30
    CONFIG_VERSIONS_KEPT: int = 3


# =============================================================================
# LOCK RECORD SCHEMA
# =============================================================================

@dataclass(frozen=True)
class LockAttributes:
    """Attribute names of the cluster lock row."""
    CLUSTER_NAME: str = "cluster_name"
    LEASE_EXPIRES_AT: str = "lease_expires_at"
    MANAGER_INSTANCE_ID: str = "manager_instance_id"
    MANAGER_PRIVATE_IP: str = "manager_private_ip"
    JOIN_TOKEN_MANAGER: str = "swarm_join_token_manager"
    JOIN_TOKEN_WORKER: str = "swarm_join_token_worker"
    OVERLAY_NETWORK_NAME: str = "swarm_overlay_network_name"


LEASE_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


# =============================================================================
# INSTANCE METADATA SERVICE
# =============================================================================

@dataclass(frozen=True)
class MetadataService:
    """EC2 instance metadata service (IMDSv2) endpoints."""
    TOKEN_PATH: str = "/latest/api/token"
    INSTANCE_ID_PATH: str = "/latest/meta-data/instance-id"
    LOCAL_IPV4_PATH: str = "/latest/meta-data/local-ipv4"
    TOKEN_HEADER: str = "X-aws-ec2-metadata-token"
    TOKEN_TTL_HEADER: str = "X-aws-ec2-metadata-token-ttl-seconds"


# =============================================================================
# DEPLOYMENT HOOKS
# =============================================================================

@dataclass(frozen=True)
class DeploymentPaths:
    """Filesystem locations used by the deployment hooks."""
    DEPLOYMENT_ROOT: str = "/opt/codedeploy-agent/deployment-root"
    ARCHIVE_DIR_NAME: str = "deployment-archive"
    HOOK_ENV_FILE: str = "scripts/env.sh"
    CONFIG_DIR_NAME: str = "configs"
    STAGING_DIR: str = "/tmp"


# Placeholders substituted into the stack manifest, in substitution order
MANIFEST_PLACEHOLDERS: Tuple[str, ...] = (
    "NETWORK_NAME",
    "TS",
    "ENVIRONMENT",
    "VERSION",
    "SERVICE_NAME",
)

CONFIG_FILE_SUFFIXES: Tuple[str, ...] = (".yml", ".yaml")


# =============================================================================
# EXIT CODES
# =============================================================================

@dataclass(frozen=True)
class ExitCodes:
    """Process exit codes of the CLI entry points."""
    OK: int = 0
    FAILURE: int = 1
    CONFIG_ERROR: int = 2
    INTERRUPTED: int = 130


__all__ = [
    'Defaults',
    'Timeouts',
    'Retries',
    'LockAttributes',
    'LEASE_TIMESTAMP_FORMAT',
    'MetadataService',
    'DeploymentPaths',
    'MANIFEST_PLACEHOLDERS',
    'CONFIG_FILE_SUFFIXES',
    'ExitCodes',
]
