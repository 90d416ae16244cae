"""
Deployment Hooks Package
Lifecycle hooks that deploy a stack onto the swarm coordinated by swarmlock.
"""

from .hooks import (
    DeploymentContext,
    DeploymentHooks,
    render_manifest,
    BEFORE_INSTALL_VARS,
    APPLICATION_START_VARS,
    VALIDATE_SERVICE_VARS,
)

__all__ = [
    'DeploymentContext',
    'DeploymentHooks',
    'render_manifest',
    'BEFORE_INSTALL_VARS',
    'APPLICATION_START_VARS',
    'VALIDATE_SERVICE_VARS',
]
