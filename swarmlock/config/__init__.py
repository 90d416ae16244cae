"""
Configuration Module for swarmlock.

Provides the explicit, immutable configuration struct shared by the
leader routine, the worker join agent and the deployment hooks, and the
loaders for YAML files and shell-style env files.
"""

from .settings import (
    CoordinatorConfig,
    LOCK_BACKENDS,
    parse_env_file,
    load_config,
)

__all__ = [
    'CoordinatorConfig',
    'LOCK_BACKENDS',
    'parse_env_file',
    'load_config',
]
