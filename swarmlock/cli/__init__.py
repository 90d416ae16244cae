"""
CLI Module for swarmlock

Usage:
    swarmlock leader
    swarmlock lock show --json
    python -m swarmlock.cli.swarmctl deploy validate-service
"""

from .swarmctl import main, leader_main

__all__ = [
    'main',
    'leader_main',
]
