"""
Orchestration Engine Package
Adapters over the local container orchestration runtime.
"""

from .swarm_engine import OrchestrationEngine, DockerSwarmEngine, CommandResult

__all__ = [
    'OrchestrationEngine',
    'DockerSwarmEngine',
    'CommandResult',
]
