"""
Distributed Coordination Package
Shared lock record, lock store backends and polling primitives.

The coordinators live in leader_manager and worker_manager and are
imported from there, since they depend on the engine and identity
adapters, which in turn depend on the models exported here.
"""

from .models import (
    ClusterLock,
    NodeLocalState,
    JoinTokens,
    NodeIdentity,
    Bounded,
    Unbounded,
    JoinMode,
)
from .lock_store import LockStore, DynamoDBLockStore, FileLockStore, create_lock_store
from .polling import Poller

__all__ = [
    'ClusterLock',
    'NodeLocalState',
    'JoinTokens',
    'NodeIdentity',
    'Bounded',
    'Unbounded',
    'JoinMode',
    'LockStore',
    'DynamoDBLockStore',
    'FileLockStore',
    'create_lock_store',
    'Poller',
]
