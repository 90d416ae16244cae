"""
Lock Store Backends - Pluggable storage for the cluster lock record
Provides the abstract interface and implementations (DynamoDB, file-based).

Every backend offers exactly two operations on the single lock row of a
cluster: a strongly consistent read and a conditional (compare-and-swap)
update. Mutual exclusion between nodes rests entirely on the backend
applying the condition atomically.
"""

import json
import os
import fcntl
import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..constants import LockAttributes
from ..utils.error_handling import ConfigurationError, LockReadFailure, LockWriteFailure
from .models import ClusterLock

logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


class LockStore(ABC):
    """
    Abstract lock store interface.

    The update condition is:
      - expected_lease empty: the row must not exist yet
      - otherwise: the row must not exist, or its lease_expires_at must
        equal expected_lease exactly
    """

    @abstractmethod
    def get_lock(self, cluster_name: str) -> Optional[ClusterLock]:
        """
        Read the lock row with a strongly consistent read.

        Args:
            cluster_name: The row key

        Returns:
            The ClusterLock, or None if the row does not exist

        Raises:
            LockReadFailure: the store could not be read
        """
        pass

    @abstractmethod
    def conditional_update(
        self,
        cluster_name: str,
        attributes: Dict[str, str],
        expected_lease: Optional[str] = None,
    ) -> bool:
        """
        Set attributes on the lock row if the condition still holds.

        Args:
            cluster_name: The row key
            attributes: Attribute name -> string value to set
            expected_lease: The lease value this writer last read

        Returns:
            True if the write was applied, False if the condition failed

        Raises:
            LockWriteFailure: the store rejected the write for another reason
        """
        pass

    def describe(self) -> str:
        return type(self).__name__


# =============================================================================
# DYNAMODB
# =============================================================================

class DynamoDBLockStore(LockStore):
    """
    DynamoDB-backed lock store for production deployments.

    Throttling and transient errors are retried by botocore's standard
    retry mode; anything that survives those attempts surfaces as a
    LockReadFailure / LockWriteFailure for this invocation.
    """

    def __init__(self, table_name: str, region_name: str,
                 max_attempts: int = 3, client: Any = None):
        """
        Initialize DynamoDB lock store.

        Args:
            table_name: Lock table name
            region_name: AWS region of the table
            max_attempts: botocore standard-mode retry attempts
            client: Pre-built dynamodb client (tests)
        """
        self.table_name = table_name
        self.region_name = region_name
        self._client = client or boto3.client(
            'dynamodb',
            region_name=region_name,
            config=Config(retries={'max_attempts': max_attempts, 'mode': 'standard'}),
        )
        self._deserializer = TypeDeserializer()

    @property
    def client(self):
        return self._client

    def _key(self, cluster_name: str) -> Dict[str, Dict[str, str]]:
        return {LockAttributes.CLUSTER_NAME: {'S': cluster_name}}

    def get_lock(self, cluster_name: str) -> Optional[ClusterLock]:
        try:
            response = self._client.get_item(
                TableName=self.table_name,
                Key=self._key(cluster_name),
                ConsistentRead=True,
            )
        except (BotoCoreError, ClientError) as e:
            raise LockReadFailure(
                f"Could not read lock '{cluster_name}' from {self.table_name}: {e}",
                reason=_error_code(e),
            )

        item = response.get('Item')
        if not item:
            return None

        plain = {key: self._deserializer.deserialize(value) for key, value in item.items()}
        return ClusterLock.from_item(
            {key: str(value) for key, value in plain.items()},
            cluster_name=cluster_name,
        )

    def conditional_update(
        self,
        cluster_name: str,
        attributes: Dict[str, str],
        expected_lease: Optional[str] = None,
    ) -> bool:
        if not attributes:
            raise ValueError("conditional_update requires at least one attribute")

        names = {'#cluster_name': LockAttributes.CLUSTER_NAME}
        values = {}
        assignments = []
        for attribute, value in attributes.items():
            names[f'#{attribute}'] = attribute
            values[f':{attribute}'] = {'S': value}
            assignments.append(f'#{attribute} = :{attribute}')

        if expected_lease:
            condition = 'attribute_not_exists(#cluster_name) OR #lease_expires_at = :prev'
            names['#lease_expires_at'] = LockAttributes.LEASE_EXPIRES_AT
            values[':prev'] = {'S': expected_lease}
        else:
            condition = 'attribute_not_exists(#cluster_name)'

        try:
            self._client.update_item(
                TableName=self.table_name,
                Key=self._key(cluster_name),
                UpdateExpression='SET ' + ', '.join(assignments),
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues='UPDATED_NEW',
            )
            return True
        except ClientError as e:
            if _error_code(e) == CONDITIONAL_CHECK_FAILED:
                return False
            raise LockWriteFailure(
                f"Could not update lock '{cluster_name}' in {self.table_name}: {e}",
                reason=_error_code(e),
            )
        except BotoCoreError as e:
            raise LockWriteFailure(
                f"Could not update lock '{cluster_name}' in {self.table_name}: {e}",
                reason=type(e).__name__,
            )

    def describe(self) -> str:
        return f"dynamodb://{self.region_name}/{self.table_name}"


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code', 'ClientError')
    return type(error).__name__


# =============================================================================
# FILE
# =============================================================================

class FileLockStore(LockStore):
    """
    File-based lock store for development and testing.
    Stores every cluster's lock row of one table in a JSON document on a
    (possibly shared) filesystem. Reads and conditional updates hold an
    fcntl lock on a sidecar file, so concurrent writers observe the same
    compare-and-swap semantics as DynamoDB.

    WARNING: flock is not reliable on every network filesystem. Use the
    DynamoDB backend in production.
    """

    def __init__(self, data_dir: str, table_name: str = 'swarm-lock'):
        """
        Initialize file lock store.

        Args:
            data_dir: Directory holding the table files
            table_name: Table name (file stem)
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.table_name = table_name
        self.state_file = self.data_dir / f'{table_name}.json'
        self.lock_file = self.data_dir / f'{table_name}.lock'

    def _load_table(self) -> Dict[str, Dict[str, str]]:
        if not self.state_file.exists():
            return {}
        with open(self.state_file, 'r') as f:
            content = f.read()
        return json.loads(content) if content.strip() else {}

    def _save_table(self, table: Dict[str, Dict[str, str]]):
        fd, tmp_path = tempfile.mkstemp(dir=str(self.data_dir), prefix=f'.{self.table_name}.')
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(table, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.state_file)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get_lock(self, cluster_name: str) -> Optional[ClusterLock]:
        try:
            with open(self.lock_file, 'a') as lock:
                fcntl.flock(lock.fileno(), fcntl.LOCK_SH)
                try:
                    item = self._load_table().get(cluster_name)
                finally:
                    fcntl.flock(lock.fileno(), fcntl.LOCK_UN)
        except (OSError, ValueError) as e:
            raise LockReadFailure(f"Could not read lock '{cluster_name}' from {self.state_file}: {e}")

        if item is None:
            return None
        return ClusterLock.from_item(item, cluster_name=cluster_name)

    def conditional_update(
        self,
        cluster_name: str,
        attributes: Dict[str, str],
        expected_lease: Optional[str] = None,
    ) -> bool:
        if not attributes:
            raise ValueError("conditional_update requires at least one attribute")

        try:
            with open(self.lock_file, 'a') as lock:
                fcntl.flock(lock.fileno(), fcntl.LOCK_EX)
                try:
                    table = self._load_table()
                    existing = table.get(cluster_name)

                    if existing is not None:
                        current_lease = existing.get(LockAttributes.LEASE_EXPIRES_AT, '')
                        if not expected_lease or current_lease != expected_lease:
                            return False

                    row = dict(existing or {LockAttributes.CLUSTER_NAME: cluster_name})
                    row.update(attributes)
                    table[cluster_name] = row
                    self._save_table(table)
                    return True
                finally:
                    fcntl.flock(lock.fileno(), fcntl.LOCK_UN)
        except (OSError, ValueError) as e:
            raise LockWriteFailure(f"Could not update lock '{cluster_name}' in {self.state_file}: {e}")

    def describe(self) -> str:
        return f"file://{self.state_file}"


def create_lock_store(config) -> LockStore:
    """Build the lock store selected by the configuration."""
    if config.lock_backend == 'dynamodb':
        return DynamoDBLockStore(
            table_name=config.lock_table,
            region_name=config.aws_region,
            max_attempts=config.store_max_attempts,
        )
    if config.lock_backend == 'file':
        return FileLockStore(config.lock_file_dir, table_name=config.lock_table)
    raise ConfigurationError(f"Unknown lock backend: {config.lock_backend}")


__all__ = [
    'LockStore',
    'DynamoDBLockStore',
    'FileLockStore',
    'create_lock_store',
    'CONDITIONAL_CHECK_FAILED',
]
