"""
Node Identity - resolves this host's instance id and private IPv4 address.

On EC2 the instance metadata service (IMDSv2) is the source of truth: a
session token is obtained with a PUT and then presented on each GET. A
static identity from configuration can replace it on hosts without a
metadata service (development clusters, tests).
"""

import ipaddress
import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests

from .constants import Defaults, MetadataService, Timeouts
from .distributed.models import NodeIdentity
from .utils.error_handling import IdentitySourceUnavailable

logger = logging.getLogger(__name__)


class IdentitySource(ABC):
    """Resolves the identity of the local node."""

    @abstractmethod
    def resolve(self) -> NodeIdentity:
        """
        Returns:
            NodeIdentity of this host

        Raises:
            IdentitySourceUnavailable: identity could not be determined
        """
        pass


class StaticIdentitySource(IdentitySource):
    """Identity supplied by configuration."""

    def __init__(self, instance_id: str, private_ip: str):
        self.instance_id = instance_id
        self.private_ip = private_ip

    def resolve(self) -> NodeIdentity:
        if not self.instance_id or not self.private_ip:
            raise IdentitySourceUnavailable("Static identity requires both instance id and private IP")
        _validate_ipv4(self.private_ip)
        return NodeIdentity(instance_id=self.instance_id, private_ip=self.private_ip)


class InstanceMetadataIdentitySource(IdentitySource):
    """Identity from the EC2 instance metadata service (IMDSv2)."""

    def __init__(self, base_url: str = Defaults.IMDS_ENDPOINT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()

    def _token(self) -> str:
        try:
            response = self.session.put(
                f"{self.base_url}{MetadataService.TOKEN_PATH}",
                headers={MetadataService.TOKEN_TTL_HEADER: str(Timeouts.IMDS_TOKEN_TTL)},
                timeout=Timeouts.IMDS_TOKEN,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise IdentitySourceUnavailable(f"Could not obtain IMDS session token: {e}")

        token = response.text.strip()
        if not token:
            raise IdentitySourceUnavailable("IMDS returned an empty session token")
        return token

    def _get(self, path: str, token: str) -> str:
        try:
            response = self.session.get(
                f"{self.base_url}{path}",
                headers={MetadataService.TOKEN_HEADER: token},
                timeout=Timeouts.IMDS_REQUEST,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise IdentitySourceUnavailable(f"Could not read {path} from IMDS: {e}")
        return response.text.strip()

    def resolve(self) -> NodeIdentity:
        token = self._token()
        instance_id = self._get(MetadataService.INSTANCE_ID_PATH, token)
        private_ip = self._get(MetadataService.LOCAL_IPV4_PATH, token)

        if not instance_id or not private_ip:
            raise IdentitySourceUnavailable("could not get instance-id or private IP from IMDS")
        _validate_ipv4(private_ip)

        logger.debug(f"Resolved identity {instance_id} ({private_ip}) from IMDS")
        return NodeIdentity(instance_id=instance_id, private_ip=private_ip)


def _validate_ipv4(address: str):
    try:
        ipaddress.IPv4Address(address)
    except ValueError:
        raise IdentitySourceUnavailable(f"Not a valid private IPv4 address: {address!r}")


def create_identity_source(config) -> IdentitySource:
    """Static identity when configured, otherwise the metadata service."""
    if config.has_static_identity:
        return StaticIdentitySource(config.node_instance_id, config.node_private_ip)
    return InstanceMetadataIdentitySource(base_url=config.imds_endpoint)


__all__ = [
    'IdentitySource',
    'StaticIdentitySource',
    'InstanceMetadataIdentitySource',
    'create_identity_source',
]
