"""AWS session and client management."""

import boto3
from botocore.config import Config
from typing import Any, Dict, Optional

from infra_reconcile.config.models import ProviderConfig
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)


class AWSClientManager:
    """Builds a boto3 session from a ProviderConfig and caches clients."""

    def __init__(self, provider_config: ProviderConfig, max_pool_connections: int = 50):
        """Initialize AWS client manager.

        Args:
            provider_config: Region, profile and endpoint settings
            max_pool_connections: Maximum number of connections in the connection pool
        """
        self.provider_config = provider_config
        self._session: Optional[boto3.Session] = None
        self._clients: Dict[str, Any] = {}

        # Retries are owned by the executor's RetryStrategy, so botocore makes
        # a single attempt per call.
        self._boto_config = Config(
            max_pool_connections=max_pool_connections,
            retries={
                'mode': 'standard',
                'max_attempts': 1
            },
            connect_timeout=10,
            read_timeout=60
        )

    @property
    def session(self) -> boto3.Session:
        """Get or create boto3 session.

        Returns:
            Configured boto3 session
        """
        if self._session is None:
            kwargs = {'region_name': self.provider_config.region}
            if self.provider_config.profile:
                kwargs['profile_name'] = self.provider_config.profile

            self._session = boto3.Session(**kwargs)
            logger.info(f"Created AWS session - Region: {self._session.region_name}, "
                        f"Profile: {self.provider_config.profile or 'default'}")

        return self._session

    def get_client(self, service_name: str):
        """Get boto3 client for a service.

        Args:
            service_name: AWS service name (e.g., 'cloudcontrol')

        Returns:
            Boto3 client for the service
        """
        if service_name in self._clients:
            return self._clients[service_name]

        kwargs = {'config': self._boto_config}
        if self.provider_config.endpoint_url:
            kwargs['endpoint_url'] = self.provider_config.endpoint_url

        client = self.session.client(service_name, **kwargs)
        self._clients[service_name] = client

        logger.debug(f"Created {service_name} client")

        return client
