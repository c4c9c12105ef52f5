"""Per-invocation application context for sdc-useradm.

The :class:`UseradmContext` owns the UFDS client handles used by a single CLI
run.  Clients are created lazily, memoized ("local" and "master"), and closed
when the context exits, whatever the outcome of the subcommand.

Example::

    with UseradmContext(config=Config.load()) as ctx:
        user = ctx.local_client().get_user("admin")
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from ..config import Config
from ..errors import ConfigError
from ..ufds_client import UfdsClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Config, str], UfdsClient]


def build_client(config: Config, label: str) -> UfdsClient:
    """Create an (unconnected) client for the ``local`` or ``master`` UFDS."""
    if label == "master":
        url = config.ufds_master_url
        timeout = config.master_connect_timeout
    else:
        url = config.ufds_url
        timeout = config.connect_timeout
    return UfdsClient(
        url=url,
        bind_dn=config.bind_dn,
        bind_password=config.bind_password,
        users_base_dn=config.users_base_dn,
        connect_timeout=timeout,
        retries=config.retries,
        retry_max_delay=config.retry_max_delay,
        ignore_cert=config.ignore_ldaps_cert,
        ca_file=config.ca_file,
        label=label,
    )


@dataclass
class UseradmContext:
    """Holds configuration and lazily-connected UFDS clients.

    ``client_factory`` is injectable for tests; by default
    :func:`build_client` is used.
    """
    config: Config
    client_factory: Optional[ClientFactory] = None
    _clients: Dict[str, UfdsClient] = field(default_factory=dict, init=False, repr=False)

    def __enter__(self) -> "UseradmContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _client(self, label: str) -> UfdsClient:
        client = self._clients.get(label)
        if client is None:
            factory = self.client_factory or build_client
            client = factory(self.config, label)
            # Memoize before connecting so a failed connect is still closed
            self._clients[label] = client
            client.connect()
        return client

    def local_client(self) -> UfdsClient:
        return self._client("local")

    def master_client(self) -> UfdsClient:
        """Client for the master UFDS (the local one when it *is* the master)."""
        if self.config.ufds_is_master:
            return self.local_client()
        if not self.config.ufds_master_url:
            raise ConfigError("UFDS_MASTER_URL is required when UFDS_IS_MASTER is off")
        return self._client("master")

    def close(self) -> None:
        """Close every client opened through this context."""
        clients, self._clients = self._clients, {}
        for label, client in clients.items():
            logger.debug("Closing %s UFDS client", label)
            client.close()
