"""Central configuration dataclass loaded from environment variables.

Values can also come from the SmartDataCenter zone config (a JSON file with
``ufds_domain``, ``ufds_remote_ip`` and ``ufds_is_master``) pointed to by
``SDC_USERADM_CONFIG``.  Environment variables always win over that file.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict

from .core.constants import (
    YES_VALUES,
    DEFAULT_UFDS_URL,
    DEFAULT_BIND_DN,
    DEFAULT_BIND_PASSWORD,
    DEFAULT_USERS_BASE_DN,
    DEFAULT_LOCAL_CONNECT_TIMEOUT,
    DEFAULT_MASTER_CONNECT_TIMEOUT,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_MAX_DELAY,
)
from .errors import ConfigError

logger = logging.getLogger("sdc_useradm.config")


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val in YES_VALUES


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"invalid number for {name}: {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


@dataclass(slots=True)
class Config:
    """Runtime configuration derived from environment variables."""

    # UFDS -------------------------------------------------------------
    ufds_url: str = field(default_factory=lambda: os.getenv('UFDS_URL', DEFAULT_UFDS_URL))
    ufds_master_url: str = field(default_factory=lambda: os.getenv('UFDS_MASTER_URL', ''))
    ufds_is_master: bool = field(default_factory=lambda: _env_bool('UFDS_IS_MASTER', not os.getenv('UFDS_MASTER_URL')))
    bind_dn: str = field(default_factory=lambda: os.getenv('UFDS_BIND_DN', DEFAULT_BIND_DN))
    bind_password: str = field(default_factory=lambda: os.getenv('UFDS_BIND_PASSWORD', DEFAULT_BIND_PASSWORD))
    users_base_dn: str = field(default_factory=lambda: os.getenv('UFDS_USERS_BASE_DN', DEFAULT_USERS_BASE_DN))

    # Connection --------------------------------------------------------
    connect_timeout: float = field(
        default_factory=lambda: _env_float('UFDS_CONNECT_TIMEOUT', DEFAULT_LOCAL_CONNECT_TIMEOUT))
    master_connect_timeout: float = field(
        default_factory=lambda: _env_float('UFDS_CONNECT_TIMEOUT', DEFAULT_MASTER_CONNECT_TIMEOUT))
    retries: int = field(default_factory=lambda: _env_int('UFDS_RETRIES', DEFAULT_RETRIES))
    retry_max_delay: float = field(
        default_factory=lambda: _env_float('UFDS_RETRY_MAX_DELAY', DEFAULT_RETRY_MAX_DELAY))
    ignore_ldaps_cert: bool = field(default_factory=lambda: _env_bool('IGNORE_LDAPS_CERT', False))
    ca_file: str | None = field(default_factory=lambda: os.getenv('UFDS_CA_FILE') or None)

    # Misc --------------------------------------------------------------
    debug: bool = field(default_factory=lambda: _env_bool('DEBUG', False))

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ConfigError(f"UFDS_RETRIES must not be negative: {self.retries}")

    def masked(self) -> Dict[str, Any]:
        """Return the config as a dict with secrets replaced by ``***``."""
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        for k in out:
            if any(s in k.lower() for s in ("password", "secret", "token")):
                out[k] = "***"
        return out

    @classmethod
    def load(cls, path: str | os.PathLike | None = None) -> "Config":
        """Build a config from the environment plus an optional zone config file.

        *path* defaults to ``$SDC_USERADM_CONFIG``.  A missing file is ignored.
        """
        path = path or os.getenv('SDC_USERADM_CONFIG')
        overrides: Dict[str, Any] = {}
        if path:
            overrides = _from_zone_config(Path(path))
        return cls(**overrides)


def _from_zone_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.debug("Zone config %s not found, using environment only", path)
        return {}
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as exc:
        raise ConfigError(f'invalid config file "{path}": {exc}') from exc
    if not isinstance(data, dict):
        raise ConfigError(f'invalid config file "{path}": expected a JSON object')

    # Only fill in what the environment leaves unset
    overrides: Dict[str, Any] = {}
    if data.get('ufds_domain') and 'UFDS_URL' not in os.environ:
        overrides['ufds_url'] = f"ldaps://{data['ufds_domain']}"
    if data.get('ufds_remote_ip') and 'UFDS_MASTER_URL' not in os.environ:
        overrides['ufds_master_url'] = f"ldaps://{data['ufds_remote_ip']}"
    if 'ufds_is_master' in data and 'UFDS_IS_MASTER' not in os.environ:
        overrides['ufds_is_master'] = bool(data['ufds_is_master'])
    elif 'ufds_master_url' in overrides and 'UFDS_IS_MASTER' not in os.environ:
        overrides['ufds_is_master'] = False
    return overrides
