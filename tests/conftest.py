"""Shared fixtures: an in-memory UFDS built on ldap3's MOCK_SYNC strategy."""
import pytest
from ldap3 import MOCK_SYNC, Connection, Server

from sdc_useradm.core.application import UseradmContext
from sdc_useradm.ufds_client import UfdsClient

BIND_DN = "cn=root"
BIND_PASSWORD = "secret"
USERS_DN = "ou=users,o=smartdc"

ADMIN_UUID = "930896af-bf8c-48d4-885c-6573a94b1853"
JANE_UUID = "2d7a3a6e-5c1f-4f0e-9a55-3b6f6a3a1c01"

_ENV_VARS = [
    "UFDS_URL",
    "UFDS_MASTER_URL",
    "UFDS_IS_MASTER",
    "UFDS_BIND_DN",
    "UFDS_BIND_PASSWORD",
    "UFDS_USERS_BASE_DN",
    "UFDS_CONNECT_TIMEOUT",
    "UFDS_RETRIES",
    "UFDS_RETRY_MAX_DELAY",
    "UFDS_CA_FILE",
    "IGNORE_LDAPS_CERT",
    "SDC_USERADM_CONFIG",
    "DEBUG",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _populate(conn: Connection) -> None:
    add = conn.strategy.add_entry
    add(BIND_DN, {"objectclass": "person", "sn": "root", "userPassword": BIND_PASSWORD})
    add("o=smartdc", {"objectclass": "organization", "o": "smartdc"})
    add(USERS_DN, {"objectclass": "organizationalunit", "ou": "users"})
    add(f"uuid={ADMIN_UUID},{USERS_DN}", {
        "objectclass": "sdcperson",
        "uuid": ADMIN_UUID,
        "login": "admin",
        "email": "admin@example.com",
        "cn": "Admin User",
        "userpassword": "secret123",
        "approved_for_provisioning": "true",
        "created_at": "1388534400000",
        "updated_at": "1388534400000",
    })
    add(f"uuid={JANE_UUID},{USERS_DN}", {
        "objectclass": "sdcperson",
        "uuid": JANE_UUID,
        "login": "jane",
        "email": "jane@joyent.com",
        "cn": "Jane Doe",
        "userpassword": "secret123",
        "registered_developer": "true",
        "allowed_dcs": ["us-east-1", "us-west-1"],
        "created_at": "1388534400000",
        "updated_at": "1388534400000",
    })


@pytest.fixture
def ufds_server():
    """A fake UFDS server whose DIT holds two users (admin, jane)."""
    server = Server("fake_ufds")
    conn = Connection(server, user=BIND_DN, password=BIND_PASSWORD, client_strategy=MOCK_SYNC)
    _populate(conn)
    return server


@pytest.fixture
def make_client(ufds_server):
    """Factory for :class:`UfdsClient` instances talking to the fake server."""

    def _make(label="local", **kwargs):
        params = dict(
            url="ldap://fake_ufds",
            bind_dn=BIND_DN,
            bind_password=BIND_PASSWORD,
            users_base_dn=USERS_DN,
            retries=0,
            label=label,
            connection_factory=lambda c: Connection(
                ufds_server, user=c.bind_dn, password=c.bind_password, client_strategy=MOCK_SYNC
            ),
        )
        params.update(kwargs)
        return UfdsClient(**params)

    return _make


@pytest.fixture
def context_factory(make_client):
    """``context_factory`` for :func:`sdc_useradm.main.main` backed by the fake server."""
    created = []

    def _factory(config):
        ctx = UseradmContext(config=config, client_factory=lambda cfg, label: make_client(label))
        created.append(ctx)
        return ctx

    _factory.created = created
    return _factory
