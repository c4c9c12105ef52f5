import base64
import io
import json

import pytest

from sdc_useradm.core.application import UseradmContext
from sdc_useradm.errors import DirectoryError
from sdc_useradm.main import main

from conftest import ADMIN_UUID, JANE_UUID

KEY_BLOB = b"\x00\x00\x00\x07ssh-rsa\x00\x00\x00\x03\x01\x00\x01other-modulus"
PUBKEY = f"ssh-rsa {base64.b64encode(KEY_BLOB).decode()} jane@laptop\n"


def _run(context_factory, *argv):
    return main(list(argv), context_factory=context_factory)


def _get_user(context_factory, capsys, login):
    assert _run(context_factory, "get", login) == 0
    return json.loads(capsys.readouterr().out)


class StubClient:
    """Stands in for :class:`UfdsClient` where the add outcome must be scripted."""

    users_base_dn = "ou=users,o=smartdc"

    def __init__(self, failures):
        self.failures = list(failures)
        self.added = []
        self.closed = False

    def connect(self):
        return self

    def close(self):
        self.closed = True

    def add(self, dn, attributes):
        self.added.append((dn, dict(attributes)))
        if self.failures:
            raise self.failures.pop(0)


@pytest.fixture
def stub_context():
    def _make(client):
        return lambda config: UseradmContext(config=config, client_factory=lambda cfg, label: client)
    return _make


@pytest.fixture
def prompts(monkeypatch):
    """Script answers for ``input`` and ``getpass``."""

    def _script(inputs, passwords):
        inputs, passwords = iter(inputs), iter(passwords)
        monkeypatch.setattr("builtins.input", lambda prompt="": next(inputs))
        monkeypatch.setattr("sdc_useradm.prompt.getpass.getpass", lambda prompt="": next(passwords))

    return _script


# ---------------------------------------------------------------------------
# Mainline
# ---------------------------------------------------------------------------


def test_no_subcommand_prints_help(capsys):
    assert main([]) == 1
    assert "usage: sdc-useradm" in capsys.readouterr().err


def test_ping(context_factory, capsys):
    assert _run(context_factory, "ping") == 0
    assert capsys.readouterr().out == "pong\n"


def test_clients_closed_after_run(context_factory):
    assert _run(context_factory, "ping") == 0
    (ctx,) = context_factory.created
    assert ctx._clients == {}


def test_clients_closed_when_command_fails(make_client):
    contexts, clients = [], []

    def client_factory(cfg, label):
        client = make_client(label)
        clients.append(client)
        return client

    def factory(config):
        ctx = UseradmContext(config=config, client_factory=client_factory)
        contexts.append(ctx)
        return ctx

    assert main(["get", "nobody"], context_factory=factory) == 1
    assert contexts[0]._clients == {}
    assert len(clients) == 1
    assert not clients[0].connected


def test_reads_work_without_master_url(context_factory, capsys, monkeypatch):
    monkeypatch.setenv("UFDS_IS_MASTER", "0")
    assert _run(context_factory, "get", "admin") == 0
    assert json.loads(capsys.readouterr().out)["login"] == "admin"

    assert _run(context_factory, "replace-attr", "admin", "company", "Joyent") == 1
    assert "error (Config): UFDS_MASTER_URL is required" in capsys.readouterr().err


def test_verbose_output_does_not_leak_password(context_factory, capsys):
    assert _run(context_factory, "-v", "replace-attr", "admin", "userpassword", "S3cretPass!") == 0
    err = capsys.readouterr().err
    assert "modify uuid=" in err
    assert "S3cretPass!" not in err


def test_connect_failure_reports_api_error(capsys):
    def factory(config):
        def client_factory(cfg, label):
            raise DirectoryError(503, "ServiceUnavailable", "unable to open socket")
        return UseradmContext(config=config, client_factory=client_factory)

    assert main(["ping"], context_factory=factory) == 1
    assert capsys.readouterr().err == "sdc-useradm ping: error (ServiceUnavailable): unable to open socket\n"


# ---------------------------------------------------------------------------
# get / search
# ---------------------------------------------------------------------------


def test_get_json(context_factory, capsys):
    user = _get_user(context_factory, capsys, "admin")
    assert user["login"] == "admin"
    assert user["uuid"] == ADMIN_UUID
    assert list(user)[0] == "dn"


def test_get_ldif(context_factory, capsys):
    assert _run(context_factory, "get", "--ldif", JANE_UUID) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].lower() == f"dn: uuid={JANE_UUID},ou=users,o=smartdc"
    assert "allowed_dcs: us-east-1" in lines
    assert "allowed_dcs: us-west-1" in lines


def test_get_unknown_user(context_factory, capsys):
    assert _run(context_factory, "get", "nobody") == 1
    err = capsys.readouterr().err
    assert err.startswith("sdc-useradm get: error (NoSuchUser):")
    assert "nobody" in err


def test_search_json(context_factory, capsys):
    assert _run(context_factory, "search", "login=admin", "--json") == 0
    users = json.loads(capsys.readouterr().out)
    assert [u["login"] for u in users] == ["admin"]


def test_search_table_columns(context_factory, capsys):
    assert _run(context_factory, "search", "-H", "-o", "login", "login=admin") == 0
    assert capsys.readouterr().out == "admin\n"


def test_search_bare_term_default_table(context_factory, capsys):
    assert _run(context_factory, "search", "jane") == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split() == ["UUID", "LOGIN", "EMAIL", "CREATED"]
    assert lines[1].split() == [JANE_UUID, "jane", "jane@joyent.com", "2014-01-01"]
    assert len(lines) == 2


def test_search_boolean_field(context_factory, capsys):
    assert _run(context_factory, "search", "-H", "-o", "login", "approved_for_provisioning=true") == 0
    assert capsys.readouterr().out == "admin\n"


def test_search_not_equal(context_factory, capsys):
    assert _run(context_factory, "search", "-H", "-o", "login", "login!=admin") == 0
    assert capsys.readouterr().out == "jane\n"


def test_search_unsupported_operator(context_factory, capsys):
    assert _run(context_factory, "search", "foo==bar") == 1
    assert '"==" operator not supported, use "="' in capsys.readouterr().err
    # rejected before any connection was opened
    (ctx,) = context_factory.created
    assert ctx._clients == {}


def test_search_requires_terms(context_factory, capsys):
    assert _run(context_factory, "search") == 2


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


def test_create_from_stdin(context_factory, capsys, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps({
        "login": "stdinuser",
        "email": "stdin@example.com",
        "userpassword": "secret123",
    })))
    assert _run(context_factory, "create") == 0
    out = capsys.readouterr().out
    assert out.startswith("User ") and out.endswith('(login "stdinuser") created\n')

    user = _get_user(context_factory, capsys, "stdinuser")
    assert user["objectclass"].lower() == "sdcperson"
    assert user["created_at"] == user["updated_at"]


def test_create_from_args(context_factory, capsys):
    assert _run(context_factory, "create", "-A", "login=bob", "email=bob@example.com",
                "userpassword=secret123", "cn=Bob Smith") == 0
    capsys.readouterr()
    user = _get_user(context_factory, capsys, "bob")
    assert user["sn"] == "Smith"
    assert user["givenName"] == "Bob"
    assert user["approved_for_provisioning"] == "true"


def test_create_from_file(context_factory, capsys, tmp_path):
    path = tmp_path / "user.json"
    path.write_text(json.dumps({"login": "filed", "email": "filed@example.com", "userpassword": "x1234567"}))
    assert _run(context_factory, "create", "-f", str(path)) == 0
    assert 'login "filed"' in capsys.readouterr().out


def test_create_rejects_file_with_args(context_factory, capsys, tmp_path):
    path = tmp_path / "user.json"
    path.write_text("{}")
    assert _run(context_factory, "create", "-f", str(path), "login=bob") == 2
    assert "cannot specify args" in capsys.readouterr().err


def test_create_rejects_memberof(context_factory, capsys):
    assert _run(context_factory, "create", "login=bob", "memberof=cn=operators") == 2
    assert "memberof" in capsys.readouterr().err


def test_create_interactive_retries_bad_password(stub_context, prompts, capsys):
    client = StubClient([DirectoryError(409, "InvalidArgument", "passwordTooShort")])
    prompts(["bob", "bob@example.com", "Bob Smith"], ["short", "short", "longer-pass1", "longer-pass1"])

    assert main(["create", "-i"], context_factory=stub_context(client)) == 0
    out = capsys.readouterr().out
    assert "* * *\nError with password: passwordTooShort (retry)\n" in out
    assert len(client.added) == 2
    assert client.added[-1][1]["userpassword"] == "longer-pass1"
    assert client.closed


def test_create_interactive_gives_up_after_three_attempts(stub_context, prompts, capsys):
    failures = [DirectoryError(409, "InvalidArgument", "passwordTooShort") for _ in range(3)]
    client = StubClient(failures)
    prompts(["bob", "bob@example.com", ""], ["a", "a", "b", "b", "c", "c"])

    assert main(["create", "-i"], context_factory=stub_context(client)) == 1
    assert len(client.added) == 3
    assert "passwordTooShort" in capsys.readouterr().err


def test_create_interactive_password_mismatch(stub_context, prompts, capsys):
    client = StubClient([])
    prompts(["bob", "bob@example.com"], ["one", "two"])
    assert main(["create", "-i"], context_factory=stub_context(client)) == 1
    assert "do not match" in capsys.readouterr().err
    assert client.added == []


def test_create_interactive_required_field(stub_context, prompts, capsys):
    client = StubClient([])
    prompts([""], [])
    assert main(["create", "-i"], context_factory=stub_context(client)) == 1
    assert "login is required" in capsys.readouterr().err
    assert client.added == []


def test_create_non_interactive_does_not_retry(stub_context, capsys):
    client = StubClient([DirectoryError(409, "InvalidArgument", "passwordTooShort")])
    assert main(["create", "login=bob", "email=bob@example.com", "userpassword=x"],
                context_factory=stub_context(client)) == 1
    assert len(client.added) == 1
    assert "error (InvalidArgument): passwordTooShort" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Attributes
# ---------------------------------------------------------------------------


def test_replace_attr(context_factory, capsys):
    assert _run(context_factory, "replace-attr", "admin", "company", "Joyent") == 0
    assert capsys.readouterr().out == f"Replaced attribute on user {ADMIN_UUID} (admin): company=Joyent\n"
    assert _get_user(context_factory, capsys, "admin")["company"] == "Joyent"


def test_add_attr(context_factory, capsys):
    assert _run(context_factory, "add-attr", "jane", "allowed_dcs", "eu-ams-1") == 0
    capsys.readouterr()
    user = _get_user(context_factory, capsys, "jane")
    assert sorted(user["allowed_dcs"]) == ["eu-ams-1", "us-east-1", "us-west-1"]


def test_delete_attr_value(context_factory, capsys):
    assert _run(context_factory, "delete-attr", "jane", "allowed_dcs", "us-east-1") == 0
    assert capsys.readouterr().out == (
        f'Deleted attribute "allowed_dcs=us-east-1" from user {JANE_UUID} (jane)\n'
    )
    assert _get_user(context_factory, capsys, "jane")["allowed_dcs"] == "us-west-1"


def test_delete_attr_multi_valued_needs_value(context_factory, capsys):
    assert _run(context_factory, "delete-attr", "jane", "allowed_dcs") == 2
    assert "has multiple values" in capsys.readouterr().err


def test_delete_attr_all(context_factory, capsys):
    assert _run(context_factory, "delete-attr", "--all", "jane", "allowed_dcs") == 0
    assert capsys.readouterr().out.startswith('Deleted all attribute "allowed_dcs" values')
    assert not _get_user(context_factory, capsys, "jane").get("allowed_dcs")


def test_delete_attr_all_with_value(context_factory, capsys):
    assert _run(context_factory, "delete-attr", "-a", "jane", "allowed_dcs", "us-east-1") == 2


def test_delete_attr_single_value_case_insensitive(context_factory, capsys):
    assert _run(context_factory, "delete-attr", "admin", "EMAIL") == 0
    assert capsys.readouterr().out == f'Deleted attribute "EMAIL" from user {ADMIN_UUID} (admin)\n'


@pytest.mark.parametrize(
    "argv,code",
    [
        (["jane", "company"], "NoSuchAttribute"),
        (["jane", "allowed_dcs", "eu-ams-1"], "NoSuchValue"),
    ],
)
def test_delete_attr_missing(context_factory, capsys, argv, code):
    assert _run(context_factory, "delete-attr", *argv) == 1
    assert f"error ({code})" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def test_key_lifecycle(context_factory, capsys, tmp_path):
    path = tmp_path / "id_rsa.pub"
    path.write_text(PUBKEY)

    assert _run(context_factory, "add-key", "-n", "laptop", "jane", str(path)) == 0
    assert capsys.readouterr().out == 'Key "laptop" added to user "jane"\n'

    assert _run(context_factory, "keys", "--json", "jane") == 0
    keys = json.loads(capsys.readouterr().out)
    assert [k["name"] for k in keys] == ["laptop"]
    fingerprint = keys[0]["fingerprint"]

    assert _run(context_factory, "keys", "-H", "jane") == 0
    assert capsys.readouterr().out.split() == ["laptop", fingerprint]

    assert _run(context_factory, "key", "--ldif", "jane", fingerprint) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("dn: fingerprint=")
    assert lines[1] == "name: laptop"

    assert _run(context_factory, "delete-key", "jane", "laptop") == 0
    assert capsys.readouterr().out == 'Key "laptop" deleted from user "jane"\n'

    assert _run(context_factory, "key", "jane", "laptop") == 1
    assert "error (NoSuchKey)" in capsys.readouterr().err


def test_add_key_requires_pub_suffix(context_factory, capsys, tmp_path):
    path = tmp_path / "id_rsa"
    path.write_text(PUBKEY)
    assert _run(context_factory, "add-key", "jane", str(path)) == 2
    assert 'does not end in ".pub"' in capsys.readouterr().err
    assert _run(context_factory, "add-key", "--force", "jane", str(path)) == 0


def test_delete_unknown_key(context_factory, capsys):
    assert _run(context_factory, "delete-key", "admin", "nope") == 1
    assert "error (NoSuchKey)" in capsys.readouterr().err


def test_debug_env_enables_debug_logging(context_factory, capsys, monkeypatch):
    monkeypatch.setenv("DEBUG", "true")
    assert _run(context_factory, "ping") == 0
    err = capsys.readouterr().err
    assert "[DEBUG] Loaded config:" in err
    assert "'bind_password': '***'" in err
