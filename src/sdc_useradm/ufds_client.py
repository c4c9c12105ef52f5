"""UFDS directory client built on *ldap3*.

A thin adapter exposing just what the CLI needs:

* ``connect``/``close`` – simple bind with bounded retry on connect failure.
* ``search``, ``get_user``, ``add``, ``modify``, ``delete``.
* SSH key helpers (``list_keys``, ``get_key``, ``add_key``, ``delete_key``)
  working on ``sdckey`` entries stored directly below a user entry.

Records are returned as plain dicts: ``dn`` first, then the attributes with
single values flattened to scalars (multi-valued attributes stay lists).

Every ldap3 failure, whether a false return with ``conn.result`` or a raised
:class:`~ldap3.core.exceptions.LDAPException`, is converted into a tagged
:class:`~sdc_useradm.errors.DirectoryError` at this boundary.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import ssl
import time
from typing import Any, Callable, Dict, List, Mapping

from ldap3 import ALL_ATTRIBUTES, BASE, LEVEL, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import (
    LDAPCommunicationError,
    LDAPException,
    LDAPOperationResult,
    LDAPSocketOpenError,
)
from ldap3.core.results import (
    RESULT_ATTRIBUTE_OR_VALUE_EXISTS,
    RESULT_CONSTRAINT_VIOLATION,
    RESULT_ENTRY_ALREADY_EXISTS,
    RESULT_INSUFFICIENT_ACCESS_RIGHTS,
    RESULT_INVALID_CREDENTIALS,
    RESULT_NO_SUCH_ATTRIBUTE,
    RESULT_NO_SUCH_OBJECT,
    RESULT_OBJECT_CLASS_VIOLATION,
    RESULT_SIZE_LIMIT_EXCEEDED,
    RESULT_SUCCESS,
)
from ldap3.utils.conv import escape_filter_chars

from .core.constants import DEFAULT_USERS_BASE_DN, KEY_OBJECT_CLASS, USER_OBJECT_CLASS
from .errors import DirectoryError

logger = logging.getLogger("sdc_useradm.ufds")

__all__ = [
    "UfdsClient",
    "directory_error_from_result",
    "directory_error_from_exception",
    "key_fingerprint",
]

_SCOPES = {"base": BASE, "one": LEVEL, "sub": SUBTREE}

# LDAP result code -> (status_code, code)
_RESULT_STATUS = {
    RESULT_NO_SUCH_OBJECT: (404, "ResourceNotFound"),
    RESULT_CONSTRAINT_VIOLATION: (409, "InvalidArgument"),
    RESULT_ENTRY_ALREADY_EXISTS: (409, "InvalidArgument"),
    RESULT_OBJECT_CLASS_VIOLATION: (409, "InvalidArgument"),
    RESULT_ATTRIBUTE_OR_VALUE_EXISTS: (409, "InvalidArgument"),
    RESULT_NO_SUCH_ATTRIBUTE: (409, "InvalidArgument"),
    RESULT_INVALID_CREDENTIALS: (401, "InvalidCredentials"),
    RESULT_INSUFFICIENT_ACCESS_RIGHTS: (403, "NotAuthorized"),
}


# Error mapping ----------------------------------------------------------------


def _status_for(result_code: int | None) -> tuple[int, str]:
    return _RESULT_STATUS.get(result_code, (500, "InternalError"))


def directory_error_from_result(result: Mapping[str, Any] | None, operation: str) -> DirectoryError:
    """Build a :class:`DirectoryError` from an ldap3 ``conn.result`` dict."""
    result = result or {}
    code = result.get("result")
    status_code, err_code = _status_for(code)
    message = result.get("message") or result.get("description") or f"{operation} failed"
    return DirectoryError(status_code, err_code, message)


def directory_error_from_exception(exc: LDAPException) -> DirectoryError:
    """Build a :class:`DirectoryError` from a raised ldap3 exception."""
    if isinstance(exc, LDAPOperationResult):
        status_code, err_code = _status_for(exc.result)
        message = exc.message or exc.description or str(exc)
    elif isinstance(exc, (LDAPSocketOpenError, LDAPCommunicationError)):
        status_code, err_code = 503, "ServiceUnavailable"
        message = str(exc)
    else:
        status_code, err_code = 500, "InternalError"
        message = str(exc)
    return DirectoryError(status_code, err_code, message, cause=exc)


# Helpers ----------------------------------------------------------------------


def _build_server(url: str, ignore_cert: bool = False, ca_file: str | None = None,
                  connect_timeout: float | None = None) -> Server:
    """Build an ldap3 :class:`Server` with correct TLS settings."""
    use_ssl = url.lower().startswith("ldaps://")
    clean_host = url.replace("ldap://", "").replace("ldaps://", "")

    tls: Tls | None = None
    if use_ssl:
        if ignore_cert:
            tls = Tls(validate=ssl.CERT_NONE)
        elif ca_file:
            tls = Tls(validate=ssl.CERT_REQUIRED, ca_certs_file=ca_file)
    return Server(clean_host, use_ssl=use_ssl, get_info=None, tls=tls, connect_timeout=connect_timeout)


def _flatten(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        if len(value) == 1:
            return value[0]
        return list(value)
    return value


def _ldap_value(value: Any) -> Any:
    """Stringify a Python value for the wire (bools as ``true``/``false``)."""
    if isinstance(value, (list, tuple)):
        return [_ldap_value(v) for v in value]
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _redacted(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ldap3 *changes* with password values masked, for logging."""
    return {
        attr: [(op, "***") for op, _ in ops] if "password" in attr.lower() else ops
        for attr, ops in changes.items()
    }


def key_fingerprint(openssh: str) -> str:
    """Return the colon-separated MD5 fingerprint of an OpenSSH public key."""
    parts = openssh.strip().split()
    if len(parts) < 2:
        raise ValueError("not an OpenSSH public key")
    try:
        blob = base64.b64decode(parts[1].encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"invalid OpenSSH public key body: {exc}") from exc
    digest = hashlib.md5(blob).hexdigest()
    return ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))


# Client -----------------------------------------------------------------------


def _discard(conn: Connection) -> None:
    """Unbind a connection that failed to bind, ignoring errors."""
    try:
        conn.unbind()
    except LDAPException as exc:
        logger.debug("Error discarding unbound connection: %s", exc)


ConnectionFactory = Callable[["UfdsClient"], Connection]


class UfdsClient:
    """Facade around an ldap3 :class:`Connection` for one UFDS server."""

    def __init__(
        self,
        *,
        url: str,
        bind_dn: str,
        bind_password: str,
        users_base_dn: str = DEFAULT_USERS_BASE_DN,
        connect_timeout: float = 15,
        retries: int = 2,
        retry_max_delay: float = 10,
        ignore_cert: bool = False,
        ca_file: str | None = None,
        label: str = "local",
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self.url = url
        self.bind_dn = bind_dn
        self.bind_password = bind_password
        self.users_base_dn = users_base_dn
        self.connect_timeout = connect_timeout
        self.retries = retries
        self.retry_max_delay = retry_max_delay
        self.ignore_cert = ignore_cert
        self.ca_file = ca_file
        self.label = label
        self._connection_factory = connection_factory or _default_connection
        self._conn: Connection | None = None
        self.log = logging.getLogger(f"sdc_useradm.ufds.{label}")

    def __repr__(self) -> str:  # pragma: no cover - cosmetic
        state = "connected" if self._conn is not None else "closed"
        return f"UfdsClient(label={self.label!r}, url={self.url!r}, {state})"

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    @property
    def connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> "UfdsClient":
        """Bind to the server, retrying connect failures ``retries`` times."""
        if self._conn is not None:
            return self
        attempt = 0
        while True:
            attempt += 1
            self.log.debug("Connecting to %s as %s (attempt %d)", self.url, self.bind_dn, attempt)
            conn = None
            try:
                conn = self._connection_factory(self)
                if conn.bind():
                    self._conn = conn
                    self.log.debug("Bound to %s", self.url)
                    return self
                err = directory_error_from_result(conn.result, "bind")
                _discard(conn)
            except LDAPException as exc:
                err = directory_error_from_exception(exc)
                if conn is not None:
                    _discard(conn)

            if err.status_code != 503 or attempt > self.retries:
                raise err
            delay = min(self.retry_max_delay, 2 ** (attempt - 1))
            self.log.info("UFDS %s unavailable (%s), retrying in %ss", self.label, err.message, delay)
            time.sleep(delay)

    def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            conn.unbind()
        except LDAPException as exc:
            self.log.warning("Error closing UFDS %s connection: %s", self.label, exc)
        self.log.debug("Closed connection to %s", self.url)

    def _connection(self) -> Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def _run(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Connection:
        conn = self._connection()
        try:
            ok = func(conn, *args, **kwargs)
        except LDAPException as exc:
            raise directory_error_from_exception(exc) from exc
        code = (conn.result or {}).get("result")
        if operation == "search":
            if code == RESULT_SIZE_LIMIT_EXCEEDED:
                self.log.warning("Search hit the server size limit, results are truncated")
            elif code != RESULT_SUCCESS:
                raise directory_error_from_result(conn.result, operation)
        elif not ok:
            raise directory_error_from_result(conn.result, operation)
        return conn

    # ------------------------------------------------------------------
    # Generic operations
    # ------------------------------------------------------------------
    def search(self, base: str, search_filter: str, scope: str = "one") -> List[Dict[str, Any]]:
        """Return matching entries as flattened dicts (``dn`` first)."""
        self.log.debug("search base=%r scope=%s filter=%s", base, scope, search_filter)
        conn = self._run(
            "search",
            lambda c: c.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=_SCOPES[scope],
                attributes=ALL_ATTRIBUTES,
            ),
        )
        records: list[Dict[str, Any]] = []
        for item in conn.response or []:
            if item.get("type") != "searchResEntry":
                continue
            record: Dict[str, Any] = {"dn": str(item["dn"])}
            for name, value in item.get("attributes", {}).items():
                record[name] = _flatten(value)
            records.append(record)
        self.log.debug("search returned %d entries", len(records))
        return records

    def add(self, dn: str, attributes: Mapping[str, Any]) -> None:
        payload = {k: _ldap_value(v) for k, v in attributes.items() if v is not None}
        self.log.debug("add %s (attributes: %s)", dn, sorted(k for k in payload if k != "userpassword"))
        self._run("add", lambda c: c.add(dn, attributes=payload))

    def modify(self, dn: str, changes: Mapping[str, Any]) -> None:
        """Apply ldap3-style *changes*, e.g. ``{"attr": [(MODIFY_ADD, ["v"])]}``."""
        payload = {
            attr: [(op, _ldap_value(list(values))) for op, values in ops]
            for attr, ops in changes.items()
        }
        self.log.debug("modify %s: %s", dn, _redacted(payload))
        self._run("modify", lambda c: c.modify(dn, payload))

    def delete(self, dn: str) -> None:
        self.log.debug("delete %s", dn)
        self._run("delete", lambda c: c.delete(dn))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def get_user(self, login_or_uuid: str) -> Dict[str, Any] | None:
        """Look a user up by login or UUID; ``None`` if there is no such user."""
        value = escape_filter_chars(login_or_uuid)
        flt = f"(&(objectclass={USER_OBJECT_CLASS})(|(login={value})(uuid={value})))"
        users = self.search(self.users_base_dn, flt, scope="one")
        return users[0] if users else None

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------
    def list_keys(self, user: Mapping[str, Any]) -> List[Dict[str, Any]]:
        return self.search(user["dn"], f"(objectclass={KEY_OBJECT_CLASS})", scope="one")

    def _find_keys(self, user: Mapping[str, Any], *values: str) -> List[Dict[str, Any]]:
        clauses = "".join(
            f"(name={escape_filter_chars(v)})(fingerprint={escape_filter_chars(v)})" for v in values
        )
        flt = f"(&(objectclass={KEY_OBJECT_CLASS})(|{clauses}))"
        return self.search(user["dn"], flt, scope="one")

    def get_key(self, user: Mapping[str, Any], name_or_fingerprint: str) -> Dict[str, Any]:
        keys = self._find_keys(user, name_or_fingerprint)
        if not keys:
            raise DirectoryError(404, "ResourceNotFound", f"{name_or_fingerprint} does not exist")
        return keys[0]

    def add_key(self, user: Mapping[str, Any], openssh: str, name: str | None = None) -> Dict[str, Any]:
        try:
            fingerprint = key_fingerprint(openssh)
        except ValueError as exc:
            raise DirectoryError(409, "InvalidArgument", str(exc)) from exc
        name = name or fingerprint
        if self._find_keys(user, name, fingerprint):
            raise DirectoryError(
                409, "InvalidArgument", f'a key with name "{name}" or fingerprint {fingerprint} already exists'
            )
        dn = f"fingerprint={fingerprint},{user['dn']}"
        self.add(dn, {
            "objectclass": KEY_OBJECT_CLASS,
            "fingerprint": fingerprint,
            "name": name,
            "openssh": openssh.strip(),
        })
        return self.get_key(user, fingerprint)

    def delete_key(self, user: Mapping[str, Any], name_or_fingerprint: str) -> None:
        key = self.get_key(user, name_or_fingerprint)
        self.delete(key["dn"])


def _default_connection(client: UfdsClient) -> Connection:
    server = _build_server(
        client.url,
        ignore_cert=client.ignore_cert,
        ca_file=client.ca_file,
        connect_timeout=client.connect_timeout,
    )
    return Connection(
        server,
        user=client.bind_dn,
        password=client.bind_password,
        receive_timeout=client.connect_timeout,
    )
