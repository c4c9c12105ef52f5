"""Subcommand implementations for ``sdc-useradm``.

Each ``do_<name>(ctx, args)`` receives the per-run
:class:`~sdc_useradm.core.application.UseradmContext` and the parsed
:class:`argparse.Namespace`.  Output goes to stdout; failures are raised as
:class:`~sdc_useradm.errors.UseradmError` subclasses for the mainline to
report.  Reads go to the local UFDS, writes to the master.
"""
from __future__ import annotations

import json
import logging
import sys
import time
import uuid as uuidlib
from pathlib import Path
from typing import Any, Dict, List, Tuple

from ldap3 import MODIFY_ADD, MODIFY_DELETE, MODIFY_REPLACE

from .core.application import UseradmContext
from .core.constants import (
    LONG_SEARCH_COLUMNS,
    MAX_CREATE_ATTEMPTS,
    PASSWORD_POLICY_ERRORS,
    USER_OBJECT_CLASS,
)
from .errors import (
    DirectoryError,
    NoSuchAttributeError,
    NoSuchKeyError,
    NoSuchUserError,
    NoSuchValueError,
    TypeCoercionError,
    UsageError,
    UseradmError,
)
from .filter_builder import build_search_filter
from .output import print_json, print_ldif, print_table, split_fields
from .prompt import PromptField, read_field
from .records import annotate_times, relevance, sdc_person_from_entry
from .ufds_client import UfdsClient

logger = logging.getLogger("sdc_useradm.commands")

USERPASSWORD_FIELD = PromptField("userpassword", prompt=True, required=True, hidden=True, confirm=True)
CREATE_FIELDS = [
    PromptField("login", prompt=True, required=True),
    PromptField("email", prompt=True, required=True),
    USERPASSWORD_FIELD,
    PromptField("cn", prompt=True),
    PromptField("company"),
    PromptField("address"),
    PromptField("city"),
    PromptField("state"),
    PromptField("postalCode"),
    PromptField("country"),
    PromptField("phone"),
]
KEY_LDIF_FIELDS = ["dn", "name", "fingerprint", "openssh"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_user(client: UfdsClient, login_or_uuid: str) -> Dict[str, Any]:
    user = client.get_user(login_or_uuid)
    if user is None:
        raise NoSuchUserError(login_or_uuid)
    return user


def _attr_lookup(user: Dict[str, Any], attr: str) -> Tuple[str, Any]:
    """Case-insensitive attribute lookup, as LDAP attribute names are.

    Returns the attribute name as stored on the entry and its value.
    """
    if attr in user:
        return attr, user[attr]
    for name, value in user.items():
        if name.lower() == attr.lower():
            return name, value
    return attr, None


def _read(field: PromptField, default: Any = None) -> str:
    try:
        return read_field(field, None if default is None else str(default))
    except ValueError as exc:
        raise UseradmError(str(exc)) from exc


def _load_json_object(text: str, source: str) -> Dict[str, Any]:
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise UsageError(f"invalid JSON data {source}: {exc}") from exc
    if not isinstance(data, dict):
        raise UsageError(f"invalid JSON data {source}: expected an object")
    return data


# ---------------------------------------------------------------------------
# ping / get / search
# ---------------------------------------------------------------------------


def do_ping(ctx: UseradmContext, args) -> None:
    if args.master:
        ctx.master_client()
    else:
        ctx.local_client()
    print("pong")


def do_get(ctx: UseradmContext, args) -> None:
    user = _get_user(ctx.local_client(), args.login_or_uuid)
    if args.ldif:
        print_ldif(user)
    else:
        print_json(user)


def do_search(ctx: UseradmContext, args) -> None:
    # Build first: a bad term fails before touching the directory.
    search_filter = build_search_filter(args.terms)
    columns = split_fields(LONG_SEARCH_COLUMNS if args.long else args.o)
    sort = split_fields(args.s)

    client = ctx.local_client()
    entries = client.search(client.users_base_dn, str(search_filter), scope="one")

    if args.json:
        print_json(entries)
        return

    rows: List[Dict[str, Any]] = []
    for entry in entries:
        try:
            person = sdc_person_from_entry(entry)
        except TypeCoercionError as exc:
            logger.warning("skipping sdcPerson with invalid raw UFDS data: %s (dn: %s)", exc, entry.get("dn"))
            continue
        annotate_times(person)
        person["relevance"] = relevance(person, search_filter.term)
        rows.append(person)
    print_table(rows, columns, sort=sort, skip_header=args.H)


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


def _create_data(args) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if args.approved_for_provisioning:
        data["approved_for_provisioning"] = True

    if not (args.i or args.f or args.fields):
        data.update(_load_json_object(sys.stdin.read(), "on stdin"))

    if args.f:
        if args.i:
            raise UsageError('cannot use both "-i" and "-f" options')
        if args.fields:
            raise UsageError('cannot specify args and the "-f" option')
        try:
            content = Path(args.f).read_text()
        except OSError as exc:
            raise UsageError(f'cannot read "{args.f}": {exc}') from exc
        data.update(_load_json_object(content, f'in "{args.f}"'))

    for arg in args.fields:
        field, sep, value = arg.partition("=")
        if not sep:
            raise UsageError(f'invalid field arg "{arg}": must match "<field>=<value>"')
        try:
            data[field] = json.loads(value)
        except ValueError:
            data[field] = value

    if args.i:
        for field in CREATE_FIELDS:
            if not field.prompt and not args.all:
                continue
            val = _read(field, data.get(field.name))
            if val:
                data[field.name] = val
    return data


def _ensure_fields(data: Dict[str, Any]) -> None:
    if data.get("memberof"):
        raise UsageError('cannot set "memberof" in user creation')
    data["objectclass"] = USER_OBJECT_CLASS
    if not data.get("uuid"):
        data["uuid"] = str(uuidlib.uuid4())
    cn = data.get("cn")
    if isinstance(cn, str) and cn and not data.get("sn") and not data.get("givenName"):
        cn = cn.rstrip()
        idx = cn.rfind(" ")
        if idx != -1:
            data["sn"] = cn[idx:].strip()
            data["givenName"] = cn[:idx].strip()
    now = int(time.time() * 1000)
    if not data.get("created_at"):
        data["created_at"] = now
    if not data.get("updated_at"):
        data["updated_at"] = now


def do_create(ctx: UseradmContext, args) -> None:
    data = _create_data(args)
    _ensure_fields(data)

    client = ctx.master_client()
    dn = f"uuid={data['uuid']},{client.users_base_dn}"
    attempts = 0
    while True:
        attempts += 1
        try:
            client.add(dn, data)
            break
        except DirectoryError as exc:
            if not (args.i
                    and attempts < MAX_CREATE_ATTEMPTS
                    and exc.status_code == 409
                    and exc.message in PASSWORD_POLICY_ERRORS):
                raise
            print("* * *")
            print(f"Error with password: {exc.message} (retry)")
            data[USERPASSWORD_FIELD.name] = _read(USERPASSWORD_FIELD)
    print(f'User {data["uuid"]} (login "{data.get("login")}") created')


# ---------------------------------------------------------------------------
# Attributes
# ---------------------------------------------------------------------------


def do_replace_attr(ctx: UseradmContext, args) -> None:
    client = ctx.master_client()
    user = _get_user(client, args.login_or_uuid)
    client.modify(user["dn"], {args.attr: [(MODIFY_REPLACE, [args.value])]})
    print(f"Replaced attribute on user {user.get('uuid')} ({user.get('login')}): {args.attr}={args.value}")


def do_add_attr(ctx: UseradmContext, args) -> None:
    client = ctx.master_client()
    user = _get_user(client, args.login_or_uuid)
    client.modify(user["dn"], {args.attr: [(MODIFY_ADD, list(args.values))]})
    print(f"Added attribute on user {user.get('uuid')} ({user.get('login')}): "
          f"{args.attr}={', '.join(args.values)}")


def do_delete_attr(ctx: UseradmContext, args) -> None:
    login_or_uuid, attr, value = args.login_or_uuid, args.attr, args.value
    if args.all and value:
        raise UsageError("-a|--all and <value> are mutually exclusive")

    client = ctx.master_client()
    user = _get_user(client, login_or_uuid)

    name, existing = _attr_lookup(user, attr)
    if not existing:
        raise NoSuchAttributeError(login_or_uuid, attr)
    existing_values = existing if isinstance(existing, list) else [existing]
    if value and value not in existing_values:
        raise NoSuchValueError(login_or_uuid, attr, value)
    if not value and not args.all and len(existing_values) > 1:
        raise UsageError(
            f'user "{login_or_uuid}" attribute "{attr}" has multiple values (specify or use --all)')

    client.modify(user["dn"], {name: [(MODIFY_DELETE, [value] if value else existing_values)]})

    if args.all:
        print(f'Deleted all attribute "{attr}" values from user {user.get("uuid")} ({user.get("login")})')
    elif value:
        print(f'Deleted attribute "{attr}={value}" from user {user.get("uuid")} ({user.get("login")})')
    else:
        print(f'Deleted attribute "{attr}" from user {user.get("uuid")} ({user.get("login")})')


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def do_add_key(ctx: UseradmContext, args) -> None:
    path = args.pubkey_path
    if not args.force and not path.endswith(".pub"):
        raise UsageError(
            f'pubkey file, "{path}", does not end in ".pub": aborting in case this is '
            f'accidentally a private key file (use "--force" to override)')
    try:
        pubkey = Path(path).read_text(encoding="ascii")
    except (OSError, UnicodeDecodeError) as exc:
        raise UseradmError(f'cannot read pubkey file "{path}": {exc}') from exc

    client = ctx.master_client()
    user = _get_user(client, args.login_or_uuid)
    key = client.add_key(user, pubkey, name=args.name)
    print(f'Key "{key.get("name")}" added to user "{args.login_or_uuid}"')


def do_delete_key(ctx: UseradmContext, args) -> None:
    client = ctx.master_client()
    user = _get_user(client, args.login_or_uuid)
    try:
        client.delete_key(user, args.key)
    except DirectoryError as exc:
        if exc.status_code == 404:
            raise NoSuchKeyError(args.login_or_uuid, args.key, cause=exc) from exc
        raise
    print(f'Key "{args.key}" deleted from user "{args.login_or_uuid}"')


def do_keys(ctx: UseradmContext, args) -> None:
    client = ctx.local_client()
    user = _get_user(client, args.login_or_uuid)
    keys = client.list_keys(user)
    if args.json:
        print_json(keys)
    else:
        print_table(keys, split_fields(args.o), sort=split_fields(args.s), skip_header=args.H)


def do_key(ctx: UseradmContext, args) -> None:
    client = ctx.local_client()
    user = _get_user(client, args.login_or_uuid)
    try:
        key = client.get_key(user, args.key)
    except DirectoryError as exc:
        if exc.status_code == 404:
            raise NoSuchKeyError(args.login_or_uuid, args.key, cause=exc) from exc
        raise
    if args.ldif:
        print_ldif(key, preferred=KEY_LDIF_FIELDS)
    else:
        print_json(key)
