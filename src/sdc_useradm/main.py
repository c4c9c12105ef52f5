"""sdc-useradm entrypoint.

Administer SDC users (``objectclass=sdcperson``) and their SSH keys in UFDS.
Sets up logging, parses the command line and dispatches to
:mod:`sdc_useradm.commands` inside a :class:`UseradmContext` that guarantees
every UFDS connection is closed on exit.
"""
from __future__ import annotations

import argparse
import logging
import sys
import traceback
from typing import Callable, Optional, Sequence

from sdc_useradm import commands
from sdc_useradm.config import Config
from sdc_useradm.core.application import UseradmContext
from sdc_useradm.core.constants import (
    NAME,
    VERSION,
    DEFAULT_SEARCH_COLUMNS,
    DEFAULT_SEARCH_SORT,
    DEFAULT_KEYS_COLUMNS,
    DEFAULT_KEYS_SORT,
)
from sdc_useradm.errors import APIError, DirectoryError, UseradmError

ContextFactory = Callable[[Config], UseradmContext]

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure and return the application logger (stderr, WARNING by default)."""

    # Configure only the application logger, not the root logger
    app_logger = logging.getLogger("sdc_useradm")
    app_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    app_logger.propagate = False

    # Clear any existing handlers to avoid duplicate logs
    for h in list(app_logger.handlers):
        app_logger.removeHandler(h)

    formatter = logging.Formatter(
        fmt="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S %d.%m.%y",
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    return app_logger

# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _add_table_options(p: argparse.ArgumentParser, columns: str, sort: str) -> None:
    p.add_argument("-j", "--json", action="store_true", help="JSON output.")
    p.add_argument("-H", action="store_true", help="Do not print table header row.")
    p.add_argument("-o", default=columns, metavar="field1,...",
                   help=f"Specify fields (columns) to output. Default is {columns!r}.")
    p.add_argument("-s", default=sort, metavar="field1,...",
                   help=f"Sort on the given fields. Default is {sort!r}.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=NAME,
        description="Administer SDC users (and related objects) in UFDS.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose/debug output.")
    sub = parser.add_subparsers(dest="subcmd", metavar="<command>")

    p = sub.add_parser("ping", help="Ping the UFDS server.")
    p.add_argument("-m", "--master", action="store_true", help="Ping the master UFDS server.")
    p.set_defaults(func=commands.do_ping)

    p = sub.add_parser("get", help="Get a user.", description="Get a user. This emits in JSON by default.")
    p.add_argument("-l", "--ldif", action="store_true", help="LDIF-like output.")
    p.add_argument("login_or_uuid", metavar="<login|uuid>")
    p.set_defaults(func=commands.do_get)

    p = sub.add_parser(
        "search",
        help="Search users.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=(
            "Search users.\n\n"
            "The search term is either a plain string -- which does a\n"
            "(case-sensitive) match of login (substring), uuid, cn (substring) and\n"
            "email (substring) -- or a field-scoped comparison of the form\n"
            '<field><op><value> -- e.g. "login=admin". Supported operators are:\n\n'
            "    foo=bar\n    foo!=bar\n    foo>=123\n    foo<=bar\n\n"
            "Substring matching is supported as well:\n\n"
            "    foo=*bar*\n"
        ),
    )
    _add_table_options(p, DEFAULT_SEARCH_COLUMNS, DEFAULT_SEARCH_SORT)
    p.add_argument("-l", "--long", action="store_true",
                   help='Longer table output. Shortcut for "-o uuid,login,cn,email,company,created_time".')
    p.add_argument("terms", nargs="*", metavar="<terms...>")
    p.set_defaults(func=commands.do_search)

    p = sub.add_parser(
        "create",
        help="Create a new user.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=(
            "Create a new user.\n\n"
            "    ...stdin... | sdc-useradm create            # 1. data as JSON on stdin\n"
            "    sdc-useradm create -f foo.json              # 2. data in JSON file\n"
            "    sdc-useradm create <field>=<value>...       # 3. all fields as args\n"
            "    sdc-useradm create -i [<field>=<value>...]  # 4. prompt for fields\n"
        ),
    )
    p.add_argument("-f", metavar="FILE", help="JSON file with user data.")
    p.add_argument("-i", action="store_true", help="Interactively prompt for fields.")
    p.add_argument("-a", "--all", action="store_true",
                   help='If used with "-i" will prompt for all user fields. By default '
                        "only the most common fields are prompted.")
    p.add_argument("-A", "--approved-for-provisioning", action="store_true",
                   help="Approve this user for provisioning, i.e. enable the account.")
    p.add_argument("fields", nargs="*", metavar="<field>=<value>")
    p.set_defaults(func=commands.do_create)

    p = sub.add_parser("replace-attr", help="Replace/set an attribute on a user.")
    p.add_argument("login_or_uuid", metavar="<login|uuid>")
    p.add_argument("attr", metavar="<attr>")
    p.add_argument("value", metavar="<value>")
    p.set_defaults(func=commands.do_replace_attr)

    p = sub.add_parser("add-attr", help="Add an attribute (value) on a user.")
    p.add_argument("login_or_uuid", metavar="<login|uuid>")
    p.add_argument("attr", metavar="<attr>")
    p.add_argument("values", nargs="+", metavar="<value>")
    p.set_defaults(func=commands.do_add_attr)

    p = sub.add_parser("delete-attr", help="Delete an attribute on a user.")
    p.add_argument("-a", "--all", action="store_true", help="Delete all attribute values from the user.")
    p.add_argument("login_or_uuid", metavar="<login|uuid>")
    p.add_argument("attr", metavar="<attr>")
    p.add_argument("value", nargs="?", metavar="<value>")
    p.set_defaults(func=commands.do_delete_attr)

    p = sub.add_parser("add-key", help="Add a key to a user.")
    p.add_argument("-n", "--name", help="A name for the key. Defaults to the pubkey fingerprint.")
    p.add_argument("-f", "--force", action="store_true",
                   help='Force allow a pubkey path that does not end in ".pub".')
    p.add_argument("login_or_uuid", metavar="<login|uuid>")
    p.add_argument("pubkey_path", metavar="<path-to-pubkey>")
    p.set_defaults(func=commands.do_add_key)

    p = sub.add_parser("delete-key", help="Delete a key from a user.")
    p.add_argument("login_or_uuid", metavar="<login|uuid>")
    p.add_argument("key", metavar="<key-name-or-fingerprint>")
    p.set_defaults(func=commands.do_delete_key)

    p = sub.add_parser("keys", help="List a user's keys.")
    _add_table_options(p, DEFAULT_KEYS_COLUMNS, DEFAULT_KEYS_SORT)
    p.add_argument("login_or_uuid", metavar="<login|uuid>")
    p.set_defaults(func=commands.do_keys)

    p = sub.add_parser("key", help="Get a user's key by name or fingerprint.")
    p.add_argument("-l", "--ldif", action="store_true", help="LDIF-like output.")
    p.add_argument("login_or_uuid", metavar="<login|uuid>")
    p.add_argument("key", metavar="<key-name-or-fingerprint>")
    p.set_defaults(func=commands.do_key)

    return parser

# ---------------------------------------------------------------------------
# Main entrypoint
# ---------------------------------------------------------------------------

def main(argv: Optional[Sequence[str]] = None, *, context_factory: Optional[ContextFactory] = None) -> int:
    """Run one sdc-useradm command and return the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = setup_logging(args.verbose)

    if not getattr(args, "func", None):
        parser.print_help(sys.stderr)
        return 1

    subcmd_str = f" {args.subcmd}"
    try:
        config = Config.load()
        if config.debug:
            logger.setLevel(logging.DEBUG)
        logger.debug("Loaded config: %s", config.masked())
        factory = context_factory or (lambda cfg: UseradmContext(config=cfg))
        with factory(config) as ctx:
            try:
                args.func(ctx, args)
            except DirectoryError as exc:
                raise APIError(exc) from exc
    except UseradmError as err:
        if err.code:
            print(f"{NAME}{subcmd_str}: error ({err.code}): {err.message}", file=sys.stderr)
        else:
            print(f"{NAME}{subcmd_str}: error: {err.message}", file=sys.stderr)
        if args.verbose:
            print("", file=sys.stderr)
            traceback.print_exception(type(err), err, err.__traceback__, file=sys.stderr)
        logger.debug("%s failed: %r", args.subcmd, err)
        return err.exit_status
    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
