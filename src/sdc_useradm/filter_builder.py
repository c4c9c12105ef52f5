"""LDAP search filter builder for ``sdc-useradm search``.

Search terms given on the command line are translated into a single
RFC-4515 filter.  Each term is either:

* a *bare term* (free text), matched as a substring of ``login``, ``cn`` or
  ``email``, or exactly against ``uuid``; or
* a *field expression* ``<field><op><value>`` with ``op`` one of ``=``,
  ``!=``, ``>=`` and ``<=``.  ``==``, ``<`` and ``>`` are rejected outright,
  naming the operator to use instead.

Fields must be listed in :data:`KNOWN_FIELDS`, whose :class:`FieldType`
controls value coercion:

* ``STRING`` – equality, or a substring filter when the value contains ``*``
  (escaped asterisks are *not* recognised);
* ``BOOLEAN`` – the value goes through :func:`bool_from_string` and is
  matched as ``true``/``false``;
* ``ARRAY`` – comma-separated values, one predicate per element.

Everything is AND-ed together with ``(objectclass=sdcperson)`` first::

    >>> str(build_search_filter(["login=admin"]))
    '(&(objectclass=sdcperson)(login=admin))'
"""
from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Union

from ldap3.utils.conv import escape_filter_chars

from .core.constants import USER_OBJECT_CLASS
from .errors import UnknownFieldError, UnsupportedOperatorError, UsageError
from .records import bool_from_string

logger = logging.getLogger("sdc_useradm.filter")

__all__ = [
    "FieldType",
    "KNOWN_FIELDS",
    "BareTerm",
    "FieldExpr",
    "parse_term",
    "Equality",
    "Substring",
    "GreaterOrEqual",
    "LessOrEqual",
    "And",
    "Or",
    "Not",
    "SearchFilter",
    "build_search_filter",
]


class FieldType(enum.Enum):
    STRING = "string"
    BOOLEAN = "boolean"
    ARRAY = "array"


KNOWN_FIELDS: Dict[str, FieldType] = {
    "login": FieldType.STRING,
    "uuid": FieldType.STRING,
    "email": FieldType.STRING,
    "cn": FieldType.STRING,
    "sn": FieldType.STRING,
    "givenName": FieldType.STRING,
    "created_at": FieldType.STRING,
    "updated_at": FieldType.STRING,
    "pwdendtime": FieldType.STRING,
    "approved_for_provisioning": FieldType.BOOLEAN,
    "registered_developer": FieldType.BOOLEAN,
    "allowed_dcs": FieldType.STRING,
}

# Operators that are refused, mapped to the one to use instead
UNSUPPORTED_OPERATORS = {"==": "=", "<": "<=", ">": ">="}

# Longer operators first so that ">=" is not read as ">" and "==" not as "="
_TERM_RE = re.compile(r"^([A-Za-z0-9_]+)\s*(==|!=|>=|<=|=|>|<)\s*(.*?)$", re.DOTALL)
_STAR_RUN_RE = re.compile(r"\*+")


# ---------------------------------------------------------------------------
# Term parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BareTerm:
    text: str


@dataclass(frozen=True, slots=True)
class FieldExpr:
    field: str
    op: str
    value: str


ParsedTerm = Union[BareTerm, FieldExpr]


def parse_term(text: str) -> ParsedTerm:
    """Split a raw search argument into a :class:`BareTerm` or :class:`FieldExpr`."""
    match = _TERM_RE.match(text)
    if not match:
        return BareTerm(text)
    return FieldExpr(*match.groups())


# ---------------------------------------------------------------------------
# Filter nodes
# ---------------------------------------------------------------------------


class FilterNode:
    """Base for all filter tree nodes; ``str()`` gives the wire syntax."""

    __slots__ = ()

    def __str__(self) -> str:  # pragma: no cover - abstract
        raise NotImplementedError


@dataclass(slots=True)
class Equality(FilterNode):
    attribute: str
    value: str

    def __str__(self) -> str:
        return f"({self.attribute}={escape_filter_chars(self.value)})"


@dataclass(slots=True)
class GreaterOrEqual(FilterNode):
    attribute: str
    value: str

    def __str__(self) -> str:
        return f"({self.attribute}>={escape_filter_chars(self.value)})"


@dataclass(slots=True)
class LessOrEqual(FilterNode):
    attribute: str
    value: str

    def __str__(self) -> str:
        return f"({self.attribute}<={escape_filter_chars(self.value)})"


@dataclass(slots=True)
class Substring(FilterNode):
    attribute: str
    initial: str = ""
    any: List[str] = field(default_factory=list)
    final: str = ""

    def __str__(self) -> str:
        parts = [self.initial, *self.any, self.final]
        return f"({self.attribute}={'*'.join(escape_filter_chars(p) for p in parts)})"


@dataclass(slots=True)
class _Group(FilterNode):
    children: List[FilterNode] = field(default_factory=list)

    def add(self, node: FilterNode) -> None:
        self.children.append(node)


class And(_Group):
    def __str__(self) -> str:
        return "(&" + "".join(str(c) for c in self.children) + ")"


class Or(_Group):
    def __str__(self) -> str:
        return "(|" + "".join(str(c) for c in self.children) + ")"


class Not(_Group):
    """Negation; several children are negated as a conjunction."""

    def __str__(self) -> str:
        if len(self.children) == 1:
            return f"(!{self.children[0]})"
        return f"(!{And(list(self.children))})"


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SearchFilter:
    """Result of :func:`build_search_filter`.

    ``term`` is the first bare term seen (if any), used for relevance ranking.
    """

    filter: And
    term: str | None = None

    def __str__(self) -> str:
        return str(self.filter)


def _bare_term_filter(text: str) -> Or:
    return Or([
        Substring("login", any=[text]),
        Equality("uuid", text),
        Substring("cn", any=[text]),
        Substring("email", any=[text]),
    ])


def _predicate_type(op: str):
    if op in UNSUPPORTED_OPERATORS:
        raise UnsupportedOperatorError(op, UNSUPPORTED_OPERATORS[op])
    if op in ("=", "!="):
        return Equality
    if op == ">=":
        return GreaterOrEqual
    if op == "<=":
        return LessOrEqual
    raise UsageError(f"unknown operator: {op}")  # pragma: no cover - regex bound


def build_search_filter(
    terms: Sequence[str],
    fields: Dict[str, FieldType] | None = None,
) -> SearchFilter:
    """Build the user search filter for *terms*.

    Raises :class:`UsageError` for an empty *terms*,
    :class:`UnsupportedOperatorError`, :class:`UnknownFieldError` and
    :class:`TypeCoercionError` as soon as a bad term is met.
    """
    if not terms:
        raise UsageError("no search term(s) given")
    known = KNOWN_FIELDS if fields is None else fields

    root = And([Equality("objectclass", USER_OBJECT_CLASS)])
    first_bare: str | None = None

    for raw in terms:
        parsed = parse_term(raw)
        if isinstance(parsed, BareTerm):
            if first_bare is None:
                first_bare = parsed.text
            root.add(_bare_term_filter(parsed.text))
            continue

        predicate = _predicate_type(parsed.op)
        if parsed.field not in known:
            raise UnknownFieldError(parsed.field)

        parent: _Group = root
        if parsed.op == "!=":
            parent = Not()
            root.add(parent)

        ftype = known[parsed.field]
        if ftype is FieldType.STRING:
            if "*" not in parsed.value:
                parent.add(predicate(parsed.field, parsed.value))
            else:
                # Note: escaped asterisks are not special here.
                parts = _STAR_RUN_RE.split(parsed.value)
                parent.add(Substring(parsed.field, parts[0], parts[1:-1], parts[-1]))
        elif ftype is FieldType.BOOLEAN:
            value = bool_from_string(parsed.value, None, parsed.field)
            parent.add(Equality(parsed.field, "true" if value else "false"))
        elif ftype is FieldType.ARRAY:
            for item in (v.strip() for v in parsed.value.split(",")):
                if item:
                    parent.add(predicate(parsed.field, item))

    search_filter = SearchFilter(filter=root, term=first_bare)
    logger.debug("ldap filter: %s", search_filter)
    return search_filter
