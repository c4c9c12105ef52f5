"""Helpers for massaging raw directory records into typed sdcPerson data."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from .errors import TypeCoercionError

__all__ = [
    "bool_from_string",
    "sdc_person_from_entry",
    "annotate_times",
    "relevance",
]

BOOLEAN_FIELDS = ("registered_developer", "approved_for_provisioning")
NUMERIC_FIELDS = (
    "pwdchangedtime",
    "pwdaccountlockedtime",
    "pwdfailuretime",
    "pwdendtime",
    "created_at",
    "updated_at",
)


def bool_from_string(value: Any, default: bool | None = None, name: str = "value") -> bool | None:
    """Convert a boolean or its string form (as stored in UFDS) to ``bool``.

    ``None`` yields *default*.  Anything other than ``"true"``, ``"false"`` or
    an actual bool raises :class:`TypeCoercionError` quoting *name*.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if value == "false":
        return False
    if value == "true":
        return True
    raise TypeCoercionError(name, value)


def _to_number(value: Any) -> Any:
    if isinstance(value, list):
        return [_to_number(v) for v in value]
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return float(value)
    return value


def sdc_person_from_entry(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of *raw* with boolean and numeric fields typed."""
    person = dict(raw)
    for field in BOOLEAN_FIELDS:
        if field in person:
            person[field] = bool_from_string(person[field], None, field)
    for field in NUMERIC_FIELDS:
        if field in person:
            try:
                person[field] = _to_number(person[field])
            except ValueError as exc:
                raise TypeCoercionError(field, person[field]) from exc
    return person


def _iso_time(millis: int) -> str:
    dt = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def annotate_times(entry: Dict[str, Any]) -> Dict[str, Any]:
    """Add ``created_time``/``created`` and ``updated_time``/``updated``.

    Some entries carry several ``created_at``/``updated_at`` values; the
    earliest creation and the latest update win.
    """
    if entry.get("created_at"):
        created = entry["created_at"]
        if isinstance(created, list):
            created = min(int(v) for v in created)
        entry["created_at"] = int(created)
        entry["created_time"] = _iso_time(entry["created_at"])
        entry["created"] = entry["created_time"][:10]
    if entry.get("updated_at"):
        updated = entry["updated_at"]
        if isinstance(updated, list):
            updated = max(int(v) for v in updated)
        entry["updated_at"] = int(updated)
        entry["updated_time"] = _iso_time(entry["updated_at"])
        entry["updated"] = entry["updated_time"][:10]
    return entry


def relevance(entry: Dict[str, Any], term: str | None) -> float:
    """Crude score of how closely *entry* matches the bare search *term*."""
    if not term:
        return 1
    if term in (entry.get("login"), entry.get("uuid"), entry.get("cn"), entry.get("email")):
        return 1
    scores = [0.0]
    for field in ("login", "cn", "email"):
        value = entry.get(field)
        if isinstance(value, str) and value and term in value:
            scores.append(len(term) / len(value))
    return max(scores)
