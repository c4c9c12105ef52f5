"""Interactive field prompting for ``sdc-useradm create -i``."""
from __future__ import annotations

import getpass
from dataclasses import dataclass

__all__ = ["PromptField", "read_field"]


@dataclass(frozen=True, slots=True)
class PromptField:
    name: str
    prompt: bool = False
    required: bool = False
    hidden: bool = False
    confirm: bool = False


def _ask(label: str, hidden: bool, default: str | None) -> str:
    if default:
        label = f"{label} ({'*****' if hidden else default})"
    label = f"{label}: "
    val = getpass.getpass(label) if hidden else input(label)
    return val.strip()


def read_field(field: PromptField, default: str | None = None) -> str:
    """Prompt for *field*; an empty answer yields *default* (or ``""``).

    Confirmed fields are asked twice and must match, and required fields
    must end up non-empty, else ``ValueError``.
    """
    val = _ask(field.name, field.hidden, default)
    if field.confirm:
        val2 = _ask(f"{field.name} confirm", field.hidden, default)
        if val != val2:
            raise ValueError(f"{field.name} values do not match")
    if not val and default is not None:
        return default
    if not val and field.required:
        raise ValueError(f"{field.name} is required")
    return val
