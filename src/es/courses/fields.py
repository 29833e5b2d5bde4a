"""Field extraction from order line items.

Line items carry two ordered label/value lists: customizations (free-form
form answers) and variant options (structured choices such as Plan and
Section). Labels are matched case-insensitively after trimming and the first
match wins. Lookups never raise: a missing label yields None so one absent
answer cannot abort a whole record build.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from enum import Enum

from es.orders.client import LineItem

_WHITESPACE = re.compile(r"\s+")


class VariantKey(str, Enum):
    """Variant option names used by every program."""

    PLAN = "Plan"
    SECTION = "Section"


class AssociatesLabel(str, Enum):
    """Customization labels on Associates Program checkout forms."""

    NAME = "Name"
    EMAIL = "Email"
    PHONE = "Phone"
    GENDER = "Gender"
    AGE = "Age"
    STUDENT_TYPE = "I am a"
    PASSWORD = "Password"
    ARABIC_PROFICIENCY = "Arabic Proficiency"
    READING_ABILITY = "How would you rate your Arabic reading ability?"
    WRITING_ABILITY = "How would you rate your Arabic writing ability?"
    LISTENING_ABILITY = "How would you rate your Arabic listening and comprehension?"
    STUDIED_ISLAMIC_SCIENCES = (
        "Have you studied Islamic sciences before (e.g. Aqeedah, Fiqh, Tafsir, Hadith)?"
    )
    PREVIOUS_TOPICS = "If yes, please list some of the topics you've studied and where:"


class GuidanceLabel(str, Enum):
    """Customization labels on Prophetic Guidance checkout forms."""

    NAME = "Name"
    EMAIL = "Email"
    PHONE = "Phone"
    GENDER = "Gender"
    AGE = "Age"
    STUDENT_TYPE = "I am a"
    PASSWORD = "Password"


def _normalize_label(label: str | None) -> str:
    return (label or "").strip().lower()


def find_value(pairs: Iterable[tuple[str, str]], label: str) -> str | None:
    """Return the value of the first pair whose label matches, or None."""
    wanted = _normalize_label(label)
    for pair_label, value in pairs:
        if _normalize_label(pair_label) == wanted:
            return value
    return None


def get_customization(item: LineItem, label: AssociatesLabel | GuidanceLabel) -> str | None:
    """Look up a customization answer on a line item."""
    return find_value(((c.label, c.value) for c in item.customizations), label.value)


def get_variant_option(item: LineItem, key: VariantKey) -> str | None:
    """Look up a variant option value on a line item."""
    return find_value(((o.option_name, o.value) for o in item.variant_options), key.value)


def strip_whitespace(value: str | None) -> str | None:
    """Remove all whitespace from a phone-like value."""
    if value is None:
        return None
    return _WHITESPACE.sub("", value)


def get_phone(item: LineItem, label: AssociatesLabel | GuidanceLabel) -> str | None:
    """Look up a phone customization with internal whitespace removed."""
    return strip_whitespace(get_customization(item, label))


def split_name(full_name: str | None) -> tuple[str, str]:
    """Split a full name into (first, last) on the first whitespace run."""
    parts = _WHITESPACE.split((full_name or "").strip(), maxsplit=1)
    first = parts[0] if parts else ""
    last = parts[1] if len(parts) > 1 else ""
    return first, last
