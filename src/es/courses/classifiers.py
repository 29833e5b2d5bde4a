"""Product-name classifiers.

Each classifier is a case-insensitive substring test against a small keyword
set. The mapper evaluates them in CLASSIFIERS order and the first match wins,
so a name such as "Prophetic Guidance Program" classifies as Associates
Program because of the "program" keyword.
"""

from __future__ import annotations

from collections.abc import Callable

from es.courses.models import CourseType

ASSOCIATES_KEYWORDS = ("associates", "associate's", "program")
GUIDANCE_KEYWORDS = ("prophetic", "guidance")


def _matches_any(product_name: str | None, keywords: tuple[str, ...]) -> bool:
    if not product_name:
        return False
    name = product_name.lower()
    return any(keyword in name for keyword in keywords)


def is_associates_program(product_name: str | None) -> bool:
    """True if the product is an Associates Program enrollment."""
    return _matches_any(product_name, ASSOCIATES_KEYWORDS)


def is_prophetic_guidance(product_name: str | None) -> bool:
    """True if the product is a Prophetic Guidance enrollment."""
    return _matches_any(product_name, GUIDANCE_KEYWORDS)


# Priority order matters: first match wins.
CLASSIFIERS: tuple[tuple[CourseType, Callable[[str | None], bool]], ...] = (
    (CourseType.ASSOCIATES_PROGRAM, is_associates_program),
    (CourseType.PROPHETIC_GUIDANCE, is_prophetic_guidance),
)


def classify(product_name: str | None) -> CourseType:
    """Return the program for a product name, or GENERIC when nothing matches."""
    for course_type, predicate in CLASSIFIERS:
        if predicate(product_name):
            return course_type
    return CourseType.GENERIC
