"""Course record builders, one per program.

Each builder is a pure function of (order, line item). Field lookups go
through es.courses.fields and default to empty strings, so a missing
customization never aborts a build. A missing line item is reported with
BuilderSkip for the mapper to log and skip.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from es.courses.fields import (
    AssociatesLabel,
    GuidanceLabel,
    VariantKey,
    get_customization,
    get_phone,
    get_variant_option,
    split_name,
)
from es.courses.models import (
    CourseRecord,
    CourseType,
    GuidanceDetails,
    PlacementInfo,
    ProgramDetails,
    StudentInfo,
)
from es.orders.client import LineItem, RawOrder

CourseBuilder = Callable[[RawOrder, LineItem | None], CourseRecord]

ASSOCIATES_REF_PREFIX = "courses/Associates Program"
GUIDANCE_REF_PREFIX = "courses/Prophetic Guidance"
DEFAULT_MODULE = "General"


class BuilderSkip(Exception):
    """Raised when a line item lacks the structure needed to build a record."""

    pass


def _require_item(order: RawOrder, item: LineItem | None) -> LineItem:
    if item is None:
        raise BuilderSkip(f"Order {order.order_id} has no line item to build from")
    return item


def extract_level(section: str) -> str:
    """Level label for an Associates Program section (e.g. "Year 1")."""
    return section.strip()


def extract_module(section: str) -> str:
    """Module label for a Prophetic Guidance section (e.g. "Module 1")."""
    return section.strip() or DEFAULT_MODULE


def _course_ref(prefix: str, label: str) -> str:
    return f"{prefix} {label}".strip()


def _course_id(order: RawOrder, item: LineItem) -> str:
    return item.line_item_id or order.order_id


def course_ref_for(course: dict[str, Any]) -> str | None:
    """courseRef for a stored course dict, or None for Generic and unknown types.

    Uses the same level/module labels as the builders, so a backfilled ref
    matches what a fresh build of the course would stamp.
    """
    course_type = course.get("courseType")
    section = str(course.get("section") or "")
    if course_type == CourseType.ASSOCIATES_PROGRAM.value:
        return _course_ref(ASSOCIATES_REF_PREFIX, extract_level(section))
    if course_type == CourseType.PROPHETIC_GUIDANCE.value:
        return _course_ref(GUIDANCE_REF_PREFIX, extract_module(section))
    return None


def build_associates_program(order: RawOrder, item: LineItem | None) -> CourseRecord:
    """Build an Associates Program record from one line item."""
    item = _require_item(order, item)

    first_name, last_name = split_name(get_customization(item, AssociatesLabel.NAME))
    email = (get_customization(item, AssociatesLabel.EMAIL) or order.customer_email or "").strip()
    plan = (get_variant_option(item, VariantKey.PLAN) or "").strip()
    section = (get_variant_option(item, VariantKey.SECTION) or "").strip()
    level = extract_level(section)

    return CourseRecord(
        course_type=CourseType.ASSOCIATES_PROGRAM,
        course_name=(item.product_name or "").strip(),
        section=section,
        plan=plan,
        course_id=_course_id(order, item),
        order_id=order.order_id,
        order_number=order.order_number,
        created_on=order.created_on,
        customer_email=email or order.customer_email,
        student_info=StudentInfo(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=get_phone(item, AssociatesLabel.PHONE) or "",
            gender=get_customization(item, AssociatesLabel.GENDER) or "",
            age=get_customization(item, AssociatesLabel.AGE) or "",
            student_type=get_customization(item, AssociatesLabel.STUDENT_TYPE) or "",
            password=get_customization(item, AssociatesLabel.PASSWORD) or "",
        ),
        placement_info=PlacementInfo(
            arabic_proficiency=get_customization(item, AssociatesLabel.ARABIC_PROFICIENCY) or "",
            reading_ability=get_customization(item, AssociatesLabel.READING_ABILITY) or "",
            writing_ability=get_customization(item, AssociatesLabel.WRITING_ABILITY) or "",
            listening_ability=get_customization(item, AssociatesLabel.LISTENING_ABILITY) or "",
            studied_islamic_sciences=(
                get_customization(item, AssociatesLabel.STUDIED_ISLAMIC_SCIENCES) or ""
            ),
            previous_topics=get_customization(item, AssociatesLabel.PREVIOUS_TOPICS) or "",
        ),
        program_details=ProgramDetails(
            plan=plan,
            level=level,
            image_url=item.image_url or "",
        ),
        course_ref=_course_ref(ASSOCIATES_REF_PREFIX, level),
    )


def build_prophetic_guidance(order: RawOrder, item: LineItem | None) -> CourseRecord:
    """Build a Prophetic Guidance record from one line item.

    Name and phone fall back to the order billing address, and email to the
    order customer email, when the checkout form did not collect them.
    """
    item = _require_item(order, item)
    billing = order.billing_address

    first_name, last_name = split_name(get_customization(item, GuidanceLabel.NAME))
    if not first_name and billing is not None:
        first_name = (billing.first_name or "").strip()
        last_name = (billing.last_name or "").strip()

    phone = get_phone(item, GuidanceLabel.PHONE)
    if not phone and billing is not None:
        phone = "".join((billing.phone or "").split())

    email = (get_customization(item, GuidanceLabel.EMAIL) or order.customer_email or "").strip()
    plan = (get_variant_option(item, VariantKey.PLAN) or "").strip()
    section = (get_variant_option(item, VariantKey.SECTION) or "").strip()
    module = extract_module(section)

    return CourseRecord(
        course_type=CourseType.PROPHETIC_GUIDANCE,
        course_name=(item.product_name or "").strip(),
        section=section,
        plan=plan,
        course_id=_course_id(order, item),
        order_id=order.order_id,
        order_number=order.order_number,
        created_on=order.created_on,
        customer_email=email or order.customer_email,
        student_info=StudentInfo(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone or "",
            gender=get_customization(item, GuidanceLabel.GENDER) or "",
            age=get_customization(item, GuidanceLabel.AGE) or "",
            student_type=get_customization(item, GuidanceLabel.STUDENT_TYPE) or "",
            password=get_customization(item, GuidanceLabel.PASSWORD) or "",
        ),
        guidance_details=GuidanceDetails(
            module=module,
            plan=plan,
            image_url=item.image_url or "",
        ),
        course_ref=_course_ref(GUIDANCE_REF_PREFIX, module),
    )


def build_generic(order: RawOrder, item: LineItem | None) -> CourseRecord:
    """Tag an unclassified product as Generic and pass the order through.

    No customization extraction happens here; the record is owned by the
    order's customer email.
    """
    item = _require_item(order, item)
    return CourseRecord(
        course_type=CourseType.GENERIC,
        course_name=(item.product_name or "").strip(),
        course_id=_course_id(order, item),
        order_id=order.order_id,
        order_number=order.order_number,
        created_on=order.created_on,
        customer_email=order.customer_email,
        student_info=StudentInfo(),
        raw_order=dict(order.raw),
    )


BUILDERS: dict[CourseType, CourseBuilder] = {
    CourseType.ASSOCIATES_PROGRAM: build_associates_program,
    CourseType.PROPHETIC_GUIDANCE: build_prophetic_guidance,
    CourseType.GENERIC: build_generic,
}
