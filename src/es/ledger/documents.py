"""Student document store for enrollment-sync.

Document-style access over the student_document table:
- point lookup by normalized email, with a fallback to the legacy
  customer_email field written by earlier document shapes
- batched writes (create, merge, student-info replace) committed in chunks
  of at most MAX_BATCH_OPERATIONS, one transaction per chunk
- store-assigned timestamps, stamped at commit time

Merges are conditional on the document version read at decision time, so a
concurrent writer causes a StoreConflictError instead of a lost update.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from es.courses.builders import course_ref_for
from es.courses.models import IdentityKey, identity_key_of
from es.ledger.models import StudentDocument
from es.ledger.store import get_session

logger = logging.getLogger(__name__)

# Firestore-compatible write batch limit
MAX_BATCH_OPERATIONS = 500


class StoreError(Exception):
    """Base exception for document store errors."""

    pass


class StoreConflictError(StoreError):
    """Raised when a write collides with a concurrent change."""

    pass


def _utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def normalize_email(email: str | None) -> str:
    """Lowercase and trim an email for use as the document key."""
    return (email or "").strip().lower()


def strip_password(student_info: dict[str, Any]) -> dict[str, Any]:
    """Copy of a studentInfo dict without its password field."""
    return {key: value for key, value in student_info.items() if key != "password"}


def _is_password_customization(customization: Any) -> bool:
    if not isinstance(customization, dict):
        return False
    label = customization.get("label")
    return isinstance(label, str) and label.strip().lower() == "password"


def _order_line_items(course: dict[str, Any]) -> list[dict[str, Any]]:
    order = course.get("order")
    if not isinstance(order, dict) or not isinstance(order.get("lineItems"), list):
        return []
    return [item for item in order["lineItems"] if isinstance(item, dict)]


def course_has_password(course: dict[str, Any]) -> bool:
    """True if a stored course carries a password anywhere.

    Besides studentInfo, Generic courses keep the raw order payload, whose
    line-item customizations can hold a checkout "Password" answer.
    """
    info = course.get("studentInfo")
    if isinstance(info, dict) and "password" in info:
        return True
    return any(
        _is_password_customization(c)
        for item in _order_line_items(course)
        for c in item.get("customizations") or []
    )


def _strip_order_passwords(order: dict[str, Any]) -> dict[str, Any]:
    line_items: list[Any] = []
    for item in order.get("lineItems") or []:
        if isinstance(item, dict) and isinstance(item.get("customizations"), list):
            item = {
                **item,
                "customizations": [
                    c for c in item["customizations"] if not _is_password_customization(c)
                ],
            }
        line_items.append(item)
    return {**order, "lineItems": line_items}


def _strip_course_password(course: dict[str, Any]) -> dict[str, Any]:
    if not course_has_password(course):
        return course
    cleaned = dict(course)
    info = course.get("studentInfo")
    if isinstance(info, dict):
        cleaned["studentInfo"] = strip_password(info)
    if _order_line_items(course):
        cleaned["order"] = _strip_order_passwords(course["order"])
    return cleaned


@dataclass(frozen=True)
class StudentSnapshot:
    """Consistent read of one student document."""

    id: int
    email: str
    customer_email: str | None
    student_info: dict[str, Any]
    courses: list[dict[str, Any]]
    version: int

    @classmethod
    def from_document(cls, doc: StudentDocument) -> StudentSnapshot:
        assert doc.id is not None
        return cls(
            id=doc.id,
            email=doc.email,
            customer_email=doc.customer_email,
            student_info=dict(doc.student_info or {}),
            courses=[dict(course) for course in doc.courses or []],
            version=doc.version,
        )

    def course_keys(self) -> set[IdentityKey]:
        return {identity_key_of(course) for course in self.courses}


class WriteKind(str, Enum):
    """Kind of queued write."""

    CREATE = "create"
    MERGE = "merge"
    REPLACE_INFO = "replace_info"


@dataclass
class WriteOp:
    """One queued document write."""

    kind: WriteKind
    email: str
    student_info: dict[str, Any] | None = None
    courses: list[dict[str, Any]] = field(default_factory=list)
    customer_email: str | None = None
    document_id: int | None = None
    expected_version: int | None = None


class WriteBatch:
    """Queue of document writes committed together by StudentStore.commit.

    Passwords are stripped from student info and from every course as
    writes are queued.
    """

    def __init__(self) -> None:
        self._ops: list[WriteOp] = []
        self._merges: dict[int, WriteOp] = {}

    def __len__(self) -> int:
        return len(self._ops)

    def __iter__(self) -> Iterator[WriteOp]:
        return iter(self._ops)

    def create(
        self,
        email: str,
        student_info: dict[str, Any],
        courses: list[dict[str, Any]],
        customer_email: str | None = None,
    ) -> None:
        """Queue creation of a new student document."""
        self._ops.append(
            WriteOp(
                kind=WriteKind.CREATE,
                email=normalize_email(email),
                student_info=strip_password(student_info),
                courses=[_strip_course_password(course) for course in courses],
                customer_email=customer_email,
            )
        )

    def merge(self, snapshot: StudentSnapshot, new_courses: list[dict[str, Any]]) -> bool:
        """Queue an append of new courses to an existing document.

        A second merge for a document already queued in this batch extends
        that write instead of queueing another one against the same version.

        Returns:
            True if the courses were folded into an already queued merge.
        """
        stripped = [_strip_course_password(c) for c in new_courses]
        queued = self._merges.get(snapshot.id)
        if queued is not None:
            queued.courses.extend(stripped)
            return True

        op = WriteOp(
            kind=WriteKind.MERGE,
            email=snapshot.email,
            courses=[_strip_course_password(c) for c in snapshot.courses] + stripped,
            document_id=snapshot.id,
            expected_version=snapshot.version,
        )
        self._merges[snapshot.id] = op
        self._ops.append(op)
        return False

    def replace_student_info(
        self,
        snapshot: StudentSnapshot,
        student_info: dict[str, Any],
        courses: list[dict[str, Any]] | None = None,
    ) -> None:
        """Queue a rewrite of a document's student info (and optionally its courses)."""
        self._ops.append(
            WriteOp(
                kind=WriteKind.REPLACE_INFO,
                email=snapshot.email,
                student_info=strip_password(student_info),
                courses=[
                    _strip_course_password(c)
                    for c in (courses if courses is not None else snapshot.courses)
                ],
                document_id=snapshot.id,
                expected_version=snapshot.version,
            )
        )

    def chunks(self, size: int = MAX_BATCH_OPERATIONS) -> Iterator[list[WriteOp]]:
        """Yield queued writes in chunks of at most ``size`` operations."""
        if size <= 0:
            raise ValueError("Chunk size must be positive")
        for start in range(0, len(self._ops), size):
            yield self._ops[start : start + size]


class StudentStore:
    """Student documents backed by the SQLite ledger."""

    def __init__(self, db_path: Path | str, chunk_size: int = MAX_BATCH_OPERATIONS) -> None:
        self._db_path = Path(db_path)
        self._chunk_size = chunk_size

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _find_document(self, session: Session, email: str) -> StudentDocument | None:
        normalized = normalize_email(email)
        if not normalized:
            return None

        stmt = select(StudentDocument).where(StudentDocument.email == normalized)
        doc = session.exec(stmt).first()
        if doc is not None:
            return doc

        legacy_stmt = (
            select(StudentDocument)
            .where(func.lower(func.trim(StudentDocument.customer_email)) == normalized)
            .limit(1)
        )
        doc = session.exec(legacy_stmt).first()
        if doc is not None:
            logger.info("Matched %s through legacy customer_email field", normalized)
        return doc

    def find_by_email(self, email: str) -> StudentSnapshot | None:
        """Look up a student document by email, or None if absent."""
        with get_session(self._db_path) as session:
            doc = self._find_document(session, email)
            return StudentSnapshot.from_document(doc) if doc is not None else None

    def get_document(self, email: str) -> dict[str, Any] | None:
        """Full document as a dict, for display."""
        with get_session(self._db_path) as session:
            doc = self._find_document(session, email)
            return doc.to_dict() if doc is not None else None

    def list_snapshots(self) -> list[StudentSnapshot]:
        """Every student document, ordered by id."""
        with get_session(self._db_path) as session:
            stmt = select(StudentDocument).order_by(StudentDocument.id)  # type: ignore[arg-type]
            return [StudentSnapshot.from_document(doc) for doc in session.exec(stmt).all()]

    def commit(self, batch: WriteBatch) -> int:
        """Commit a batch, one transaction per chunk.

        Returns:
            Number of operations written.

        Raises:
            StoreConflictError: If a create collides with an existing email or
                a conditional write finds the document changed since it was read.
                Chunks committed before the failing one stay committed.
        """
        written = 0
        for chunk in batch.chunks(self._chunk_size):
            with get_session(self._db_path) as session:
                now = _utcnow()
                try:
                    for op in chunk:
                        self._apply(session, op, now)
                    session.commit()
                except IntegrityError as e:
                    session.rollback()
                    raise StoreConflictError(f"Write batch rejected by the store: {e.orig}") from e
            written += len(chunk)
            logger.debug("Committed chunk of %d write(s)", len(chunk))
        return written

    def _apply(self, session: Session, op: WriteOp, now: datetime) -> None:
        if op.kind is WriteKind.CREATE:
            existing = session.exec(
                select(StudentDocument).where(StudentDocument.email == op.email)
            ).first()
            if existing is not None:
                raise StoreConflictError(f"Student document for {op.email} already exists")
            session.add(
                StudentDocument(
                    email=op.email,
                    customer_email=op.customer_email or op.email,
                    student_info=op.student_info or {},
                    courses=op.courses,
                    synced=True,
                    version=1,
                    created_at=now,
                    last_synced_at=now,
                )
            )
            session.flush()
            return

        assert op.document_id is not None and op.expected_version is not None
        values: dict[str, Any] = {
            "courses": op.courses,
            "version": op.expected_version + 1,
            "last_synced_at": now,
        }
        if op.kind is WriteKind.REPLACE_INFO:
            values["student_info"] = op.student_info or {}

        stmt = (
            update(StudentDocument)
            .where(StudentDocument.id == op.document_id)  # type: ignore[arg-type]
            .where(StudentDocument.version == op.expected_version)  # type: ignore[arg-type]
            .values(**values)
        )
        result = session.execute(stmt)
        if result.rowcount != 1:
            raise StoreConflictError(
                f"Student document for {op.email} changed since it was read "
                f"(expected version {op.expected_version})"
            )

    def strip_passwords(self) -> int:
        """Remove lingering password fields from every stored document.

        Returns:
            Number of documents rewritten.
        """
        batch = WriteBatch()
        for snapshot in self.list_snapshots():
            has_password = "password" in snapshot.student_info or any(
                course_has_password(course) for course in snapshot.courses
            )
            if has_password:
                batch.replace_student_info(snapshot, snapshot.student_info)

        if len(batch) == 0:
            logger.info("No stored passwords found")
            return 0

        self.commit(batch)
        logger.info("Removed passwords from %d student document(s)", len(batch))
        return len(batch)

    def backfill_course_refs(self) -> tuple[int, int]:
        """Stamp courseRef on stored courses written before it existed.

        Courses that already carry a courseRef, and Generic courses, are left
        as they are.

        Returns:
            (documents rewritten, courses updated).
        """
        batch = WriteBatch()
        updated_courses = 0
        for snapshot in self.list_snapshots():
            courses: list[dict[str, Any]] = []
            changed = 0
            for course in snapshot.courses:
                ref = None if course.get("courseRef") else course_ref_for(course)
                if ref:
                    course = {**course, "courseRef": ref}
                    changed += 1
                courses.append(course)
            if changed:
                batch.replace_student_info(snapshot, snapshot.student_info, courses=courses)
                updated_courses += changed

        if len(batch) == 0:
            logger.info("Every stored course already has a courseRef")
            return 0, 0

        self.commit(batch)
        logger.info(
            "Stamped courseRef on %d course(s) across %d student document(s)",
            updated_courses,
            len(batch),
        )
        return len(batch), updated_courses

    def rename_email(self, old_email: str, new_email: str) -> StudentSnapshot:
        """Re-key a student document to a new email.

        Raises:
            StoreError: If no document exists for ``old_email``.
            StoreConflictError: If a document already exists for ``new_email``.
        """
        new_key = normalize_email(new_email)
        with get_session(self._db_path) as session:
            doc = self._find_document(session, old_email)
            if doc is None:
                raise StoreError(f"No student document found for {old_email}")

            clash = session.exec(select(StudentDocument).where(StudentDocument.email == new_key)).first()
            if clash is not None:
                raise StoreConflictError(f"Destination document {new_key} already exists")

            doc.email = new_key
            doc.customer_email = new_key
            doc.student_info = {**(doc.student_info or {}), "email": new_key}
            doc.version += 1
            doc.last_synced_at = _utcnow()
            session.add(doc)
            session.commit()
            session.refresh(doc)
            logger.info("Renamed student document %s -> %s", old_email, new_key)
            return StudentSnapshot.from_document(doc)
