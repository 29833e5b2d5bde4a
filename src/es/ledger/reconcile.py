"""Reconciliation engine for enrollment-sync.

Upserts course records into per-student documents. Reconciliation is:
- Idempotent: a course whose identity key is already on the student's
  document is never written again
- Append-only: existing courses are never overwritten or removed
- Password-free at rest: passwords reach only the auth provider and the
  welcome email

Identity key: (courseType, courseName, section, plan). Order ids, course ids
and line-item ids do not take part, so re-fetching an overlapping window or
re-purchasing the same enrollment under a new order is a duplicate.

Per email group the state moves UNSEEN -> CREATED (no prior document) or
UNSEEN -> MERGED_NEW_COURSES (zero or more courses appended). All writes
of a run are committed together; onboarding side effects run only after
that commit succeeds.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from es.courses.models import CourseRecord, IdentityKey, StudentInfo
from es.ledger.documents import StudentStore, WriteBatch, normalize_email
from es.onboarding.email import WelcomeNotifier
from es.onboarding.provisioning import CredentialProvisioner, ProvisionOutcome, resolve_password

logger = logging.getLogger(__name__)

DEFAULT_PORTAL_URL = "https://portal.tanwir.org"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: str | None) -> bool:
    """True for a non-empty local@domain.tld shaped address."""
    if not email:
        return False
    return EMAIL_PATTERN.match(email.strip()) is not None


class GroupOutcome(str, Enum):
    """What happened to one student's email group."""

    CREATED = "created"
    MERGED_NEW_COURSES = "merged_new_courses"
    UNCHANGED = "unchanged"


@dataclass
class ReconcileResult:
    """Result of one reconciliation pass."""

    persisted_count: int = 0
    created_count: int = 0
    merged_count: int = 0
    unchanged_count: int = 0
    invalid_count: int = 0
    duplicate_count: int = 0
    students: list[str] = field(default_factory=list)

    @property
    def student_count(self) -> int:
        """Number of student documents written (created + merged)."""
        return self.created_count + self.merged_count

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for serialization."""
        return {
            "persisted_count": self.persisted_count,
            "created_count": self.created_count,
            "merged_count": self.merged_count,
            "unchanged_count": self.unchanged_count,
            "invalid_count": self.invalid_count,
            "duplicate_count": self.duplicate_count,
            "students": self.students,
        }


@dataclass
class _Onboarding:
    email: str
    student_info: StudentInfo  # original, password included
    course_names: list[str]


def _dedupe(records: list[CourseRecord]) -> list[CourseRecord]:
    """Keep the first record for each identity key, preserving order."""
    seen: set[IdentityKey] = set()
    unique: list[CourseRecord] = []
    for record in records:
        if record.identity_key in seen:
            continue
        seen.add(record.identity_key)
        unique.append(record)
    return unique


def _course_dicts(records: list[CourseRecord], email: str) -> list[dict[str, Any]]:
    """Stored course dicts, with a blank studentInfo.email set to the owning email."""
    courses: list[dict[str, Any]] = []
    for record in records:
        data = record.to_dict()
        info = data.get("studentInfo")
        if isinstance(info, dict) and not info.get("email"):
            data["studentInfo"] = {**info, "email": email}
        courses.append(data)
    return courses


def _log_welcome_result(email: str) -> Callable[[Future[bool]], None]:
    def _callback(future: Future[bool]) -> None:
        try:
            delivered = future.result()
        except Exception:
            logger.exception("Welcome email task for %s raised", email)
            return
        if not delivered:
            logger.warning("Welcome email to %s was not delivered", email)

    return _callback


class Reconciler:
    """Merge course records into the student store and onboard new students.

    Collaborators are injected once at process start. Welcome emails run on
    a background executor and their outcome is only logged: the
    reconciliation result never depends on them.
    """

    def __init__(
        self,
        store: StudentStore,
        provisioner: CredentialProvisioner | None = None,
        notifier: WelcomeNotifier | None = None,
        portal_url: str = DEFAULT_PORTAL_URL,
        executor: Executor | None = None,
    ) -> None:
        self._store = store
        self._provisioner = provisioner
        self._notifier = notifier
        self._portal_url = portal_url
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="welcome-email"
        )
        self._pending: list[Future[bool]] = []

    @property
    def store(self) -> StudentStore:
        return self._store

    def reconcile(self, records: Iterable[CourseRecord]) -> ReconcileResult:
        """Reconcile course records into the store.

        Returns:
            ReconcileResult whose persisted_count is the number of newly
            created or newly appended course records.

        Raises:
            StoreError: If the batch commit fails. Counts computed before the
                commit are not returned in that case.
        """
        result = ReconcileResult()
        groups = self._group_by_email(records, result)

        batch = WriteBatch()
        onboarding: list[_Onboarding] = []
        # document id -> course keys already on it or queued for it this pass
        planned: dict[int, set[IdentityKey]] = {}

        for email, group in groups.items():
            try:
                self._plan_group(email, group, batch, onboarding, result, planned)
            except (KeyError, TypeError, ValueError):
                logger.exception("Skipping student %s: could not reconcile course records", email)

        if len(batch) > 0:
            self._store.commit(batch)
            logger.info(
                "Saved %d course(s) for %d student(s): %d created, %d updated",
                result.persisted_count,
                result.student_count,
                result.created_count,
                result.merged_count,
            )
        else:
            logger.info("No new courses to save")

        for item in onboarding:
            self._onboard(item)

        return result

    def _group_by_email(
        self, records: Iterable[CourseRecord], result: ReconcileResult
    ) -> dict[str, list[CourseRecord]]:
        groups: dict[str, list[CourseRecord]] = {}
        for record in records:
            email = record.resolve_email()
            if not is_valid_email(email):
                result.invalid_count += 1
                logger.warning(
                    "Dropping %s course %r from order %s: invalid or missing email %r",
                    record.course_type.value,
                    record.course_name,
                    record.order_id or "?",
                    email,
                )
                continue
            groups.setdefault(normalize_email(email), []).append(record)
        return groups

    def _plan_group(
        self,
        email: str,
        group: list[CourseRecord],
        batch: WriteBatch,
        onboarding: list[_Onboarding],
        result: ReconcileResult,
        planned: dict[int, set[IdentityKey]],
    ) -> GroupOutcome:
        """Decide the writes for one student from a single snapshot read.

        Two email groups can resolve to the same document (one through the
        legacy customer_email field). ``planned`` carries the course keys
        already queued per document, so the later group only adds what is
        still missing and its courses fold into the queued merge.
        """
        unique = _dedupe(group)
        snapshot = self._store.find_by_email(email)

        if snapshot is not None:
            existing_keys = planned.setdefault(snapshot.id, snapshot.course_keys())
            new_records = [r for r in unique if r.identity_key not in existing_keys]
            result.duplicate_count += len(group) - len(new_records)

            if not new_records:
                logger.debug("No new courses for existing student %s", email)
                result.unchanged_count += 1
                return GroupOutcome.UNCHANGED

            existing_keys.update(r.identity_key for r in new_records)
            folded = batch.merge(snapshot, _course_dicts(new_records, email))
            logger.info(
                "Adding %d new course(s) for existing student %s", len(new_records), snapshot.email
            )
            if not folded:
                result.merged_count += 1
                result.students.append(snapshot.email)
            result.persisted_count += len(new_records)
            return GroupOutcome.MERGED_NEW_COURSES

        first = group[0]
        student_info = first.student_info.without_password().to_dict()
        if not student_info.get("email"):
            student_info["email"] = email

        batch.create(
            email,
            student_info,
            _course_dicts(unique, email),
            customer_email=normalize_email(first.customer_email) or email,
        )
        logger.info("Creating new student %s with %d course(s)", email, len(unique))
        result.created_count += 1
        result.persisted_count += len(unique)
        result.duplicate_count += len(group) - len(unique)
        result.students.append(email)

        onboarding.append(
            _Onboarding(
                email=email,
                student_info=first.student_info,
                course_names=list(dict.fromkeys(r.course_name or r.course_type.value for r in unique)),
            )
        )
        return GroupOutcome.CREATED

    def _onboard(self, item: _Onboarding) -> None:
        """Provision credentials, then dispatch the welcome email without waiting."""
        info = item.student_info
        password = resolve_password(info.password)
        welcome_password = info.password

        if self._provisioner is not None:
            try:
                outcome = self._provisioner.create_user(item.email, password, info.display_name)
                if outcome is ProvisionOutcome.CREATED:
                    welcome_password = password
            except Exception:
                logger.exception("Credential provisioning failed for %s", item.email)

        if self._notifier is None:
            return

        try:
            future = self._executor.submit(
                self._notifier.send_welcome,
                item.email,
                info.display_name,
                item.course_names,
                self._portal_url,
                welcome_password,
            )
        except RuntimeError:
            logger.exception("Could not schedule welcome email for %s", item.email)
            return
        future.add_done_callback(_log_welcome_result(item.email))
        self._pending.append(future)

    def wait_for_notifications(self, timeout: float | None = None) -> int:
        """Block until dispatched welcome emails finish; returns how many were delivered."""
        pending, self._pending = self._pending, []
        done, not_done = wait(pending, timeout=timeout)
        self._pending.extend(not_done)
        return sum(1 for future in done if future.exception() is None and future.result())

    def close(self) -> None:
        """Wait for outstanding notifications and release the executor."""
        self.wait_for_notifications()
        if self._owns_executor:
            self._executor.shutdown(wait=True)
