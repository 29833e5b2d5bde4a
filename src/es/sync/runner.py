"""Sync pipeline for enrollment-sync.

One run: fetch orders for a window -> map to course records -> reconcile
into the student store. Every non-dry run is recorded in the sync_run table.

Runs are single-flight within a process: timer and manual triggers share
RUN_LOCK, so an overlapping trigger either waits or is rejected with
SyncInProgressError. Across processes, the store's version checks and
unique email key turn a lost race into a failed run instead of a duplicate.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlmodel import select

from es.config.secrets import Secret, get_optional_secret, get_secret_provider
from es.courses.models import CourseRecord
from es.courses.processor import process_orders
from es.ledger.documents import StudentStore
from es.ledger.models import SyncRun, SyncTrigger
from es.ledger.reconcile import Reconciler, ReconcileResult
from es.ledger.store import get_session
from es.onboarding.email import BrevoWelcomeSender
from es.onboarding.provisioning import FirebaseAuthProvisioner
from es.orders.client import OrderClient, SyncWindow

if TYPE_CHECKING:
    from pathlib import Path

    from es.config.settings import Settings

logger = logging.getLogger(__name__)

# Process-wide run-lock shared by every trigger
RUN_LOCK = threading.Lock()


class SyncInProgressError(Exception):
    """Raised when a run is requested while another holds the run-lock."""

    pass


@dataclass
class SyncResult:
    """Result of one pipeline run."""

    run_id: int | None
    window: SyncWindow
    orders_fetched: int
    courses_mapped: int
    reconcile: ReconcileResult | None = None
    dry_run: bool = False
    records: list[CourseRecord] = field(default_factory=list)

    @property
    def persisted_count(self) -> int:
        return self.reconcile.persisted_count if self.reconcile else 0

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for serialization."""
        return {
            "run_id": self.run_id,
            "window": self.window.to_params(),
            "orders_fetched": self.orders_fetched,
            "courses_mapped": self.courses_mapped,
            "persisted_count": self.persisted_count,
            "dry_run": self.dry_run,
            "reconcile": self.reconcile.to_dict() if self.reconcile else None,
        }


class SyncPipeline:
    """Wires the order source, mapper and reconciler behind the run-lock."""

    def __init__(
        self,
        order_client: OrderClient,
        reconciler: Reconciler,
        db_path: Path | str,
        lock: threading.Lock | None = None,
    ) -> None:
        self.order_client = order_client
        self.reconciler = reconciler
        self.db_path = db_path
        self._lock = lock or RUN_LOCK

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run(
        self,
        window: SyncWindow,
        trigger: SyncTrigger = SyncTrigger.CLI,
        wait: bool = True,
        dry_run: bool = False,
    ) -> SyncResult:
        """Run the pipeline once for ``window``.

        Args:
            window: Order modification window to fetch.
            trigger: What started the run (recorded on the sync_run row).
            wait: Block for the run-lock if held; otherwise raise.
            dry_run: Fetch and map only; nothing is written.

        Raises:
            SyncInProgressError: If ``wait`` is False and a run is in progress.
            OrderClientError: If fetching orders fails.
            StoreError: If the store rejects the write batch.
        """
        if not self._lock.acquire(blocking=wait):
            raise SyncInProgressError("A sync run is already in progress")
        try:
            if dry_run:
                return self._dry_run(window)
            return self._run_locked(window, trigger)
        finally:
            self._lock.release()

    def _dry_run(self, window: SyncWindow) -> SyncResult:
        logger.info("Dry run for orders modified between %s", window.describe())
        orders = self.order_client.fetch_student_orders(window)
        records = process_orders(orders)
        return SyncResult(
            run_id=None,
            window=window,
            orders_fetched=len(orders),
            courses_mapped=len(records),
            dry_run=True,
            records=records,
        )

    def _run_locked(self, window: SyncWindow, trigger: SyncTrigger) -> SyncResult:
        with get_session(self.db_path) as session:
            run = SyncRun(
                trigger=trigger,
                window_start=window.modified_after,
                window_end=window.modified_before,
            )
            session.add(run)
            session.commit()
            session.refresh(run)
            assert run.id is not None
            run_id: int = run.id
            logger.info("Sync run %d started (%s) for %s", run_id, trigger.value, window.describe())

            try:
                orders = self.order_client.fetch_student_orders(window)
                records = process_orders(orders)
                result = self.reconciler.reconcile(records)
            except Exception as e:
                logger.error("Sync run %d failed: %s", run_id, e)
                run.mark_failed(str(e))
                session.add(run)
                session.commit()
                raise

            run.mark_completed(
                orders_fetched=len(orders),
                courses_mapped=len(records),
                persisted_count=result.persisted_count,
                created_count=result.created_count,
                merged_count=result.merged_count,
                invalid_count=result.invalid_count,
            )
            session.add(run)
            session.commit()

        logger.info(
            "Sync run %d completed: %d order(s), %d course(s), %d persisted",
            run_id,
            len(orders),
            len(records),
            result.persisted_count,
        )
        return SyncResult(
            run_id=run_id,
            window=window,
            orders_fetched=len(orders),
            courses_mapped=len(records),
            reconcile=result,
        )

    def close(self) -> None:
        """Flush pending notifications and close HTTP clients."""
        self.reconciler.close()
        self.order_client.close()


def build_pipeline(settings: Settings) -> SyncPipeline:
    """Build a pipeline from settings, fetching API keys from the secret provider.

    The orders key is required. Without the email or auth key the matching
    onboarding side effect is disabled with a warning.

    Raises:
        SecretProviderError: If the orders API key cannot be retrieved.
    """
    provider = get_secret_provider(settings.secret_provider, settings.op_vault)
    order_client = OrderClient(settings.orders_api_url, provider.get(Secret.ORDERS_API_KEY))

    firebase_key = get_optional_secret(provider, Secret.FIREBASE_API_KEY)
    provisioner = FirebaseAuthProvisioner(firebase_key) if firebase_key else None
    if provisioner is None:
        logger.warning("Account provisioning disabled: no auth provider key")

    brevo_key = get_optional_secret(provider, Secret.BREVO_API_KEY)
    notifier = (
        BrevoWelcomeSender(brevo_key, sender_name=settings.from_name, sender_email=settings.from_email)
        if brevo_key
        else None
    )
    if notifier is None:
        logger.warning("Welcome emails disabled: no email API key")

    reconciler = Reconciler(
        StudentStore(settings.db_path),
        provisioner=provisioner,
        notifier=notifier,
        portal_url=settings.portal_url,
    )
    return SyncPipeline(order_client, reconciler, settings.db_path)


def get_last_sync_run(db_path: Path | str) -> SyncRun | None:
    """Get the most recent sync run, or None if no runs exist."""
    with get_session(db_path) as session:
        stmt = select(SyncRun).order_by(SyncRun.started_at.desc()).limit(1)  # type: ignore[attr-defined]
        return session.exec(stmt).first()


def get_sync_runs(
    db_path: Path | str,
    limit: int = 10,
    trigger: SyncTrigger | None = None,
) -> list[SyncRun]:
    """Get recent sync runs, most recent first."""
    with get_session(db_path) as session:
        stmt = select(SyncRun)
        if trigger:
            stmt = stmt.where(SyncRun.trigger == trigger)
        stmt = stmt.order_by(SyncRun.started_at.desc()).limit(limit)  # type: ignore[attr-defined]
        return list(session.exec(stmt).all())
