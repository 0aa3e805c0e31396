"""Component wiring shared by the HTTP API and the CLI."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict

from .audit import AuditLog
from .catalog import CatalogStore, ConnectorType
from .config import settings
from .delivery import (
    DeliveryDispatcher,
    DeliveryQueue,
    DeliveryWorkerPool,
    RequeueService,
    RetryPolicy,
)
from .delivery.adapters import CRMAdapter, build_default_adapters
from .integrations import LeadNotifier, SMTPConfig
from .intake import SubmissionIngestor
from .quiz import QuizEngine, QuizSessionStore
from .storage import Database, SubmissionStore

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    db: Database
    catalog: CatalogStore
    store: SubmissionStore
    audit: AuditLog
    queue: DeliveryQueue
    sessions: QuizSessionStore
    quiz: QuizEngine
    ingestor: SubmissionIngestor
    dispatcher: DeliveryDispatcher
    requeue: RequeueService

    @classmethod
    def build(
        cls,
        db: Database,
        catalog: CatalogStore,
        policy: Optional[RetryPolicy] = None,
        adapters: Optional[Dict[ConnectorType, CRMAdapter]] = None,
        lease_seconds: int = 120,
        honeypot_field: Optional[str] = None,
        notifier: Optional[LeadNotifier] = None,
    ) -> "Pipeline":
        store = SubmissionStore(db)
        audit = AuditLog(db)
        queue = DeliveryQueue(db, lease_seconds=lease_seconds)
        sessions = QuizSessionStore(db)
        return cls(
            db=db,
            catalog=catalog,
            store=store,
            audit=audit,
            queue=queue,
            sessions=sessions,
            quiz=QuizEngine(catalog),
            ingestor=SubmissionIngestor(db, store, audit, queue, catalog, sessions, honeypot_field),
            dispatcher=DeliveryDispatcher(db, store, audit, queue, catalog, policy, adapters, notifier),
            requeue=RequeueService(db, store, audit, queue),
        )

    @classmethod
    def from_settings(cls) -> "Pipeline":
        catalog = CatalogStore.from_file(Path(settings.catalog_path))
        logger.info(f"Using database {settings.db_path} and catalog {settings.catalog_path}")
        return cls.build(
            db=Database(Path(settings.db_path)),
            catalog=catalog,
            policy=RetryPolicy.from_settings(),
            adapters=build_default_adapters(settings.http_timeout),
            lease_seconds=settings.job_lease_seconds,
            honeypot_field=settings.honeypot_field,
            notifier=LeadNotifier(catalog, SMTPConfig.from_settings()),
        )

    def worker_pool(self, concurrency: Optional[int] = None, poll_seconds: Optional[float] = None) -> DeliveryWorkerPool:
        return DeliveryWorkerPool(
            self.dispatcher,
            concurrency=concurrency or settings.worker_concurrency,
            poll_seconds=poll_seconds if poll_seconds is not None else settings.worker_poll_seconds,
        )
