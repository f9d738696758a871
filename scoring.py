"""ATS scoring orchestration shared by job seekers and recruiters.

``ScoringService.calculate`` downloads the resume, calls the scoring service
and writes ``ats_score``, ``predicted_category``, ``confidence_score`` and
``ats_calculated_at`` in one update. It never raises for storage, transport,
HTTP or database failures; the caller gets a ``ScoreOutcome`` instead.

``ScoringService.schedule`` runs the same calculation as a background task
recorded in ``ScoringTaskRegistry`` under the application id, so callers and
tests can look the outcome up (or await it) without racing the request that
started it.
"""
from __future__ import annotations

import asyncio
import mimetypes
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import httpx
import structlog
from aws_embedded_metrics import metric_scope
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
import schemas
import sessions
from ats import AtsClient
from exceptions import AtsNotConfiguredError, AtsRemoteError, NotFoundError, StorageError
from notifications import ConnectionManager
from settings import Settings
from storage import ResumeStorage

logger = structlog.get_logger(__name__)


@dataclass
class ScoringTask:
    application_id: int
    future: "asyncio.Future[schemas.ScoreOutcome]"
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def done(self) -> bool:
        return self.future.done()

    @property
    def outcome(self) -> Optional[schemas.ScoreOutcome]:
        if not self.future.done() or self.future.cancelled() or self.future.exception():
            return None
        return self.future.result()


class ScoringTaskRegistry:
    """Running scoring tasks, plus the most recent finished ones.

    A task leaves the running map as soon as it completes. Only the last
    ``max_finished`` finished tasks are kept for lookup, oldest dropped first.
    """

    def __init__(self, max_finished: int = 256) -> None:
        self.max_finished = max_finished
        self._tasks: Dict[int, ScoringTask] = {}
        self._finished: "OrderedDict[int, ScoringTask]" = OrderedDict()

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    @property
    def finished_count(self) -> int:
        return len(self._finished)

    def register(self, task: ScoringTask) -> ScoringTask:
        self._finished.pop(task.application_id, None)
        self._tasks[task.application_id] = task
        task.future.add_done_callback(lambda fut, task=task: self._on_done(task))
        return task

    def get(self, application_id: int) -> Optional[ScoringTask]:
        return self._tasks.get(application_id) or self._finished.get(application_id)

    async def wait(self, application_id: int, timeout: Optional[float] = None) -> schemas.ScoreOutcome:
        task = self.get(application_id)
        if task is None:
            raise KeyError(application_id)
        return await asyncio.wait_for(asyncio.shield(task.future), timeout)

    def cancel(self, application_id: int) -> bool:
        task = self._tasks.get(application_id)
        if task is None or task.done:
            return False
        return task.future.cancel()

    def forget(self, application_id: int) -> None:
        self._tasks.pop(application_id, None)
        self._finished.pop(application_id, None)

    def _on_done(self, task: ScoringTask) -> None:
        application_id = task.application_id
        self._log_unexpected(application_id, task.future)
        # A rescheduled calculation may already have replaced this entry
        if self._tasks.get(application_id) is task:
            del self._tasks[application_id]
        if self.max_finished <= 0:
            return
        self._finished[application_id] = task
        self._finished.move_to_end(application_id)
        while len(self._finished) > self.max_finished:
            self._finished.popitem(last=False)

    @staticmethod
    def _log_unexpected(application_id: int, fut: asyncio.Future) -> None:
        if fut.cancelled():
            logger.info("ATS scoring task cancelled", application_id=application_id)
            return
        exc = fut.exception()
        if exc is not None:
            logger.error("ATS scoring task crashed", application_id=application_id, exc_info=exc)


def _patch_hr_rows(application_id: int, result: schemas.AtsResult, calculated_at: datetime):
    def patch(rows):
        return [
            row.model_copy(
                update={
                    "ats_score": result.ats_score,
                    "predicted_category": result.predicted_category,
                    "confidence_score": result.confidence,
                    "ats_calculated_at": calculated_at,
                }
            )
            if row.application_id == application_id
            else row
            for row in rows
        ]

    return patch


class ScoringService:
    def __init__(
        self,
        settings: Settings,
        storage: ResumeStorage,
        session_factory: Callable[[], Session],
        session_registry: sessions.SessionRegistry,
        notifier: ConnectionManager,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.storage = storage
        self.session_factory = session_factory
        self.session_registry = session_registry
        self.notifier = notifier
        self.transport = transport
        self.registry = ScoringTaskRegistry()

    @property
    def configured(self) -> bool:
        return bool(self.settings.ats_api_url)

    def _client(self) -> AtsClient:
        return AtsClient(
            self.settings.ats_api_url,
            timeout=self.settings.ats_timeout_seconds,
            transport=self.transport,
        )

    @metric_scope
    async def calculate(
        self,
        application_id: int,
        job_description: str,
        resume_file_path: str,
        metrics=None,
    ) -> schemas.ScoreOutcome:
        metrics.set_namespace("JobBoardAts")
        metrics.set_property("application_id", application_id)

        if not self.configured:
            logger.warning("ATS scoring skipped: ATS_API_URL is not set", application_id=application_id)
            return schemas.ScoreOutcome(success=False, error=AtsNotConfiguredError().message)

        metrics.put_metric("ats_scoring_started", 1, "Count")
        try:
            result = await self._score_and_persist(application_id, job_description, resume_file_path)
        except (StorageError, AtsRemoteError, NotFoundError) as exc:
            metrics.put_metric("ats_scoring_failed", 1, "Count")
            logger.error("ATS scoring failed", application_id=application_id, error=exc.message)
            return schemas.ScoreOutcome(success=False, error=exc.message)
        except SQLAlchemyError as exc:
            metrics.put_metric("ats_scoring_failed", 1, "Count")
            logger.error("Failed to persist ATS score", application_id=application_id, exc_info=True)
            return schemas.ScoreOutcome(success=False, error=f"Failed to save ATS score: {exc}")

        metrics.put_metric("ats_scoring_succeeded", 1, "Count")
        return schemas.ScoreOutcome(success=True, data=result)

    async def _score_and_persist(
        self, application_id: int, job_description: str, resume_file_path: str
    ) -> schemas.AtsResult:
        loop = asyncio.get_running_loop()
        resume = await loop.run_in_executor(None, self.storage.download, resume_file_path)
        content_type = mimetypes.guess_type(resume_file_path)[0] or "application/pdf"

        result = await self._client().analyze_resume(job_description, resume, content_type)

        calculated_at = datetime.now(timezone.utc)
        db = self.session_factory()
        try:
            if not crud.save_ats_result(db, application_id, result, calculated_at):
                raise NotFoundError(f"Application {application_id} not found")
            db.commit()
            application = crud.get_application(db, application_id)
            applicant_id = application.user_id
            recruiter_id = application.job.posted_by
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            "ATS score saved",
            application_id=application_id,
            ats_score=result.ats_score,
            predicted_category=result.predicted_category,
        )
        self.session_registry.invalidate(applicant_id, sessions.APPLICATIONS)
        self.session_registry.patch(
            recruiter_id,
            sessions.HR_APPLICATIONS,
            _patch_hr_rows(application_id, result, calculated_at),
        )
        return result

    def schedule(
        self,
        application_id: int,
        job_description: str,
        resume_file_path: str,
        notify_user_id: Optional[int] = None,
    ) -> ScoringTask:
        """Start scoring without waiting for it. Failures are logged, never raised."""
        loop = asyncio.get_running_loop()
        if self.configured:
            future = loop.create_task(
                self._run_scheduled(application_id, job_description, resume_file_path, notify_user_id)
            )
        else:
            logger.warning("ATS scoring not scheduled: ATS_API_URL is not set", application_id=application_id)
            future = loop.create_future()
            future.set_result(
                schemas.ScoreOutcome(success=False, error=AtsNotConfiguredError().message)
            )
        return self.registry.register(ScoringTask(application_id=application_id, future=future))

    async def _run_scheduled(
        self,
        application_id: int,
        job_description: str,
        resume_file_path: str,
        notify_user_id: Optional[int],
    ) -> schemas.ScoreOutcome:
        outcome = await self.calculate(application_id, job_description, resume_file_path)
        if not outcome.success:
            logger.error("ATS calculation failed", application_id=application_id, error=outcome.error)
            return outcome

        if notify_user_id is not None:
            await self.notifier.send_notice(
                schemas.Notice(
                    title=f"ATS Score: {outcome.data.ats_score:.1f}%",
                    description=f"Category: {outcome.data.predicted_category}",
                ),
                notify_user_id,
            )
        return outcome
