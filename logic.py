"""Orchestration for jobs, applications, saved jobs, resumes and profiles.

Every operation receives a ``RequestContext`` carrying the database session,
the caller's profile and session, and the shared services. Mutations commit,
then invalidate (or patch) the affected session cache entries and queue a
notice for the caller.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import crud
import schemas
import sessions
import views
from exceptions import (
    AlreadyRegisteredError,
    DuplicateApplicationError,
    DuplicateSavedJobError,
    FileTooLarge,
    ForbiddenError,
    InvalidFileType,
    MissingResumeFile,
    NotFoundError,
    PasswordMismatch,
    PasswordTooShort,
    PersistenceError,
    ResumeRequiredError,
    StorageError,
)
from notifications import ConnectionManager
from scoring import ScoringService
from settings import Settings
from storage import ResumeStorage

# Set up logging
logger = structlog.get_logger(__name__)

ALLOWED_RESUME_TYPES = {
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
}
MIN_PASSWORD_LENGTH = 6


@dataclass
class RequestContext:
    db: Session
    user: schemas.Profile
    session: sessions.UserSession
    settings: Settings
    storage: ResumeStorage
    scoring: ScoringService
    notifier: ConnectionManager
    sessions: sessions.SessionRegistry

    @property
    def cache(self) -> sessions.QueryCache:
        return self.session.cache

    async def notify(self, title: str, description: str = "", variant: str = "default") -> None:
        await self.notifier.send_notice(
            schemas.Notice(title=title, description=description, variant=variant), self.user.id
        )


def _require_role(ctx: RequestContext, role: schemas.UserType) -> None:
    if ctx.user.user_type != role:
        raise ForbiddenError(f"Only {role.value} accounts can perform this action")


async def _run_blocking(func, *args):
    """Run blocking storage I/O off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------
def validate_passwords(password: str, confirm_password: str) -> None:
    if password != confirm_password:
        raise PasswordMismatch()
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordTooShort()


def register(db: Session, registration: schemas.RegistrationRequest, auth_subject: str) -> schemas.Profile:
    """Create the profile for a newly signed-up identity.

    Credentials belong to the identity provider; the password pair is only
    checked here so the form can be rejected before anything is written.
    """
    validate_passwords(registration.password, registration.confirm_password)

    if crud.get_profile_by_email(db, registration.email) or crud.get_profile_by_subject(db, auth_subject):
        raise AlreadyRegisteredError()

    try:
        profile = crud.create_profile(db, registration, auth_subject)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise AlreadyRegisteredError() from exc

    logger.info("Registered profile", profile_id=profile.id, user_type=profile.user_type)
    return schemas.Profile.model_validate(profile)


def update_profile(ctx: RequestContext, changes: schemas.ProfileUpdate) -> schemas.Profile:
    profile = crud.update_profile(ctx.db, ctx.user.id, changes)
    if profile is None:
        raise NotFoundError("Profile not found")
    ctx.db.commit()
    return schemas.Profile.model_validate(profile)


def sign_out(registry: sessions.SessionRegistry, profile_id: int) -> bool:
    return registry.end(profile_id)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------
def list_jobs(ctx: RequestContext, search: Optional[str] = None) -> List[schemas.Job]:
    search = (search or "").strip() or None
    return [schemas.Job.model_validate(job) for job in crud.get_jobs(ctx.db, search)]


def browse_jobs(ctx: RequestContext, search: Optional[str] = None) -> List[schemas.JobCard]:
    saved_ids = {saved.job_id for saved in list_saved_jobs(ctx)}
    return views.job_cards(list_jobs(ctx, search), saved_ids)


def list_my_jobs(ctx: RequestContext) -> List[schemas.Job]:
    return ctx.cache.get_or_load(
        sessions.MY_JOBS,
        lambda: [schemas.Job.model_validate(job) for job in crud.get_jobs_for_poster(ctx.db, ctx.user.id)],
    )


def get_job(ctx: RequestContext, job_id: int) -> schemas.Job:
    job = crud.get_job(ctx.db, job_id)
    if job is None:
        raise NotFoundError("Job not found")
    return schemas.Job.model_validate(job)


async def create_job(ctx: RequestContext, job: schemas.JobCreate) -> schemas.Job:
    _require_role(ctx, schemas.UserType.HR)
    db_job = crud.create_job(ctx.db, job, ctx.user.id)
    ctx.db.commit()
    ctx.db.refresh(db_job)
    logger.info("Job posted", job_id=db_job.id, posted_by=ctx.user.id)

    ctx.cache.invalidate(sessions.MY_JOBS)
    await ctx.notify("Job posted", "Your job has been posted successfully.")
    return schemas.Job.model_validate(db_job)


# ---------------------------------------------------------------------------
# Applications (job seeker side)
# ---------------------------------------------------------------------------
def list_my_applications(ctx: RequestContext) -> List[schemas.JobSeekerApplication]:
    return ctx.cache.get_or_load(
        sessions.APPLICATIONS,
        lambda: [
            schemas.JobSeekerApplication.model_validate(app)
            for app in crud.get_applications_for_user(ctx.db, ctx.user.id)
        ],
    )


async def apply_to_job(
    ctx: RequestContext,
    job_id: int,
    cover_letter: Optional[str] = None,
    job_description: Optional[str] = None,
) -> schemas.Application:
    """Submit an application and start ATS scoring in the background.

    Raises ``ResumeRequiredError`` when the applicant has no resume on file and
    ``DuplicateApplicationError`` when they already applied. Scoring failures
    never affect the outcome; they are only logged.
    """
    _require_role(ctx, schemas.UserType.JOBSEEKER)

    with ctx.session.in_flight("apply", job_id):
        job = crud.get_job(ctx.db, job_id)
        if job is None:
            raise NotFoundError("Job not found")

        resume = crud.get_latest_resume(ctx.db, ctx.user.id)
        if resume is None or not resume.file_path:
            raise ResumeRequiredError()

        if crud.get_application_for_job_and_user(ctx.db, job_id, ctx.user.id):
            raise DuplicateApplicationError()

        try:
            application = crud.create_application(ctx.db, job_id, ctx.user.id, cover_letter)
            ctx.db.commit()
        except IntegrityError as exc:
            # Lost a race with a concurrent submission for the same pair
            ctx.db.rollback()
            raise DuplicateApplicationError() from exc

        ctx.db.refresh(application)
        logger.info("Application submitted", application_id=application.id, job_id=job_id, user_id=ctx.user.id)

        ctx.scoring.schedule(
            application.id,
            job_description or job.description,
            resume.file_path,
            notify_user_id=ctx.user.id,
        )

        ctx.cache.invalidate(sessions.APPLICATIONS)
        ctx.sessions.invalidate(job.posted_by, sessions.HR_APPLICATIONS)
        await ctx.notify("Application submitted! 🎉", "Your ATS score is being calculated…")
        return schemas.Application.model_validate(application)


# ---------------------------------------------------------------------------
# Applications (recruiter side)
# ---------------------------------------------------------------------------
def list_hr_applications(ctx: RequestContext, refresh: bool = False) -> List[schemas.HRApplication]:
    _require_role(ctx, schemas.UserType.HR)
    if refresh:
        ctx.cache.invalidate(sessions.HR_APPLICATIONS)
    return ctx.cache.get_or_load(
        sessions.HR_APPLICATIONS,
        lambda: [
            schemas.HRApplication.model_validate(row)
            for row in crud.get_hr_application_rows(ctx.db, ctx.user.id)
        ],
    )


def _get_owned_application(ctx: RequestContext, application_id: int):
    """Load an application the caller may act on: their own, or one for a job they posted."""
    application = crud.get_application(ctx.db, application_id)
    if application is None:
        raise NotFoundError("Application not found")

    if ctx.user.user_type == schemas.UserType.HR:
        allowed = application.job.posted_by == ctx.user.id
    else:
        allowed = application.user_id == ctx.user.id
    if not allowed:
        raise ForbiddenError("You do not have access to this application")
    return application


async def update_application_status(
    ctx: RequestContext, application_id: int, new_status: schemas.ApplicationStatus
) -> schemas.Application:
    """Persist a new status. Any status may follow any other."""
    _require_role(ctx, schemas.UserType.HR)

    with ctx.session.in_flight("status", application_id):
        application = _get_owned_application(ctx, application_id)
        previous = application.status
        try:
            crud.update_application_status(ctx.db, application_id, new_status)
            ctx.db.commit()
        except SQLAlchemyError as exc:
            ctx.db.rollback()
            logger.error("Error updating application status", application_id=application_id, exc_info=True)
            raise PersistenceError("Failed to update application status") from exc

        logger.info(
            "Application status updated",
            application_id=application_id,
            previous=previous,
            status=new_status.value,
        )
        ctx.db.refresh(application)

        ctx.cache.update(
            sessions.HR_APPLICATIONS,
            lambda rows: [
                row.model_copy(update={"status": new_status}) if row.application_id == application_id else row
                for row in rows
            ],
        )
        ctx.sessions.invalidate(application.user_id, sessions.APPLICATIONS)
        return schemas.Application.model_validate(application)


async def calculate_ats_score(ctx: RequestContext, application_id: int) -> schemas.ScoreOutcome:
    """Score an application on demand and wait for the result.

    Job seekers may score their own applications, recruiters any application
    to a job they posted.
    """
    with ctx.session.in_flight("ats", application_id):
        application = _get_owned_application(ctx, application_id)
        resume = crud.get_latest_resume(ctx.db, application.user_id)
        if resume is None or not resume.file_path:
            raise MissingResumeFile()

        job_description = application.job.description
        resume_path = resume.file_path
        # Release the read transaction before the scoring service writes
        ctx.db.commit()

        outcome = await ctx.scoring.calculate(application_id, job_description, resume_path)
        if outcome.success:
            logger.info("ATS score calculated", application_id=application_id, role=ctx.user.user_type.value)
        else:
            logger.error("Error calculating ATS score", application_id=application_id, error=outcome.error)
        return outcome


def get_resume_download_url(ctx: RequestContext, application_id: int) -> Optional[schemas.SignedUrl]:
    """Signed link to the applicant's resume, or None when there is nothing to link."""
    _require_role(ctx, schemas.UserType.HR)
    application = _get_owned_application(ctx, application_id)
    resume = crud.get_latest_resume(ctx.db, application.user_id)
    if resume is None:
        return None

    ttl = ctx.settings.signed_url_ttl_seconds
    try:
        url = ctx.storage.create_signed_url(resume.file_path, ttl)
    except StorageError as exc:
        logger.error("Error getting resume download URL", application_id=application_id, error=exc.message)
        return None
    return schemas.SignedUrl(url=url, expires_in=ttl)


# ---------------------------------------------------------------------------
# Saved jobs
# ---------------------------------------------------------------------------
def list_saved_jobs(ctx: RequestContext) -> List[schemas.SavedJob]:
    return ctx.cache.get_or_load(
        sessions.SAVED_JOBS,
        lambda: [schemas.SavedJob.model_validate(s) for s in crud.get_saved_jobs_for_user(ctx.db, ctx.user.id)],
    )


async def save_job(ctx: RequestContext, job_id: int) -> schemas.SavedJob:
    if crud.get_job(ctx.db, job_id) is None:
        raise NotFoundError("Job not found")

    try:
        saved = crud.create_saved_job(ctx.db, job_id, ctx.user.id)
        ctx.db.commit()
    except IntegrityError as exc:
        ctx.db.rollback()
        logger.info("Duplicate saved job rejected", job_id=job_id, user_id=ctx.user.id)
        raise DuplicateSavedJobError() from exc

    ctx.db.refresh(saved)
    ctx.cache.invalidate(sessions.SAVED_JOBS)
    await ctx.notify("Job saved", "Job has been saved to your list.")
    return schemas.SavedJob.model_validate(saved)


async def unsave_job(ctx: RequestContext, job_id: int) -> bool:
    removed = crud.delete_saved_job(ctx.db, job_id, ctx.user.id)
    ctx.db.commit()
    ctx.cache.invalidate(sessions.SAVED_JOBS)
    if removed:
        await ctx.notify("Job unsaved", "Job has been removed from your saved list.")
    return removed


async def toggle_saved_job(ctx: RequestContext, job_id: int) -> schemas.SavedJobToggle:
    if crud.get_saved_job(ctx.db, job_id, ctx.user.id):
        await unsave_job(ctx, job_id)
        return schemas.SavedJobToggle(job_id=job_id, saved=False)
    await save_job(ctx, job_id)
    return schemas.SavedJobToggle(job_id=job_id, saved=True)


# ---------------------------------------------------------------------------
# Resumes
# ---------------------------------------------------------------------------
def get_resume(ctx: RequestContext) -> Optional[schemas.Resume]:
    def load():
        resume = crud.get_latest_resume(ctx.db, ctx.user.id)
        return schemas.Resume.model_validate(resume) if resume else None

    return ctx.cache.get_or_load(sessions.RESUME, load)


def validate_resume_file(content_type: Optional[str], size: int, max_bytes: int) -> str:
    """Return the canonical extension for an acceptable upload, else raise."""
    extension = ALLOWED_RESUME_TYPES.get((content_type or "").split(";")[0].strip().lower())
    if extension is None:
        raise InvalidFileType()
    if size > max_bytes:
        raise FileTooLarge()
    return extension


def _resume_key(user_id: int, file_name: str, default_extension: str) -> str:
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else default_extension
    return f"{user_id}/{int(time.time() * 1000)}.{extension}"


async def _discard_resume_best_effort(ctx: RequestContext, resume) -> None:
    """Remove the previous object and record; each step fails independently."""
    resume_id, file_path = resume.id, resume.file_path
    try:
        await _run_blocking(ctx.storage.remove, [file_path])
    except StorageError as exc:
        # The record still goes; only the storage object is left behind
        logger.warning("Failed to delete old resume file", resume_id=resume_id, key=file_path, error=exc.message)

    try:
        crud.delete_resume(ctx.db, resume_id)
        ctx.db.commit()
    except SQLAlchemyError as exc:
        ctx.db.rollback()
        logger.warning("Failed to delete old resume record", resume_id=resume_id, error=str(exc))


async def upload_resume(
    ctx: RequestContext, file_name: str, content_type: Optional[str], data: bytes
) -> schemas.Resume:
    """Replace the caller's resume with a new file.

    The previous object and record are removed first; if that fails the upload
    still goes ahead and the old object may be left behind in storage.
    """
    extension = validate_resume_file(content_type, len(data), ctx.settings.max_resume_bytes)

    current = crud.get_latest_resume(ctx.db, ctx.user.id)
    if current is not None:
        await _discard_resume_best_effort(ctx, current)

    key = _resume_key(ctx.user.id, file_name, extension)
    await _run_blocking(ctx.storage.upload, key, data)

    resume = crud.create_resume(ctx.db, ctx.user.id, file_name, key, content_type)
    ctx.db.commit()
    ctx.db.refresh(resume)
    logger.info("Resume uploaded", resume_id=resume.id, user_id=ctx.user.id, key=key)

    ctx.cache.invalidate(sessions.RESUME)
    await ctx.notify("Resume uploaded successfully! ✅", "You can now apply for jobs with your new resume.")
    return schemas.Resume.model_validate(resume)


async def delete_resume(ctx: RequestContext) -> None:
    resume = crud.get_latest_resume(ctx.db, ctx.user.id)
    if resume is None:
        raise NotFoundError("No resume to delete")

    await _run_blocking(ctx.storage.remove, [resume.file_path])
    crud.delete_resume(ctx.db, resume.id)
    ctx.db.commit()
    logger.info("Resume deleted", resume_id=resume.id, user_id=ctx.user.id)

    ctx.cache.invalidate(sessions.RESUME)
    await ctx.notify("Resume deleted", "Upload a new resume to apply for jobs.")


async def download_resume(ctx: RequestContext) -> Tuple[bytes, str, str]:
    resume = crud.get_latest_resume(ctx.db, ctx.user.id)
    if resume is None:
        raise NotFoundError("No resume to download")
    data = await _run_blocking(ctx.storage.download, resume.file_path)
    return data, resume.file_name, resume.content_type or "application/octet-stream"


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------
def dashboard(ctx: RequestContext) -> schemas.Dashboard:
    if ctx.user.user_type == schemas.UserType.HR:
        return views.hr_dashboard(list_my_jobs(ctx), list_hr_applications(ctx))
    return views.jobseeker_dashboard(list_my_applications(ctx), list_saved_jobs(ctx))
