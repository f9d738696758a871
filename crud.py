from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, aliased, joinedload

import models
import schemas


# --- Profile CRUD ---
def get_profile(db: Session, profile_id: int):
    """Get a profile by its primary key ID."""
    return db.query(models.Profile).filter(models.Profile.id == profile_id).first()


def get_profile_by_subject(db: Session, auth_subject: str):
    return db.query(models.Profile).filter(models.Profile.auth_subject == auth_subject).first()


def get_profile_by_email(db: Session, email: str):
    return db.query(models.Profile).filter(models.Profile.email == email).first()


def create_profile(db: Session, registration: schemas.RegistrationRequest, auth_subject: str):
    db_profile = models.Profile(
        auth_subject=auth_subject,
        first_name=registration.first_name,
        last_name=registration.last_name,
        user_type=registration.user_type.value,
        company=registration.company,
        position=registration.position,
        phone=registration.phone,
        email=registration.email,
    )
    db.add(db_profile)
    db.flush()  # Assign ID without committing
    db.refresh(db_profile)
    return db_profile


def update_profile(db: Session, profile_id: int, changes: schemas.ProfileUpdate):
    db_profile = get_profile(db, profile_id)
    if not db_profile:
        return None
    for field, value in changes.model_dump(exclude_unset=True).items():
        setattr(db_profile, field, value)
    db.add(db_profile)  # add works for updates too
    db.flush()
    db.refresh(db_profile)
    return db_profile


# --- Job CRUD ---
def create_job(db: Session, job: schemas.JobCreate, user_id: int):
    """Creates a new job posting owned by the given recruiter."""
    db_job = models.Job(
        posted_by=user_id,
        title=job.title,
        company=job.company,
        location=job.location,
        type=job.type,
        salary=job.salary,
        description=job.description,
        requirements=list(job.requirements),
    )
    db.add(db_job)
    db.flush()
    db.refresh(db_job)
    return db_job


def get_jobs(db: Session, search: Optional[str] = None):
    """All postings, newest first, optionally narrowed by a substring search."""
    query = db.query(models.Job)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.Job.title.ilike(pattern),
                models.Job.company.ilike(pattern),
                models.Job.location.ilike(pattern),
            )
        )
    return query.order_by(models.Job.created_at.desc(), models.Job.id.desc()).all()


def get_jobs_for_poster(db: Session, user_id: int):
    """Retrieves all jobs posted by a specific recruiter."""
    return (
        db.query(models.Job)
        .filter(models.Job.posted_by == user_id)
        .order_by(models.Job.created_at.desc(), models.Job.id.desc())
        .all()
    )


def get_job(db: Session, job_id: int):
    return db.query(models.Job).filter(models.Job.id == job_id).first()


# --- Application CRUD ---
def get_applications_for_user(db: Session, user_id: int):
    return (
        db.query(models.Application)
        .options(joinedload(models.Application.job))
        .filter(models.Application.user_id == user_id)
        .order_by(models.Application.applied_at.desc(), models.Application.id.desc())
        .all()
    )


def get_application(db: Session, application_id: int):
    return (
        db.query(models.Application)
        .options(joinedload(models.Application.job))
        .filter(models.Application.id == application_id)
        .first()
    )


def get_application_for_job_and_user(db: Session, job_id: int, user_id: int):
    return (
        db.query(models.Application)
        .filter(models.Application.job_id == job_id, models.Application.user_id == user_id)
        .first()
    )


def create_application(db: Session, job_id: int, user_id: int, cover_letter: Optional[str] = None):
    db_application = models.Application(
        job_id=job_id,
        user_id=user_id,
        status=schemas.ApplicationStatus.PENDING.value,
        cover_letter=cover_letter or None,
    )
    db.add(db_application)
    db.flush()
    db.refresh(db_application)
    return db_application


def update_application_status(db: Session, application_id: int, new_status: schemas.ApplicationStatus):
    db_application = (
        db.query(models.Application).filter(models.Application.id == application_id).first()
    )
    if not db_application:
        return None

    db_application.status = new_status.value
    db.add(db_application)
    return db_application


def save_ats_result(
    db: Session, application_id: int, result: schemas.AtsResult, calculated_at: datetime
) -> bool:
    """Write all four ATS fields in a single statement. Returns False if no row matched."""
    outcome = db.execute(
        update(models.Application)
        .where(models.Application.id == application_id)
        .values(
            ats_score=result.ats_score,
            predicted_category=result.predicted_category,
            confidence_score=result.confidence,
            ats_calculated_at=calculated_at,
        )
    )
    return outcome.rowcount > 0


def _latest_resume_id_for_applicant():
    candidate = aliased(models.Resume)
    return (
        select(candidate.id)
        .where(candidate.user_id == models.Application.user_id)
        .order_by(candidate.uploaded_at.desc(), candidate.id.desc())
        .limit(1)
        .correlate(models.Application)
        .scalar_subquery()
    )


def get_hr_application_rows(db: Session, recruiter_id: int):
    """Denormalised recruiter view: application + job + applicant + latest resume."""
    query = (
        db.query(
            models.Application.id.label("application_id"),
            models.Application.job_id,
            models.Application.user_id,
            models.Application.status,
            models.Application.applied_at,
            models.Application.cover_letter,
            models.Application.ats_score,
            models.Application.predicted_category,
            models.Application.confidence_score,
            models.Application.ats_calculated_at,
            models.Job.title.label("job_title"),
            models.Job.company.label("job_company"),
            models.Job.location.label("job_location"),
            models.Job.type.label("job_type"),
            models.Job.salary.label("job_salary"),
            models.Job.description.label("job_description"),
            models.Profile.first_name,
            models.Profile.last_name,
            models.Profile.email,
            models.Profile.phone,
            models.Profile.company.label("applicant_company"),
            models.Profile.position.label("applicant_position"),
            models.Resume.file_name.label("resume_file_name"),
            models.Resume.file_path.label("resume_file_path"),
            models.Resume.uploaded_at.label("resume_uploaded_at"),
        )
        .join(models.Job, models.Job.id == models.Application.job_id)
        .join(models.Profile, models.Profile.id == models.Application.user_id)
        .outerjoin(models.Resume, models.Resume.id == _latest_resume_id_for_applicant())
        .filter(models.Job.posted_by == recruiter_id)
    )
    rows = query.order_by(models.Application.applied_at.desc(), models.Application.id.desc()).all()
    return [dict(row._mapping) for row in rows]


# --- Resume CRUD ---
def get_latest_resume(db: Session, user_id: int):
    return (
        db.query(models.Resume)
        .filter(models.Resume.user_id == user_id)
        .order_by(models.Resume.uploaded_at.desc(), models.Resume.id.desc())
        .first()
    )


def create_resume(
    db: Session, user_id: int, file_name: str, file_path: str, content_type: Optional[str] = None
):
    db_resume = models.Resume(
        user_id=user_id,
        file_name=file_name,
        file_path=file_path,
        content_type=content_type,
    )
    db.add(db_resume)
    db.flush()
    db.refresh(db_resume)
    return db_resume


def delete_resume(db: Session, resume_id: int) -> bool:
    db_resume = db.query(models.Resume).filter(models.Resume.id == resume_id).first()
    if not db_resume:
        return False
    db.delete(db_resume)
    db.flush()
    return True


# --- Saved job CRUD ---
def get_saved_jobs_for_user(db: Session, user_id: int):
    return (
        db.query(models.SavedJob)
        .options(joinedload(models.SavedJob.job))
        .filter(models.SavedJob.user_id == user_id)
        .order_by(models.SavedJob.saved_at.desc(), models.SavedJob.id.desc())
        .all()
    )


def get_saved_job(db: Session, job_id: int, user_id: int):
    return (
        db.query(models.SavedJob)
        .filter(models.SavedJob.job_id == job_id, models.SavedJob.user_id == user_id)
        .first()
    )


def create_saved_job(db: Session, job_id: int, user_id: int):
    """Insert a saved job. A repeat save raises ``IntegrityError`` from the unique constraint."""
    db_saved = models.SavedJob(job_id=job_id, user_id=user_id)
    db.add(db_saved)
    db.flush()
    db.refresh(db_saved)
    return db_saved


def delete_saved_job(db: Session, job_id: int, user_id: int) -> bool:
    deleted = (
        db.query(models.SavedJob)
        .filter(models.SavedJob.job_id == job_id, models.SavedJob.user_id == user_id)
        .delete(synchronize_session=False)
    )
    return deleted > 0
