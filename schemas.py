from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class UserType(str, Enum):
    JOBSEEKER = "jobseeker"
    HR = "hr"


class RowModel(BaseModel):
    """Base for rows read from the database.

    Required fields have no defaults so a row with a missing column fails
    validation instead of being silently filled in.
    """

    model_config = ConfigDict(from_attributes=True)


# --- Profiles ---
class Profile(RowModel):
    id: int
    first_name: str
    last_name: str
    user_type: UserType
    company: Optional[str]
    position: Optional[str]
    phone: Optional[str]
    email: Optional[str]


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    phone: Optional[str] = None


class RegistrationRequest(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: str
    password: str
    confirm_password: str
    user_type: UserType = UserType.JOBSEEKER
    company: Optional[str] = None
    position: Optional[str] = None
    phone: Optional[str] = None


# --- Jobs ---
class JobCreate(BaseModel):
    title: str = Field(min_length=1)
    company: str = Field(min_length=1)
    location: str = Field(min_length=1)
    type: str = Field(min_length=1)
    salary: Optional[str] = None
    description: str = Field(min_length=1)
    requirements: List[str] = Field(default_factory=list)

    @field_validator("requirements", mode="before")
    @classmethod
    def split_requirements(cls, value):
        """Accept either a list or the comma-separated form field."""
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [item.strip() for item in value if item and item.strip()]

    @field_validator("salary", mode="before")
    @classmethod
    def blank_salary_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Job(RowModel):
    id: int
    title: str
    company: str
    location: str
    type: str
    salary: Optional[str]
    description: str
    requirements: List[str]
    posted_by: Optional[int]
    created_at: datetime


class JobSummary(RowModel):
    id: int
    title: str
    company: str
    location: str
    type: str
    salary: Optional[str]
    description: str


class JobCard(Job):
    is_saved: bool = False


# --- Applications ---
class AtsFields(RowModel):
    ats_score: Optional[float]
    predicted_category: Optional[str]
    confidence_score: Optional[float]
    ats_calculated_at: Optional[datetime]

    @model_validator(mode="after")
    def ats_fields_set_together(self):
        values = (
            self.ats_score,
            self.predicted_category,
            self.confidence_score,
            self.ats_calculated_at,
        )
        if any(v is not None for v in values) and any(v is None for v in values):
            raise ValueError("ATS fields must be either all set or all unset")
        return self


class Application(AtsFields):
    id: int
    job_id: int
    user_id: int
    status: ApplicationStatus
    applied_at: datetime
    cover_letter: Optional[str]


class JobSeekerApplication(Application):
    job: JobSummary


class ApplicationCreate(BaseModel):
    job_id: int
    cover_letter: Optional[str] = None


class StatusUpdate(BaseModel):
    status: ApplicationStatus


class HRApplication(AtsFields):
    """One row of the recruiter read model (application + job + applicant + resume)."""

    application_id: int
    job_id: int
    user_id: int
    status: ApplicationStatus
    applied_at: datetime
    cover_letter: Optional[str]
    job_title: str
    job_company: str
    job_location: str
    job_type: str
    job_salary: Optional[str]
    job_description: str
    first_name: str
    last_name: str
    email: Optional[str]
    phone: Optional[str]
    applicant_company: Optional[str]
    applicant_position: Optional[str]
    resume_file_name: Optional[str]
    resume_file_path: Optional[str]
    resume_uploaded_at: Optional[datetime]


# --- Resumes ---
class Resume(RowModel):
    id: int
    user_id: int
    file_name: str
    file_path: str
    content_type: Optional[str]
    uploaded_at: datetime


class SignedUrl(BaseModel):
    url: str
    expires_in: int


# --- Saved jobs ---
class SavedJob(RowModel):
    id: int
    job_id: int
    user_id: int
    saved_at: datetime
    job: Job


class SavedJobCreate(BaseModel):
    job_id: int


class SavedJobToggle(BaseModel):
    job_id: int
    saved: bool


# --- ATS scoring ---
class AtsResult(BaseModel):
    """Body returned by the scoring service's ``/analyze-resume`` endpoint."""

    ats_score: float = Field(ge=0, le=100)
    predicted_category: str
    confidence: float


class ScoreOutcome(BaseModel):
    success: bool
    data: Optional[AtsResult] = None
    error: Optional[str] = None


# --- Notices / dashboard ---
class Notice(BaseModel):
    title: str
    description: str = ""
    variant: str = "default"


class DashboardStat(BaseModel):
    label: str
    value: int
    trend: str


class ActivityItem(BaseModel):
    type: str
    text: str
    time: datetime


class Dashboard(BaseModel):
    user_type: UserType
    stats: List[DashboardStat]
    recent_activity: List[ActivityItem]
