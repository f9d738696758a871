from sqlalchemy.orm import relationship
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from database import Base


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("user_type IN ('jobseeker', 'hr')", name="ck_profiles_user_type"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    auth_subject = Column(String, unique=True, index=True, nullable=False)  # identity provider `sub`
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    user_type = Column(String(20), nullable=False, default="jobseeker")
    company = Column(String, nullable=True)
    position = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    jobs = relationship("Job", back_populates="poster", foreign_keys="Job.posted_by")
    applications = relationship("Application", back_populates="applicant")
    resumes = relationship("Resume", back_populates="owner")


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    company = Column(String, nullable=False)
    location = Column(String, nullable=False)
    type = Column(String, nullable=False)
    salary = Column(String, nullable=True)
    description = Column(Text, nullable=False)
    requirements = Column(JSON, nullable=False, default=list)
    posted_by = Column(Integer, ForeignKey("profiles.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    poster = relationship("Profile", back_populates="jobs", foreign_keys=[posted_by])
    applications = relationship("Application", back_populates="job")


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("job_id", "user_id", name="uq_applications_job_user"),
        CheckConstraint(
            "status IN ('pending', 'reviewed', 'accepted', 'rejected')",
            name="ck_applications_status",
        ),
        # ATS fields are written together by the scoring integration
        CheckConstraint(
            "(ats_score IS NULL AND predicted_category IS NULL"
            " AND confidence_score IS NULL AND ats_calculated_at IS NULL)"
            " OR (ats_score IS NOT NULL AND predicted_category IS NOT NULL"
            " AND confidence_score IS NOT NULL AND ats_calculated_at IS NOT NULL)",
            name="ck_applications_ats_fields_together",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")
    applied_at = Column(DateTime(timezone=True), server_default=func.now())
    cover_letter = Column(Text, nullable=True)
    ats_score = Column(Float, nullable=True)
    predicted_category = Column(String, nullable=True)
    confidence_score = Column(Float, nullable=True)
    ats_calculated_at = Column(DateTime(timezone=True), nullable=True)

    job = relationship("Job", back_populates="applications")
    applicant = relationship("Profile", back_populates="applications")


class Resume(Base):
    __tablename__ = "resumes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)  # key inside the `resumes` bucket
    content_type = Column(String, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())

    owner = relationship("Profile", back_populates="resumes")


class SavedJob(Base):
    __tablename__ = "saved_jobs"
    __table_args__ = (
        UniqueConstraint("job_id", "user_id", name="uq_saved_jobs_job_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    saved_at = Column(DateTime(timezone=True), server_default=func.now())

    job = relationship("Job")
