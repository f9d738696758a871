"""View-model helpers over data that has already been fetched.

Nothing here touches the database; filters narrow the in-memory result set
the caller already holds.
"""
from typing import Iterable, List, Optional, Sequence, Set

import schemas

ALL = "all"


def filter_applications(
    rows: Iterable[schemas.HRApplication],
    status: Optional[str] = ALL,
    job_id: Optional[str] = ALL,
) -> List[schemas.HRApplication]:
    """Narrow recruiter rows by status and job. ``"all"`` (or None) disables a filter."""
    filtered = list(rows)
    if status and status != ALL:
        filtered = [row for row in filtered if row.status.value == status]
    if job_id and str(job_id) != ALL:
        filtered = [row for row in filtered if str(row.job_id) == str(job_id)]
    return filtered


def unique_jobs(rows: Iterable[schemas.HRApplication]) -> List[dict]:
    """Distinct jobs appearing in ``rows``, in first-seen order, for the job filter."""
    seen = {}
    for row in rows:
        if row.job_id not in seen:
            seen[row.job_id] = {"id": row.job_id, "title": row.job_title, "company": row.job_company}
    return list(seen.values())


def ats_score_band(score: Optional[float]) -> str:
    if not score:
        return "none"
    if score >= 70:
        return "high"
    if score >= 50:
        return "medium"
    return "low"


def status_badge(status: schemas.ApplicationStatus) -> str:
    return {
        schemas.ApplicationStatus.ACCEPTED: "default",
        schemas.ApplicationStatus.REJECTED: "destructive",
        schemas.ApplicationStatus.REVIEWED: "secondary",
    }.get(schemas.ApplicationStatus(status), "outline")


def can_calculate_ats(row: schemas.HRApplication) -> bool:
    return row.ats_score is None and bool(row.resume_file_path)


def job_cards(jobs: Iterable[schemas.Job], saved_job_ids: Set[int]) -> List[schemas.JobCard]:
    return [
        schemas.JobCard(**job.model_dump(), is_saved=job.id in saved_job_ids)
        for job in jobs
    ]


def hr_application_card(row: schemas.HRApplication) -> dict:
    """Row plus the display hints the applications list renders."""
    return {
        **row.model_dump(mode="json"),
        "applicant_name": f"{row.first_name} {row.last_name}".strip(),
        "status_badge": status_badge(row.status),
        "ats_band": ats_score_band(row.ats_score),
        "can_calculate_ats": can_calculate_ats(row),
    }


def jobseeker_dashboard(
    applications: Sequence[schemas.JobSeekerApplication],
    saved_jobs: Sequence[schemas.SavedJob],
) -> schemas.Dashboard:
    stats = [
        schemas.DashboardStat(label="Applications", value=len(applications), trend=f"{len(applications)} total"),
        schemas.DashboardStat(label="Saved Jobs", value=len(saved_jobs), trend=f"{len(saved_jobs)} saved"),
    ]
    activity = [
        schemas.ActivityItem(
            type="application",
            text=f"Applied to {app.job.title} at {app.job.company}",
            time=app.applied_at,
        )
        for app in applications[:3]
    ]
    return schemas.Dashboard(user_type=schemas.UserType.JOBSEEKER, stats=stats, recent_activity=activity)


def hr_dashboard(
    jobs: Sequence[schemas.Job],
    applications: Sequence[schemas.HRApplication],
) -> schemas.Dashboard:
    stats = [
        schemas.DashboardStat(label="Active Jobs", value=len(jobs), trend=f"{len(jobs)} posted"),
        schemas.DashboardStat(
            label="Total Applications", value=len(applications), trend=f"{len(applications)} received"
        ),
    ]
    activity = [
        schemas.ActivityItem(
            type="application",
            text=f"New application for {row.job_title} from {row.first_name} {row.last_name}",
            time=row.applied_at,
        )
        for row in applications[:3]
    ]
    return schemas.Dashboard(user_type=schemas.UserType.HR, stats=stats, recent_activity=activity)
