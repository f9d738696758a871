import pytest
import httpx
from datetime import datetime, timezone
from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import logic
import models
from ats import AtsClient
from conftest import (
    build_scoring_service,
    create_test_job,
    create_test_profile,
    create_test_resume,
    login_as,
    make_context,
)
from exceptions import AtsRemoteError
from main import app, get_scoring_service

ATS_URL = "http://ats.test"
GOOD_RESULT = {"ats_score": 82.5, "predicted_category": "Software Engineering", "confidence": 0.91}


def ats_transport(captured: list, status_code: int = 200, body=GOOD_RESULT) -> httpx.MockTransport:
    """Fake scoring service recording every request it receives."""

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        if isinstance(body, str):
            return httpx.Response(status_code, text=body)
        return httpx.Response(status_code, json=body)

    return httpx.MockTransport(handler)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _ats_fields(db: Session, application_id: int):
    db.expire_all()
    row = db.get(models.Application, application_id)
    return row.ats_score, row.predicted_category, row.confidence_score, row.ats_calculated_at


@pytest.fixture
def ats_settings(test_settings):
    return test_settings.model_copy(update={"ats_api_url": ATS_URL})


@pytest.fixture
def scored_setup(db_session: Session, storage):
    """A recruiter's job, an applicant with a resume on file, and a pending application."""
    hr = create_test_profile(db_session, "hr")
    seeker = create_test_profile(db_session)
    job = create_test_job(db_session, hr, description="Need React+TS dev")
    resume = create_test_resume(db_session, storage, seeker)
    application = models.Application(job_id=job.id, user_id=seeker.id, status="pending")
    db_session.add(application)
    db_session.commit()
    db_session.refresh(application)
    return {"hr": hr, "seeker": seeker, "job": job, "resume": resume, "application": application}


# --- Background scoring after applying ---

@pytest.mark.asyncio
async def test_apply_scores_application_in_background(db_session: Session, ats_settings, storage):
    hr = create_test_profile(db_session, "hr")
    seeker = create_test_profile(db_session)
    job = create_test_job(db_session, hr, description="Need React+TS dev")
    create_test_resume(db_session, storage, seeker)

    requests = []
    scoring = build_scoring_service(ats_settings, storage, ats_transport(requests))
    ctx = make_context(db_session, seeker, ats_settings, storage, scoring)
    submitted_at = datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)

    application = await logic.apply_to_job(ctx, job.id)
    assert application.status == "pending"

    task = scoring.registry.get(application.id)
    assert task is not None
    outcome = await scoring.registry.wait(application.id, timeout=5)

    assert outcome.success is True
    assert outcome.data.ats_score == 82.5
    ats_score, category, confidence, calculated_at = _ats_fields(db_session, application.id)
    assert ats_score == 82.5
    assert category == "Software Engineering"
    assert confidence == 0.91
    assert calculated_at is not None
    assert _naive_utc(calculated_at) >= submitted_at

    assert len(requests) == 1
    assert str(requests[0].url) == f"{ATS_URL}/analyze-resume"


@pytest.mark.asyncio
async def test_finished_background_tasks_leave_the_running_set(db_session: Session, ats_settings, storage):
    hr = create_test_profile(db_session, "hr")
    seeker = create_test_profile(db_session)
    create_test_resume(db_session, storage, seeker)
    scoring = build_scoring_service(ats_settings, storage, ats_transport([]))
    ctx = make_context(db_session, seeker, ats_settings, storage, scoring)

    application_ids = []
    for _ in range(5):
        job = create_test_job(db_session, hr)
        application = await logic.apply_to_job(ctx, job.id)
        application_ids.append(application.id)
    for application_id in application_ids:
        await scoring.registry.wait(application_id, timeout=5)

    assert scoring.registry.active_count == 0
    assert scoring.registry.get(application_ids[-1]).outcome.success is True


@pytest.mark.asyncio
async def test_background_scoring_failure_keeps_application(db_session: Session, ats_settings, storage):
    hr = create_test_profile(db_session, "hr")
    seeker = create_test_profile(db_session)
    job = create_test_job(db_session, hr)
    create_test_resume(db_session, storage, seeker)

    requests = []
    scoring = build_scoring_service(ats_settings, storage, ats_transport(requests, 500, "model offline"))
    ctx = make_context(db_session, seeker, ats_settings, storage, scoring)

    application = await logic.apply_to_job(ctx, job.id)
    outcome = await scoring.registry.wait(application.id, timeout=5)

    assert outcome.success is False
    assert "500" in outcome.error
    assert "model offline" in outcome.error

    db_session.expire_all()
    stored = db_session.get(models.Application, application.id)
    assert stored is not None
    assert stored.status == "pending"
    assert _ats_fields(db_session, application.id) == (None, None, None, None)


@pytest.mark.asyncio
async def test_apply_without_scoring_url_records_failed_task(db_session: Session, test_settings, storage):
    hr = create_test_profile(db_session, "hr")
    seeker = create_test_profile(db_session)
    job = create_test_job(db_session, hr)
    create_test_resume(db_session, storage, seeker)

    requests = []
    scoring = build_scoring_service(test_settings, storage, ats_transport(requests))
    ctx = make_context(db_session, seeker, test_settings, storage, scoring)

    application = await logic.apply_to_job(ctx, job.id)
    task = scoring.registry.get(application.id)

    assert task.done
    assert task.outcome.success is False
    assert task.outcome.error == "ATS API URL not configured"
    assert requests == []


# --- Direct calculation ---

@pytest.mark.asyncio
async def test_calculate_without_url_makes_no_call(db_session: Session, scored_setup, test_settings, storage):
    requests = []
    scoring = build_scoring_service(test_settings, storage, ats_transport(requests))
    application = scored_setup["application"]

    outcome = await scoring.calculate(application.id, "Need React+TS dev", scored_setup["resume"].file_path)

    assert outcome.success is False
    assert requests == []
    assert _ats_fields(db_session, application.id) == (None, None, None, None)


@pytest.mark.asyncio
async def test_calculate_sends_resume_as_named_file_part(db_session: Session, scored_setup, ats_settings, storage):
    requests = []
    scoring = build_scoring_service(ats_settings, storage, ats_transport(requests))
    application = scored_setup["application"]

    outcome = await scoring.calculate(application.id, "Need React+TS dev", scored_setup["resume"].file_path)

    assert outcome.success is True
    request = requests[0]
    assert request.method == "POST"
    assert request.headers["content-type"].startswith("multipart/form-data")
    body = request.content
    assert b'name="job_description"' in body
    assert b"Need React+TS dev" in body
    assert b'name="resume_file"; filename="resume.pdf"' in body
    assert b"%PDF-1.4 React TypeScript resume" in body


@pytest.mark.asyncio
async def test_calculate_missing_resume_object_fails(db_session: Session, scored_setup, ats_settings, storage):
    requests = []
    scoring = build_scoring_service(ats_settings, storage, ats_transport(requests))
    application = scored_setup["application"]
    storage.remove([scored_setup["resume"].file_path])

    outcome = await scoring.calculate(application.id, "Need React+TS dev", scored_setup["resume"].file_path)

    assert outcome.success is False
    assert "not found" in outcome.error
    assert requests == []
    assert _ats_fields(db_session, application.id) == (None, None, None, None)


@pytest.mark.asyncio
async def test_calculate_network_error_is_a_failure_outcome(db_session: Session, scored_setup, ats_settings, storage):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    scoring = build_scoring_service(ats_settings, storage, httpx.MockTransport(handler))
    application = scored_setup["application"]

    outcome = await scoring.calculate(application.id, "Need React+TS dev", scored_setup["resume"].file_path)

    assert outcome.success is False
    assert "connection refused" in outcome.error
    assert _ats_fields(db_session, application.id) == (None, None, None, None)


@pytest.mark.asyncio
async def test_calculate_rejects_malformed_body(db_session: Session, scored_setup, ats_settings, storage):
    requests = []
    scoring = build_scoring_service(
        ats_settings, storage, ats_transport(requests, body={"ats_score": 70.0})
    )
    application = scored_setup["application"]

    outcome = await scoring.calculate(application.id, "Need React+TS dev", scored_setup["resume"].file_path)

    assert outcome.success is False
    assert _ats_fields(db_session, application.id) == (None, None, None, None)


@pytest.mark.asyncio
async def test_ats_client_raises_with_status_and_body():
    requests = []
    client = AtsClient(ATS_URL + "/", transport=ats_transport(requests, 422, "no resume_file part"))

    with pytest.raises(AtsRemoteError) as excinfo:
        await client.analyze_resume("Need React+TS dev", b"%PDF")

    assert excinfo.value.response_status == 422
    assert excinfo.value.body == "no resume_file part"
    assert str(requests[0].url) == f"{ATS_URL}/analyze-resume"


# --- Manual scoring over HTTP ---

def test_recruiter_calculates_score(test_client: TestClient, db_session: Session, scored_setup, ats_settings, storage):
    requests = []
    scoring = build_scoring_service(ats_settings, storage, ats_transport(requests))
    app.dependency_overrides[get_scoring_service] = lambda: scoring
    login_as(scored_setup["hr"])
    application_id = scored_setup["application"].id

    listing = test_client.get("/hr/applications")
    assert listing.json()["applications"][0]["can_calculate_ats"] is True

    response = test_client.post(f"/applications/{application_id}/ats-score")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["success"] is True
    assert response.json()["data"]["predicted_category"] == "Software Engineering"

    # Cached recruiter copy was patched with the new score
    listing = test_client.get("/hr/applications")
    card = listing.json()["applications"][0]
    assert card["ats_score"] == 82.5
    assert card["ats_band"] == "high"
    assert card["can_calculate_ats"] is False


def test_applicant_can_score_own_application(test_client: TestClient, db_session: Session, scored_setup, ats_settings, storage):
    scoring = build_scoring_service(ats_settings, storage, ats_transport([]))
    app.dependency_overrides[get_scoring_service] = lambda: scoring
    login_as(scored_setup["seeker"])

    response = test_client.post(f"/applications/{scored_setup['application'].id}/ats-score")

    assert response.status_code == status.HTTP_200_OK
    assert _ats_fields(db_session, scored_setup["application"].id)[0] == 82.5


def test_manual_score_without_url_returns_failure(test_client: TestClient, db_session: Session, scored_setup):
    login_as(scored_setup["hr"])

    response = test_client.post(f"/applications/{scored_setup['application'].id}/ats-score")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json() == {"success": False, "data": None, "error": "ATS API URL not configured"}


def test_other_recruiter_cannot_score(test_client: TestClient, db_session: Session, scored_setup):
    login_as(create_test_profile(db_session, "hr"))

    response = test_client.post(f"/applications/{scored_setup['application'].id}/ats-score")

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["code"] == "FORBIDDEN"


def test_score_requires_resume(test_client: TestClient, db_session: Session):
    hr = create_test_profile(db_session, "hr")
    seeker = create_test_profile(db_session)
    job = create_test_job(db_session, hr)
    application = models.Application(job_id=job.id, user_id=seeker.id, status="pending")
    db_session.add(application)
    db_session.commit()
    login_as(hr)

    response = test_client.post(f"/applications/{application.id}/ats-score")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "No resume found for this applicant"
