import asyncio
from functools import lru_cache
from typing import List, Optional, Union

from fastapi import (
    FastAPI,
    Depends,
    HTTPException,
    UploadFile,
    File,
    Query,
    Request,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse
import structlog
from structlog.contextvars import bind_contextvars

import crud
import logic
import schemas
import views
from database import SessionLocal, create_db_and_tables, get_db
from auth import TokenPayload, get_current_user, get_identity, verify_token
from exceptions import JobBoardError
from notifications import ConnectionManager
from scoring import ScoringService
from sessions import SessionRegistry
from settings import get_settings, Settings
from storage import ResumeStorage
from request_id_middleware import RequestIdMiddleware
from observability import init_observability


# Initialise observability before creating app
init_observability()
logger = structlog.get_logger(__name__)

# Create DB tables on startup
create_db_and_tables()

if not get_settings().ats_api_url:
    logger.warning("ATS_API_URL is not set. ATS scoring will not work. Add it to your .env file.")

app = FastAPI(
    title="Job Board",
    description="Backend API for the job board: postings, applications, resumes and ATS scoring",
    version="0.1.0",
)

# --- CORS Middleware ---
origins = [
    "http://localhost",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1",
    "http://127.0.0.1:8000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)

# Templates directory
templates = Jinja2Templates(directory="templates")

session_registry = SessionRegistry()
manager = ConnectionManager()


# --- Shared services (overridable in tests) --- #
def get_storage(settings: Settings = Depends(get_settings)) -> ResumeStorage:
    return ResumeStorage.from_settings(settings)


@lru_cache()
def get_scoring_service() -> ScoringService:
    settings = get_settings()
    return ScoringService(
        settings=settings,
        storage=ResumeStorage.from_settings(settings),
        session_factory=SessionLocal,
        session_registry=session_registry,
        notifier=manager,
    )


def get_context(
    current_user=Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    storage: ResumeStorage = Depends(get_storage),
    scoring: ScoringService = Depends(get_scoring_service),
) -> logic.RequestContext:
    user = schemas.Profile.model_validate(current_user)
    bind_contextvars(user_id=user.id)
    return logic.RequestContext(
        db=db,
        user=user,
        session=session_registry.establish(user.id, user.user_type.value),
        settings=settings,
        storage=storage,
        scoring=scoring,
        notifier=manager,
        sessions=session_registry,
    )


# --- Error handling --- #
@app.exception_handler(JobBoardError)
async def job_board_error_handler(request: Request, exc: JobBoardError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log("Request failed", code=exc.code, detail=exc.message, status_code=exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# --- Root Endpoint --- Serve job board page with Jinja2 Template --- #
@app.get("/", response_class=HTMLResponse)
async def read_root(
    request: Request,
    q: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Render the public job board with an optional search box."""
    jobs = [schemas.Job.model_validate(job) for job in crud.get_jobs(db, (q or "").strip() or None)]
    return templates.TemplateResponse(
        request,
        "index.html",
        {"jobs": jobs, "q": q or ""},
    )


# Add route for favicon.ico
@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Auth / Profile Endpoints ---
@app.post("/auth/register", response_model=schemas.Profile, status_code=status.HTTP_201_CREATED, tags=["Auth"])
def register_endpoint(
    registration: schemas.RegistrationRequest,
    identity: TokenPayload = Depends(get_identity),
    db: Session = Depends(get_db),
):
    return logic.register(db, registration, auth_subject=identity.sub)


@app.post("/auth/sign-out", tags=["Auth"])
def sign_out_endpoint(current_user=Depends(get_current_user)):
    ended = logic.sign_out(session_registry, current_user.id)
    return {"status": "signed_out", "session_ended": ended}


@app.get("/profile", response_model=schemas.Profile, tags=["Profile"])
def get_profile_endpoint(ctx: logic.RequestContext = Depends(get_context)):
    """Returns the authenticated user's profile."""
    return ctx.user


@app.patch("/profile", response_model=schemas.Profile, tags=["Profile"])
def update_profile_endpoint(
    changes: schemas.ProfileUpdate,
    ctx: logic.RequestContext = Depends(get_context),
):
    return logic.update_profile(ctx, changes)


@app.get("/dashboard", response_model=schemas.Dashboard, tags=["Profile"])
def dashboard_endpoint(ctx: logic.RequestContext = Depends(get_context)):
    return logic.dashboard(ctx)


# --- Job Endpoints ---
@app.get("/jobs", response_model=List[schemas.JobCard], tags=["Jobs"])
def list_jobs_endpoint(
    q: Optional[str] = None,
    ctx: logic.RequestContext = Depends(get_context),
):
    return logic.browse_jobs(ctx, q)


@app.get("/jobs/mine", response_model=List[schemas.Job], tags=["Jobs"])
def my_jobs_endpoint(ctx: logic.RequestContext = Depends(get_context)):
    return logic.list_my_jobs(ctx)


@app.get("/jobs/{job_id}", response_model=schemas.Job, tags=["Jobs"])
def get_job_endpoint(job_id: int, ctx: logic.RequestContext = Depends(get_context)):
    return logic.get_job(ctx, job_id)


@app.post("/jobs", response_model=schemas.Job, status_code=status.HTTP_201_CREATED, tags=["Jobs"])
async def create_job_endpoint(
    job: schemas.JobCreate,
    ctx: logic.RequestContext = Depends(get_context),
):
    return await logic.create_job(ctx, job)


# --- Application Endpoints (job seeker) ---
@app.get("/applications", response_model=List[schemas.JobSeekerApplication], tags=["Applications"])
def my_applications_endpoint(ctx: logic.RequestContext = Depends(get_context)):
    return logic.list_my_applications(ctx)


@app.post(
    "/applications",
    response_model=schemas.Application,
    status_code=status.HTTP_201_CREATED,
    tags=["Applications"],
)
async def apply_endpoint(
    application: schemas.ApplicationCreate,
    ctx: logic.RequestContext = Depends(get_context),
):
    return await logic.apply_to_job(ctx, application.job_id, cover_letter=application.cover_letter)


@app.post("/applications/{application_id}/ats-score", response_model=schemas.ScoreOutcome, tags=["ATS"])
async def calculate_ats_endpoint(
    application_id: int,
    ctx: logic.RequestContext = Depends(get_context),
):
    outcome = await logic.calculate_ats_score(ctx, application_id)
    if outcome.success:
        return outcome
    status_code = (
        status.HTTP_502_BAD_GATEWAY if ctx.scoring.configured else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    return JSONResponse(status_code=status_code, content=outcome.model_dump(mode="json"))


# --- Application Endpoints (recruiter) ---
@app.get("/hr/applications", tags=["Recruiter"])
def hr_applications_endpoint(
    status_filter: str = Query(views.ALL, alias="status"),
    job_id: str = views.ALL,
    refresh: bool = False,
    ctx: logic.RequestContext = Depends(get_context),
):
    rows = logic.list_hr_applications(ctx, refresh=refresh)
    filtered = views.filter_applications(rows, status=status_filter, job_id=job_id)
    return {
        "total": len(rows),
        "jobs": views.unique_jobs(rows),
        "applications": [views.hr_application_card(row) for row in filtered],
    }


@app.patch("/hr/applications/{application_id}/status", response_model=schemas.Application, tags=["Recruiter"])
async def update_status_endpoint(
    application_id: int,
    update: schemas.StatusUpdate,
    ctx: logic.RequestContext = Depends(get_context),
):
    return await logic.update_application_status(ctx, application_id, update.status)


@app.get("/hr/applications/{application_id}/resume-url", tags=["Recruiter"])
def resume_url_endpoint(application_id: int, ctx: logic.RequestContext = Depends(get_context)):
    signed = logic.get_resume_download_url(ctx, application_id)
    if signed is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No resume available")
    return signed


# --- Saved Job Endpoints ---
@app.get("/saved-jobs", response_model=List[schemas.SavedJob], tags=["Saved Jobs"])
def saved_jobs_endpoint(ctx: logic.RequestContext = Depends(get_context)):
    return logic.list_saved_jobs(ctx)


@app.post("/saved-jobs", response_model=schemas.SavedJob, status_code=status.HTTP_201_CREATED, tags=["Saved Jobs"])
async def save_job_endpoint(
    saved: schemas.SavedJobCreate,
    ctx: logic.RequestContext = Depends(get_context),
):
    return await logic.save_job(ctx, saved.job_id)


@app.delete("/saved-jobs/{job_id}", tags=["Saved Jobs"])
async def unsave_job_endpoint(job_id: int, ctx: logic.RequestContext = Depends(get_context)):
    removed = await logic.unsave_job(ctx, job_id)
    return {"status": "deleted" if removed else "not_saved", "job_id": job_id}


@app.post("/saved-jobs/{job_id}/toggle", response_model=schemas.SavedJobToggle, tags=["Saved Jobs"])
async def toggle_saved_job_endpoint(job_id: int, ctx: logic.RequestContext = Depends(get_context)):
    return await logic.toggle_saved_job(ctx, job_id)


# --- Resume Endpoints ---
@app.get("/resume", response_model=Optional[schemas.Resume], tags=["Resume"])
def get_resume_endpoint(ctx: logic.RequestContext = Depends(get_context)):
    return logic.get_resume(ctx)


@app.post("/resume", response_model=schemas.Resume, status_code=status.HTTP_201_CREATED, tags=["Resume"])
async def upload_resume_endpoint(
    resume: UploadFile = File(...),
    ctx: logic.RequestContext = Depends(get_context),
):
    data = await resume.read()
    return await logic.upload_resume(ctx, resume.filename or "resume", resume.content_type, data)


@app.delete("/resume", tags=["Resume"])
async def delete_resume_endpoint(ctx: logic.RequestContext = Depends(get_context)):
    await logic.delete_resume(ctx)
    return {"status": "deleted"}


@app.get("/resume/download", tags=["Resume"])
async def download_resume_endpoint(ctx: logic.RequestContext = Depends(get_context)):
    data, file_name, content_type = await logic.download_resume(ctx)
    return Response(
        content=data,
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@app.get("/storage/resumes/download", tags=["Resume"])
async def signed_download_endpoint(token: str, storage: ResumeStorage = Depends(get_storage)):
    """Serve a resume object named by a signed download token."""
    key = storage.resolve_signed_token(token)
    loop = asyncio.get_running_loop()
    data = await loop.run_in_executor(None, storage.download, key)
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{key.rsplit("/", 1)[-1]}"'},
    )


# --- SSE Endpoint --- #
@app.get("/stream-notices")
async def stream_notices(request: Request, token: Union[str, None] = None):
    """Endpoint for Server-Sent Events carrying user notices."""
    if get_settings().auth_enabled and not token:
        logger.warning("SSE 401: No token provided while auth is enabled")
        raise HTTPException(401, "No token provided")

    payload = verify_token(token or "")
    with SessionLocal() as db:
        profile = crud.get_profile_by_subject(db, payload.sub)
        if not profile:
            logger.warning("SSE 401: Unknown profile in token", sub=payload.sub)
            raise HTTPException(401, "Unknown user in token")
        user_id = profile.id
    logger.info("SSE auth ok", user_id=user_id)

    queue = await manager.connect(user_id)

    async def event_generator():
        try:
            while True:
                message_dict = await queue.get()
                if await request.is_disconnected():
                    logger.info("SSE client disconnected before sending", user_id=user_id)
                    break
                yield message_dict
        except asyncio.CancelledError:
            logger.info("SSE connection cancelled", user_id=user_id)
        finally:
            manager.disconnect(user_id)

    return EventSourceResponse(event_generator())


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
