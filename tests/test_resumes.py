import pytest
from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import crud
import logic
import models
from conftest import create_test_profile, create_test_resume, login_as, make_context
from exceptions import FileTooLarge, InvalidFileType, StorageError
from storage import ResumeStorage

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class FailingRemoveStorage(ResumeStorage):
    """Storage whose deletes always fail, as when the bucket refuses the request."""

    def remove(self, keys):
        raise StorageError("delete refused")


class FlakyRemoveStorage(ResumeStorage):
    """Storage that refuses the first delete and accepts the rest."""

    refusals = 1

    def remove(self, keys):
        if self.refusals:
            self.refusals -= 1
            raise StorageError("delete refused")
        return super().remove(keys)


def _resume_count(db: Session, user_id: int) -> int:
    db.expire_all()
    return db.query(models.Resume).filter(models.Resume.user_id == user_id).count()


def _stored_objects(storage: ResumeStorage):
    if not storage.root.exists():
        return []
    return sorted(str(path.relative_to(storage.root)) for path in storage.root.rglob("*") if path.is_file())


# --- Validation happens before storage ---

def test_upload_rejects_unsupported_type(test_client: TestClient, db_session: Session, storage):
    seeker = create_test_profile(db_session)
    login_as(seeker)

    response = test_client.post("/resume", files={"resume": ("notes.txt", b"plain text", "text/plain")})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"detail": "Please upload a PDF, DOC, or DOCX file", "code": "INVALID_FILE_TYPE"}
    assert _stored_objects(storage) == []
    assert _resume_count(db_session, seeker.id) == 0


def test_upload_rejects_oversized_file(test_client: TestClient, db_session: Session, storage, test_settings):
    from main import app, get_settings

    small = test_settings.model_copy(update={"max_resume_bytes": 16})
    app.dependency_overrides[get_settings] = lambda: small
    seeker = create_test_profile(db_session)
    login_as(seeker)

    response = test_client.post("/resume", files={"resume": ("cv.pdf", b"x" * 17, PDF)})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["code"] == "FILE_TOO_LARGE"
    assert _stored_objects(storage) == []


def test_validate_resume_file_limits():
    ten_mib = 10 * 1024 * 1024

    assert logic.validate_resume_file(PDF, ten_mib, ten_mib) == "pdf"
    assert logic.validate_resume_file("application/msword", 10, ten_mib) == "doc"
    assert logic.validate_resume_file(DOCX, 10, ten_mib) == "docx"
    with pytest.raises(FileTooLarge):
        logic.validate_resume_file(PDF, ten_mib + 1, ten_mib)
    with pytest.raises(InvalidFileType):
        logic.validate_resume_file(None, 10, ten_mib)
    # Type is checked before size
    with pytest.raises(InvalidFileType):
        logic.validate_resume_file("image/png", ten_mib + 1, ten_mib)


# --- Upload, replace, delete ---

def test_upload_stores_object_and_record(test_client: TestClient, db_session: Session, storage):
    seeker = create_test_profile(db_session)
    login_as(seeker)

    response = test_client.post("/resume", files={"resume": ("My CV.pdf", b"%PDF first", PDF)})

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["file_name"] == "My CV.pdf"
    assert data["content_type"] == PDF
    assert data["file_path"].startswith(f"{seeker.id}/")
    assert data["file_path"].endswith(".pdf")
    assert storage.download(data["file_path"]) == b"%PDF first"
    assert test_client.get("/resume").json()["id"] == data["id"]


def test_replacing_resume_leaves_single_record(test_client: TestClient, db_session: Session, storage):
    seeker = create_test_profile(db_session)
    login_as(seeker)

    first = test_client.post("/resume", files={"resume": ("old.pdf", b"%PDF old", PDF)}).json()
    second = test_client.post("/resume", files={"resume": ("new.docx", b"PK new", DOCX)}).json()

    assert _resume_count(db_session, seeker.id) == 1
    latest = crud.get_latest_resume(db_session, seeker.id)
    assert latest.id == second["id"]
    assert latest.file_path.endswith(".docx")
    assert not storage.exists(first["file_path"])
    assert test_client.get("/resume").json()["file_name"] == "new.docx"


@pytest.mark.asyncio
async def test_replace_tolerates_failed_delete_of_old_file(db_session: Session, test_settings, scoring_service):
    failing = FailingRemoveStorage(test_settings.storage_dir, "test-signing-key", "http://testserver")
    seeker = create_test_profile(db_session)
    old = create_test_resume(db_session, failing, seeker, content=b"%PDF old")
    ctx = make_context(db_session, seeker, test_settings, failing, scoring_service)

    uploaded = await logic.upload_resume(ctx, "new.pdf", PDF, b"%PDF new")

    latest = crud.get_latest_resume(db_session, seeker.id)
    assert latest.id == uploaded.id
    assert failing.download(uploaded.file_path) == b"%PDF new"
    # Only the storage object is orphaned; the old record is gone
    assert failing.exists(old.file_path)
    assert _resume_count(db_session, seeker.id) == 1


@pytest.mark.asyncio
async def test_delete_after_replace_with_failed_cleanup_removes_everything(
    db_session: Session, test_settings, scoring_service
):
    flaky = FlakyRemoveStorage(test_settings.storage_dir, "test-signing-key", "http://testserver")
    seeker = create_test_profile(db_session)
    create_test_resume(db_session, flaky, seeker, content=b"%PDF old")
    ctx = make_context(db_session, seeker, test_settings, flaky, scoring_service)

    uploaded = await logic.upload_resume(ctx, "new.pdf", PDF, b"%PDF new")
    await logic.delete_resume(ctx)

    assert not flaky.exists(uploaded.file_path)
    assert crud.get_latest_resume(db_session, seeker.id) is None
    assert _resume_count(db_session, seeker.id) == 0


def test_delete_resume(test_client: TestClient, db_session: Session, storage):
    seeker = create_test_profile(db_session)
    resume = create_test_resume(db_session, storage, seeker)
    login_as(seeker)

    response = test_client.delete("/resume")

    assert response.status_code == status.HTTP_200_OK
    assert not storage.exists(resume.file_path)
    assert crud.get_latest_resume(db_session, seeker.id) is None
    assert test_client.get("/resume").json() is None


def test_delete_without_resume(test_client: TestClient, db_session: Session):
    login_as(create_test_profile(db_session))

    response = test_client.delete("/resume")

    assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_delete_fails_when_storage_refuses(db_session: Session, test_settings, scoring_service):
    failing = FailingRemoveStorage(test_settings.storage_dir, "test-signing-key", "http://testserver")
    seeker = create_test_profile(db_session)
    resume = create_test_resume(db_session, failing, seeker)
    ctx = make_context(db_session, seeker, test_settings, failing, scoring_service)

    with pytest.raises(StorageError):
        await logic.delete_resume(ctx)

    assert crud.get_latest_resume(db_session, seeker.id).id == resume.id


# --- Downloads ---

def test_download_own_resume(test_client: TestClient, db_session: Session, storage):
    seeker = create_test_profile(db_session)
    create_test_resume(db_session, storage, seeker, content=b"%PDF mine")
    login_as(seeker)

    response = test_client.get("/resume/download")

    assert response.status_code == status.HTTP_200_OK
    assert response.content == b"%PDF mine"
    assert response.headers["content-type"] == PDF
    assert 'filename="resume.pdf"' in response.headers["content-disposition"]


def test_signed_download_rejects_bad_token(test_client: TestClient):
    response = test_client.get("/storage/resumes/download", params={"token": "not-a-token"})

    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_signed_download_rejects_expired_token(test_client: TestClient, db_session: Session, storage):
    seeker = create_test_profile(db_session)
    resume = create_test_resume(db_session, storage, seeker)
    url = storage.create_signed_url(resume.file_path, expires_in=-60)

    response = test_client.get(url)

    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_storage_rejects_path_traversal(storage):
    with pytest.raises(StorageError):
        storage.upload("../escape.pdf", b"x")
    with pytest.raises(StorageError):
        storage.download("/etc/passwd")


def test_storage_refuses_to_overwrite(storage):
    storage.upload("1/cv.pdf", b"first")

    with pytest.raises(StorageError):
        storage.upload("1/cv.pdf", b"second")

    assert storage.download("1/cv.pdf") == b"first"
