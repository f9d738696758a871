"""HTTP client for the external resume scoring (ATS) service.

The service exposes a single endpoint::

    POST {ATS_API_URL}/analyze-resume
        job_description=<text>
        resume_file=<binary, filename "resume.pdf">

and answers ``{"ats_score": float, "predicted_category": str, "confidence": float}``.
The receiving service only looks at the request's file parts, so the resume
has to be sent with a file name; without one it is treated as a plain field.
"""
from __future__ import annotations

from typing import Optional

import httpx
import structlog
from pydantic import ValidationError

from exceptions import AtsRemoteError
from schemas import AtsResult

logger = structlog.get_logger(__name__)

RESUME_PART_FILENAME = "resume.pdf"


class AtsClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def analyze_url(self) -> str:
        return f"{self.base_url}/analyze-resume"

    async def analyze_resume(
        self,
        job_description: str,
        resume: bytes,
        content_type: str = "application/pdf",
    ) -> AtsResult:
        files = {"resume_file": (RESUME_PART_FILENAME, resume, content_type)}
        data = {"job_description": job_description}

        logger.info("Calling ATS service", url=self.analyze_url, resume_bytes=len(resume))
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.analyze_url, data=data, files=files)
        except httpx.HTTPError as exc:
            raise AtsRemoteError(f"ATS API request failed: {exc}") from exc

        if not response.is_success:
            raise AtsRemoteError(response_status=response.status_code, body=response.text)

        try:
            return AtsResult.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AtsRemoteError(f"ATS API returned an invalid body: {exc}") from exc
