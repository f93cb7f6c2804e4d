from __future__ import annotations

from fastapi import APIRouter, File, Form, Query, Request, Response, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from asbuilt_router.errors import SubmissionValidationError
from asbuilt_router.schemas import (
    AnalyticsResponse,
    ClassifyPagesResponse,
    ErrorEnvelope,
    RetryResponse,
    SubmissionDraft,
    SubmissionMetadata,
    SubmissionStatusResponse,
    SubmitAcceptedResponse,
    ValidationContext,
    ValidationRequest,
    ValidationResult,
)
from asbuilt_router.services.analytics import DEFAULT_ANALYTICS_DAYS
from asbuilt_router.services.submission_service import SubmissionPackage, SubmissionService


def build_submissions_router(
    *,
    service: SubmissionService,
    upload_max_bytes: int = 50 * 1024 * 1024,
) -> APIRouter:
    router = APIRouter(prefix="/api/asbuilt", tags=["asbuilt"])

    def _error_response(
        *,
        status_code: int,
        trace_id: str,
        code: str,
        message: str,
        policy_reason: str | None = None,
    ) -> JSONResponse:
        payload = ErrorEnvelope(
            error={
                "code": code,
                "message": message,
                "trace_id": trace_id,
                "policy_reason": policy_reason,
            }
        )
        return JSONResponse(
            status_code=status_code,
            content=payload.model_dump(mode="json"),
            headers={"x-trace-id": trace_id},
        )

    async def _read_upload(upload: UploadFile) -> bytes | None:
        # One byte past the limit marks the payload as oversize.
        payload_bytes = await upload.read(upload_max_bytes + 1)
        if len(payload_bytes) > upload_max_bytes:
            return None
        return payload_bytes

    @router.post("/validate", response_model=ValidationResult)
    async def validate_submission(
        payload: ValidationRequest,
        request: Request,
        response: Response,
    ) -> ValidationResult:
        response.headers["x-trace-id"] = getattr(request.state, "trace_id", "")
        return await run_in_threadpool(service.validate, payload.draft, payload.context)

    @router.post("/submissions", status_code=202, response_model=SubmitAcceptedResponse)
    async def create_submission(
        request: Request,
        response: Response,
        company_id: str = Form(...),
        utility_code: str = Form(...),
        file: UploadFile = File(...),
        job_id: str | None = Form(default=None),
        work_type: str | None = Form(default=None),
        submitted_by: str | None = Form(default=None),
        pm_number: str | None = Form(default=None),
        job_number: str | None = Form(default=None),
        work_order_number: str | None = Form(default=None),
        notification_number: str | None = Form(default=None),
        circuit_id: str | None = Form(default=None),
        job_type: str | None = Form(default=None),
        work_category: str | None = Form(default=None),
        work_date: str | None = Form(default=None),
        draft: str | None = Form(default=None),
        context: str | None = Form(default=None),
    ) -> SubmitAcceptedResponse | JSONResponse:
        trace_id = getattr(request.state, "trace_id", "")
        response.headers["x-trace-id"] = trace_id

        if not company_id.strip() or not utility_code.strip():
            return _error_response(
                status_code=422,
                trace_id=trace_id,
                code="VALIDATION_ERROR",
                message="company_id and utility_code are required",
                policy_reason="submission_identity_missing",
            )

        parsed_draft: SubmissionDraft | None = None
        parsed_context: ValidationContext | None = None
        try:
            if draft and draft.strip():
                parsed_draft = SubmissionDraft.model_validate_json(draft)
            if context and context.strip():
                parsed_context = ValidationContext.model_validate_json(context)
        except ValidationError:
            return _error_response(
                status_code=422,
                trace_id=trace_id,
                code="VALIDATION_ERROR",
                message="Draft payload is not valid JSON for a submission draft",
                policy_reason="submission_draft_invalid",
            )

        payload_bytes = await _read_upload(file)
        if payload_bytes is None:
            return _error_response(
                status_code=413,
                trace_id=trace_id,
                code="UPLOAD_TOO_LARGE",
                message="Uploaded job package exceeds configured maximum size",
                policy_reason="upload_size_exceeded",
            )

        package = SubmissionPackage(
            company_id=company_id.strip(),
            utility_code=utility_code,
            payload_bytes=payload_bytes,
            filename=file.filename or "job-package.pdf",
            submitted_by=submitted_by,
            job_id=job_id,
            work_type=work_type,
            metadata=SubmissionMetadata(
                pm_number=pm_number,
                job_number=job_number,
                work_order_number=work_order_number,
                notification_number=notification_number,
                circuit_id=circuit_id,
                job_type=job_type,
                work_category=work_category,
                work_date=work_date,
            ),
            draft=parsed_draft,
            validation_context=parsed_context,
        )
        try:
            handle = await run_in_threadpool(service.submit, package)
        except SubmissionValidationError as exc:
            first_error = exc.validation.errors[0].code if exc.validation.errors else None
            return _error_response(
                status_code=exc.status_code,
                trace_id=trace_id,
                code=exc.code,
                message=f"{exc.message} (score {exc.validation.score})",
                policy_reason=first_error,
            )

        return SubmitAcceptedResponse(
            submission_id=handle.submission.submission_id,
            status=handle.submission.status,
            validation_score=handle.validation.score if handle.validation else None,
            warnings=handle.validation.warnings if handle.validation else [],
        )

    @router.get("/submissions/{submission_id}", response_model=SubmissionStatusResponse)
    async def get_submission_status(
        submission_id: str,
        request: Request,
        response: Response,
    ) -> SubmissionStatusResponse:
        response.headers["x-trace-id"] = getattr(request.state, "trace_id", "")
        return await run_in_threadpool(service.get_status, submission_id)

    @router.post("/submissions/{submission_id}/retry", response_model=RetryResponse)
    async def retry_submission(
        submission_id: str,
        request: Request,
        response: Response,
    ) -> RetryResponse:
        response.headers["x-trace-id"] = getattr(request.state, "trace_id", "")
        return await run_in_threadpool(service.retry, submission_id)

    @router.get("/analytics", response_model=AnalyticsResponse)
    async def get_analytics(
        request: Request,
        response: Response,
        company_id: str = Query(..., min_length=1),
        days: int = Query(default=DEFAULT_ANALYTICS_DAYS, ge=1, le=365),
    ) -> AnalyticsResponse:
        response.headers["x-trace-id"] = getattr(request.state, "trace_id", "")
        return await run_in_threadpool(service.analytics, company_id=company_id, days=days)

    @router.post("/classify-pages", response_model=ClassifyPagesResponse)
    async def classify_package_pages(
        request: Request,
        response: Response,
        utility_code: str = Form(...),
        file: UploadFile = File(...),
    ) -> ClassifyPagesResponse | JSONResponse:
        trace_id = getattr(request.state, "trace_id", "")
        response.headers["x-trace-id"] = trace_id

        payload_bytes = await _read_upload(file)
        if payload_bytes is None:
            return _error_response(
                status_code=413,
                trace_id=trace_id,
                code="UPLOAD_TOO_LARGE",
                message="Uploaded job package exceeds configured maximum size",
                policy_reason="upload_size_exceeded",
            )
        return await run_in_threadpool(
            service.classify_pages,
            utility_code=utility_code,
            payload_bytes=payload_bytes,
        )

    return router


__all__ = ["build_submissions_router"]
