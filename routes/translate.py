# User value: This file lets users request an upload slot, start the translation, and poll for the translated file.
import logging

from fastapi import APIRouter, Depends

from routes.deps import get_admission, get_principal
from schemas.principal import Principal
from schemas.requests import ConfirmUploadRequest, UploadUrlRequest
from schemas.responses import ConfirmUploadResponse, JobStatusView, UploadUrlResponse

logger = logging.getLogger("api.translate")

router = APIRouter(prefix="/api/translate", tags=["translate"])


@router.post("/upload-url", response_model=UploadUrlResponse)
def create_upload_url(
    payload: UploadUrlRequest,
    principal: Principal = Depends(get_principal),
    admission=Depends(get_admission),
):
    ticket = admission.request_upload(
        principal,
        filename=payload.filename,
        target_lang=payload.target_lang,
        model=payload.model,
    )
    return UploadUrlResponse(
        upload_url=ticket.upload_url,
        job_id=ticket.job_id,
        file_key=ticket.file_key,
        content_type=ticket.content_type,
        expires_in=ticket.expires_in,
    )


@router.post("/confirm", response_model=ConfirmUploadResponse)
# User value: moves the job into the queue only after the file is really uploaded.
def confirm_upload(
    payload: ConfirmUploadRequest,
    principal: Principal = Depends(get_principal),
    admission=Depends(get_admission),
):
    status = admission.confirm_upload(principal, payload.job_id)
    return ConfirmUploadResponse(status=status)


@router.get("/{job_id}", response_model=JobStatusView)
def get_job_status(
    job_id: str,
    principal: Principal = Depends(get_principal),
    admission=Depends(get_admission),
):
    return admission.get_status(principal, job_id)
