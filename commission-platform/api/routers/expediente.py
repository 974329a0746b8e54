"""
Expediente API Endpoints.

Document checklist of a sale and recording of uploaded documents.
"""

from uuid import UUID

from fastapi import APIRouter, Depends

from api.dependencies import get_store
from api.errors import raise_http_error
from api.models import (
    ExpedienteItemResponse,
    ExpedienteResponse,
    RecordUploadRequest,
    RequirementStateResponse,
)
from domain.errors import CommissionError
from repositories.commission_store import CommissionStore
from services.expediente_service import get_expediente_status, record_upload

router = APIRouter()


def _to_response(status) -> ExpedienteResponse:
    return ExpedienteResponse(
        sale_id=status.sale_id,
        release_ready=status.release_ready,
        uploaded=status.progress.uploaded,
        total=status.progress.total,
        mandatory_uploaded=status.progress.mandatory_uploaded,
        mandatory_total=status.progress.mandatory_total,
        mandatory_percent=status.progress.mandatory_percent,
        missing_mandatory=status.missing_mandatory,
        requirements=[
            RequirementStateResponse(
                requirement_id=r.requirement_id,
                title=r.title,
                is_mandatory=r.is_mandatory,
                status=r.status,
                item=ExpedienteItemResponse.from_item(r.item) if r.item is not None else None,
            )
            for r in status.requirements
        ],
    )


@router.get(
    "/sales/{sale_id}/expediente",
    response_model=ExpedienteResponse,
    summary="Expediente Status",
    description="Required closing documents of a sale and whether commissions can be released."
)
def get_sale_expediente(sale_id: UUID, store: CommissionStore = Depends(get_store)):
    try:
        return _to_response(get_expediente_status(store, sale_id))
    except CommissionError as e:
        raise_http_error(e)


@router.post(
    "/sales/{sale_id}/expediente/items",
    response_model=ExpedienteResponse,
    summary="Record Uploaded Document",
    description="Attach an already uploaded document to a checklist requirement."
)
def record_expediente_item(
    sale_id: UUID,
    request: RecordUploadRequest,
    store: CommissionStore = Depends(get_store),
):
    """
    Record a document for a requirement.

    The file must match the requirement's allowed extensions and size limit.
    A second upload for the same requirement replaces the first.
    Returns the refreshed checklist.
    """
    try:
        record_upload(
            store,
            sale_id,
            request.requirement_id,
            document_url=request.document_url,
            file_name=request.file_name,
            file_type=request.file_type,
            file_size=request.file_size,
            uploaded_by=request.uploaded_by,
        )
        return _to_response(get_expediente_status(store, sale_id))
    except CommissionError as e:
        raise_http_error(e)
