from fastapi import APIRouter, Depends, Request

from server.dependencies.session import get_session
from server.models.responses import ActionResponse, DocumentDetailResponse, UrlResponse
from services.documents.DocumentService import DocumentService
from shared.models.session import AppSession

router = APIRouter(prefix="/documents", tags=["documents"])


def _build_service(request: Request, session: AppSession) -> DocumentService:
    return DocumentService(
        helper_config=request.app.state.helper_config,
        backend_client=request.app.state.backend_client,
        session=session,
        live_view=request.app.state.registry.get_open_view(session.org_id),
    )


@router.get("/{document_id}")
async def get_document(
    request: Request,
    document_id: str,
    part_id: str | None = None,
    session: AppSession = Depends(get_session),
) -> DocumentDetailResponse:
    """Document detail: the document, its parts, the selected part and a signed URL of its render.

    Args:
        request (Request): FastAPI request.
        document_id (str): Id of the document.
        part_id (str | None): Part to preselect; falls back to the first part.
        session (AppSession): The verified caller.

    Returns:
        DocumentDetailResponse: The detail; ``error`` is set when the parts could not be loaded.
    """
    service = _build_service(request, session)
    detail = await service.do_fetch_with_parts(document_id, part_id=part_id)
    return DocumentDetailResponse(
        document=detail.document,
        parts=detail.parts,
        selected_part_id=detail.selected_part_id,
        render_url=await service.do_get_part_render_url(detail.get_selected_part()),
        error=detail.parts_error,
    )


@router.delete("/{document_id}")
async def delete_document(request: Request, document_id: str, session: AppSession = Depends(get_session)) -> ActionResponse:
    """Delete a document; its parts disappear from the organization's live list at once.

    Args:
        request (Request): FastAPI request (provides app.state.registry).
        document_id (str): Id of the document to delete.
        session (AppSession): The verified caller.

    Returns:
        ActionResponse: Acknowledgement.
    """
    await _build_service(request, session).do_delete(document_id)
    return ActionResponse()


@router.post("/{document_id}/rerun")
async def rerun_document(request: Request, document_id: str, session: AppSession = Depends(get_session)) -> ActionResponse:
    await _build_service(request, session).do_rerun(document_id)
    return ActionResponse()


@router.get("/{document_id}/download-url")
async def get_download_url(request: Request, document_id: str, session: AppSession = Depends(get_session)) -> UrlResponse:
    """Short-lived signed URL of the original file."""
    service = _build_service(request, session)
    document = await service.do_fetch(document_id)
    return UrlResponse(url=await service.do_get_download_url(document))
