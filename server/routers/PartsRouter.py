from fastapi import APIRouter, Depends, HTTPException, Request

from server.dependencies.session import get_session
from server.models.requests import (
    AddToProjectRequest,
    BulkFavoriteRequest,
    BulkPartUpdateRequest,
    PartUpdateRequest,
    SelectionRequest,
)
from server.models.responses import (
    ActionResponse,
    AddToProjectResponse,
    FavoriteResponse,
    PartsListResponse,
    SelectionResponse,
)
from services.part_actions.FavoritesService import FavoritesService
from services.part_actions.PartMutationService import PartMutationService
from services.part_actions.PartsListActions import PartsListActions
from services.parts_live_view.PartsLiveView import PartsLiveView
from services.parts_manager.PartsManager import PartsManager
from services.projects.ProjectPartsService import ProjectPartsService
from shared.models.session import AppSession

router = APIRouter(prefix="/parts", tags=["parts"])


##########################################
################ HELPERS #################
##########################################

async def _build_actions(request: Request, session: AppSession, view: PartsLiveView) -> PartsListActions:
    helper_config = request.app.state.helper_config
    backend = request.app.state.backend_client
    favorites = FavoritesService(helper_config, backend, session)
    await favorites.do_load()
    return PartsListActions(
        favorites=favorites,
        mutations=PartMutationService(helper_config, backend, view, session),
        project_parts=ProjectPartsService(helper_config, backend, session),
    )


async def _build_list_response(request: Request, session: AppSession, view: PartsLiveView) -> PartsListResponse:
    favorites = FavoritesService(request.app.state.helper_config, request.app.state.backend_client, session)
    favorite_ids = await favorites.do_load()
    manager = PartsManager.from_query_params(request.query_params)
    all_parts = view.get_parts()
    parts = manager.apply(all_parts, favorite_ids)
    selection = request.app.state.registry.get_selection(session)
    return PartsListResponse(
        parts=parts,
        total=len(parts),
        query_string=manager.to_query_string(),
        companies=PartsManager.unique_companies(all_parts),
        favorite_ids=sorted(favorite_ids),
        selected_ids=sorted(selection.selected_ids),
        loading=view.loading or view.loading_more,
        has_more=view.has_more,
        error=view.error or favorites.error,
    )


def _raise_on_error(error: str | None) -> ActionResponse:
    if error:
        raise HTTPException(status_code=502, detail=error)
    return ActionResponse()


##########################################
################# LIST ###################
##########################################

@router.get("")
async def list_parts(request: Request, session: AppSession = Depends(get_session)) -> PartsListResponse:
    """Return the live parts list of the organization, filtered and sorted by the query string.

    Args:
        request (Request): FastAPI request; its query string carries the filter/sort state
            (``time``, ``cx``, ``wf``, ``prio``, ``co``, ``fav``, ``sort``, ``dir``).
        session (AppSession): The verified caller.

    Returns:
        PartsListResponse: Filtered parts plus the canonical query string of the applied state.
    """
    view = await request.app.state.registry.do_get_view(session.org_id)
    return await _build_list_response(request, session, view)


@router.post("/load-more")
async def load_more_parts(request: Request, session: AppSession = Depends(get_session)) -> PartsListResponse:
    view = await request.app.state.registry.do_get_view(session.org_id)
    await view.do_load_more()
    return await _build_list_response(request, session, view)


##########################################
################ ACTIONS #################
##########################################

@router.patch("/{part_id}")
async def update_part(
    request: Request,
    part_id: str,
    body: PartUpdateRequest,
    session: AppSession = Depends(get_session),
) -> ActionResponse:
    """Change workflow status and/or priority of one part.

    Raises:
        HTTPException: 404 if the part is not in the live list, 502 if persisting failed
            (the part has been rolled back).
    """
    view = await request.app.state.registry.do_get_view(session.org_id)
    part = view.get_part(part_id)
    if part is None:
        raise HTTPException(status_code=404, detail=f"Part {part_id} not found")
    actions = await _build_actions(request, session, view)
    if body.workflow_status is not None:
        await actions.do_change_workflow_status(part, body.workflow_status)
        _raise_on_error(actions.error)
    if body.priority is not None:
        await actions.do_change_priority(part, body.priority)
        _raise_on_error(actions.error)
    return ActionResponse()


@router.post("/bulk")
async def bulk_update_parts(request: Request, body: BulkPartUpdateRequest, session: AppSession = Depends(get_session)) -> ActionResponse:
    view = await request.app.state.registry.do_get_view(session.org_id)
    actions = await _build_actions(request, session, view)
    if body.workflow_status is not None:
        await actions.do_bulk_set_status(body.part_ids, body.workflow_status)
        _raise_on_error(actions.error)
    if body.priority is not None:
        await actions.do_bulk_set_priority(body.part_ids, body.priority)
        _raise_on_error(actions.error)
    return ActionResponse()


@router.post("/{part_id}/favorite")
async def toggle_favorite(request: Request, part_id: str, session: AppSession = Depends(get_session)) -> FavoriteResponse:
    view = await request.app.state.registry.do_get_view(session.org_id)
    part = view.get_part(part_id)
    if part is None:
        raise HTTPException(status_code=404, detail=f"Part {part_id} not found")
    actions = await _build_actions(request, session, view)
    favorite = await actions.do_toggle_favorite(part)
    _raise_on_error(actions.error)
    return FavoriteResponse(part_id=part_id, favorite=favorite)


@router.post("/favorites/bulk")
async def bulk_set_favorite(request: Request, body: BulkFavoriteRequest, session: AppSession = Depends(get_session)) -> ActionResponse:
    view = await request.app.state.registry.do_get_view(session.org_id)
    actions = await _build_actions(request, session, view)
    await actions.do_bulk_toggle_favorite(body.part_ids, body.favorite)
    return _raise_on_error(actions.error)


@router.post("/add-to-project")
async def add_to_project(request: Request, body: AddToProjectRequest, session: AppSession = Depends(get_session)) -> AddToProjectResponse:
    """Link parts to a project; parts that are already linked are skipped."""
    view = await request.app.state.registry.do_get_view(session.org_id)
    actions = await _build_actions(request, session, view)
    added = await actions.do_add_to_project(body.project_id, body.part_ids)
    return AddToProjectResponse(added=added, error=actions.error)


##########################################
############### SELECTION ################
##########################################

@router.post("/selection/{part_id}/toggle")
async def toggle_selection(request: Request, part_id: str, session: AppSession = Depends(get_session)) -> SelectionResponse:
    selection = request.app.state.registry.get_selection(session)
    selection.toggle_select(part_id)
    return SelectionResponse(selected_ids=sorted(selection.selected_ids))


@router.post("/selection/toggle-all")
async def toggle_selection_all(request: Request, body: SelectionRequest, session: AppSession = Depends(get_session)) -> SelectionResponse:
    """Select all given (visible) parts, or unselect them when all are already selected."""
    selection = request.app.state.registry.get_selection(session)
    selection.toggle_select_all(body.part_ids)
    return SelectionResponse(selected_ids=sorted(selection.selected_ids))


@router.delete("/selection")
async def clear_selection(request: Request, session: AppSession = Depends(get_session)) -> SelectionResponse:
    selection = request.app.state.registry.get_selection(session)
    selection.clear_selection()
    return SelectionResponse(selected_ids=[])
