from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import StreamingResponse

from loan_console.api import deps
from loan_console.core.limiter import PAYOUT_RATE_LIMIT, limiter
from loan_console.schemas.payout import BatchSummary, LoanId
from loan_console.schemas.queue import (
    PayoutRequest,
    QueryUpdateRequest,
    QueueSessionCreateRequest,
    QueueSessionResponse,
    SelectionResponse,
    SelectionToggleRequest,
    StatusUpdateRequest,
    StatusUpdateResponse,
    StatusVisibilityResponse,
)
from loan_console.schemas.roles import RoleContext
from loan_console.services import status_visibility
from loan_console.services.application_directory import ApplicationDirectory
from loan_console.services.queue_session import LoanQueueSession, QueueSessionRegistry
from loan_console.services.selection import SelectionChange

router = APIRouter(prefix="/admin/loan-queue", tags=["loan-queue"])


def _session_payload(session: LoanQueueSession) -> QueueSessionResponse:
    return QueueSessionResponse.model_validate(session.snapshot())


def _selection_payload(change: SelectionChange) -> SelectionResponse:
    return SelectionResponse(
        selected_ids=list(change.selected_ids),
        changed=change.changed,
        warning=change.warning,
        severity="warning" if change.warning else "info",
    )


@router.get(
    "/visibility",
    response_model=StatusVisibilityResponse,
    summary="Statuses the caller may filter on",
)
async def get_visibility(
    role_context: RoleContext = Depends(deps.get_role_context),
) -> StatusVisibilityResponse:
    visibility = status_visibility.resolve(role_context)
    return StatusVisibilityResponse(
        role=role_context.role,
        sub_admin_category=role_context.sub_admin_category,
        allowed_statuses=(
            list(visibility.allowed_statuses) if visibility.allowed_statuses is not None else None
        ),
        default_status=visibility.default_status,
        restricted=visibility.is_restricted,
        nothing_visible=visibility.nothing_visible,
    )


@router.post(
    "/sessions",
    response_model=QueueSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a queue session and load its first page",
)
async def open_session(
    payload: QueueSessionCreateRequest,
    role_context: RoleContext = Depends(deps.get_role_context),
    registry: QueueSessionRegistry = Depends(deps.get_registry),
    directory: ApplicationDirectory = Depends(deps.get_directory),
) -> QueueSessionResponse:
    session = await registry.open(role_context, directory, pinned_status=payload.pinned_status)
    await session.refresh()
    await session.refresh_stats()
    return _session_payload(session)


@router.get(
    "/sessions/{session_id}",
    response_model=QueueSessionResponse,
    summary="Current query, rows, and selection",
)
async def get_session(
    session: LoanQueueSession = Depends(deps.get_queue_session),
) -> QueueSessionResponse:
    return _session_payload(session)


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close a queue session",
)
async def close_session(
    session: LoanQueueSession = Depends(deps.get_queue_session),
    registry: QueueSessionRegistry = Depends(deps.get_registry),
) -> Response:
    await registry.close(session.session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/sessions/{session_id}/query",
    response_model=QueueSessionResponse,
    summary="Change filter, search, sort, or page",
)
async def update_query(
    payload: QueryUpdateRequest,
    session: LoanQueueSession = Depends(deps.get_queue_session),
) -> QueueSessionResponse:
    if payload.status is not None:
        await session.set_status(payload.status)
    if payload.sort_field is not None:
        await session.set_sort(payload.sort_field)
    if payload.page_size is not None:
        await session.set_page_size(payload.page_size)
    if payload.search is not None:
        if payload.debounce_search:
            session.type_search(payload.search)
        else:
            await session.commit_search(payload.search)
    if payload.page is not None:
        await session.set_page(payload.page)
    return _session_payload(session)


@router.post(
    "/sessions/{session_id}/refresh",
    response_model=QueueSessionResponse,
    summary="Re-fetch the current page and tab counters",
)
async def refresh_session(
    session: LoanQueueSession = Depends(deps.get_queue_session),
) -> QueueSessionResponse:
    await session.refresh()
    await session.refresh_stats()
    return _session_payload(session)


@router.post(
    "/sessions/{session_id}/selection/toggle",
    response_model=SelectionResponse,
    summary="Check or uncheck one application",
)
async def toggle_selection(
    payload: SelectionToggleRequest,
    session: LoanQueueSession = Depends(deps.get_queue_session),
) -> SelectionResponse:
    return _selection_payload(session.toggle(payload.id))


@router.post(
    "/sessions/{session_id}/selection/select-all",
    response_model=SelectionResponse,
    summary="Select (or unselect) every eligible row on the current page",
)
async def select_all(
    session: LoanQueueSession = Depends(deps.get_queue_session),
) -> SelectionResponse:
    return _selection_payload(session.select_all_eligible())


@router.post(
    "/sessions/{session_id}/selection/clear",
    response_model=SelectionResponse,
    summary="Clear the selection",
)
async def clear_selection(
    session: LoanQueueSession = Depends(deps.get_queue_session),
) -> SelectionResponse:
    return _selection_payload(session.clear_selection())


@router.post(
    "/sessions/{session_id}/payouts",
    response_model=BatchSummary,
    summary="Disburse every selected loan, one at a time",
)
@limiter.limit(PAYOUT_RATE_LIMIT)
async def run_payouts(
    request: Request,
    payload: PayoutRequest,
    session: LoanQueueSession = Depends(deps.get_queue_session),
) -> BatchSummary:
    return await session.run_payouts(confirmed=payload.confirm)


@router.get(
    "/sessions/{session_id}/export",
    response_class=StreamingResponse,
    summary="Export applications for the current status filter",
)
async def export_applications(
    fmt: str = Query(default="csv", alias="format", pattern="^(csv|excel)$"),
    session: LoanQueueSession = Depends(deps.get_queue_session),
) -> StreamingResponse:
    status_visibility.ensure_visible(session.state.status_filter, session.visibility)
    exported = await session.export(fmt)
    return StreamingResponse(
        iter([exported.content]),
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )


@router.put(
    "/sessions/{session_id}/applications/{loan_id}/status",
    response_model=StatusUpdateResponse,
    summary="Move one application to another status",
)
async def update_application_status(
    loan_id: str,
    payload: StatusUpdateRequest,
    session: LoanQueueSession = Depends(deps.get_queue_session),
) -> StatusUpdateResponse:
    target: LoanId = int(loan_id) if loan_id.isdigit() else loan_id
    data = await session.update_status(target, payload.status, payload.reason)
    return StatusUpdateResponse(id=target, status=payload.status, data=data)
