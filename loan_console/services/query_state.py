from __future__ import annotations

from loan_console.core.errors import ValidationError
from loan_console.core.settings import settings
from loan_console.schemas.loan import ALL_STATUSES, QueryState, SortField, SortOrder


def initial_state(
    *,
    status_filter: str = ALL_STATUSES,
    page_size: int | None = None,
) -> QueryState:
    return QueryState(
        page=1,
        page_size=_checked_page_size(page_size or settings.default_page_size),
        status_filter=status_filter,
    )


def _checked_page_size(page_size: int) -> int:
    if page_size < 1 or page_size > settings.max_page_size:
        raise ValidationError(
            f"Page size must be between 1 and {settings.max_page_size}",
            details={"page_size": page_size},
        )
    return page_size


def _parse_sort_field(field: str | SortField) -> SortField:
    try:
        return SortField(field)
    except ValueError as exc:
        raise ValidationError(
            f"Unsupported sort field: {field}",
            details={"allowed": [item.value for item in SortField]},
        ) from exc


def set_status(state: QueryState, status_filter: str) -> QueryState:
    return state.model_copy(update={"status_filter": status_filter, "page": 1})


def set_search(state: QueryState, search_term: str) -> QueryState:
    return state.model_copy(update={"search_term": search_term.strip(), "page": 1})


def set_sort(state: QueryState, field: str | SortField) -> QueryState:
    sort_field = _parse_sort_field(field)
    if sort_field == state.sort_field:
        return state.model_copy(update={"sort_order": state.sort_order.toggled(), "page": 1})
    return state.model_copy(
        update={"sort_field": sort_field, "sort_order": SortOrder.ASC, "page": 1}
    )


def set_page(state: QueryState, page: int) -> QueryState:
    if page < 1:
        raise ValidationError("Page must be 1 or greater", details={"page": page})
    return state.model_copy(update={"page": page})


def set_page_size(state: QueryState, page_size: int) -> QueryState:
    return state.model_copy(update={"page_size": _checked_page_size(page_size), "page": 1})


def to_request_params(state: QueryState) -> dict[str, str | int]:
    """Query string for the listing endpoint."""
    return {
        "page": state.page,
        "limit": state.page_size,
        "status": state.status_filter,
        "search": state.search_term,
        "sortBy": state.sort_field.value,
        "sortOrder": state.sort_order.value,
    }


def clamp_page(state: QueryState, total_pages: int) -> QueryState:
    """Pull ``page`` back when the result set shrank below it."""
    last_page = max(total_pages, 1)
    if state.page <= last_page:
        return state
    return state.model_copy(update={"page": last_page})
