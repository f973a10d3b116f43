from __future__ import annotations

import logging
from dataclasses import dataclass

from loan_console.core.errors import PermissionDenied
from loan_console.schemas.loan import ALL_STATUSES, LoanApplicationStatus
from loan_console.schemas.roles import AdminRole, RoleContext, SubAdminCategory

logger = logging.getLogger(__name__)

S = LoanApplicationStatus

CATEGORY_STATUS_WHITELIST: dict[str, tuple[str, ...]] = {
    SubAdminCategory.VERIFY_USER.value: (
        ALL_STATUSES,
        S.SUBMITTED.value,
        S.UNDER_REVIEW.value,
        S.FOLLOW_UP.value,
        S.DISBURSAL.value,
        S.READY_FOR_DISBURSEMENT.value,
    ),
    SubAdminCategory.QA_USER.value: (
        ALL_STATUSES,
        S.DISBURSAL.value,
        S.READY_FOR_DISBURSEMENT.value,
    ),
    SubAdminCategory.ACCOUNT_MANAGER.value: (
        ALL_STATUSES,
        S.REPEAT_DISBURSAL.value,
        S.READY_TO_REPEAT_DISBURSAL.value,
    ),
    SubAdminCategory.RECOVERY_OFFICER.value: (ALL_STATUSES, S.OVERDUE.value),
    SubAdminCategory.DEBT_AGENCY.value: (ALL_STATUSES, S.OVERDUE.value),
    SubAdminCategory.FOLLOW_UP_USER.value: (S.SUBMITTED.value, S.FOLLOW_UP.value),
}

NBFC_ADMIN_STATUSES: tuple[str, ...] = (
    S.OVERDUE.value,
    S.READY_FOR_DISBURSEMENT.value,
    S.READY_TO_REPEAT_DISBURSAL.value,
)


@dataclass(frozen=True, slots=True)
class StatusVisibility:
    """Statuses a role may filter on.

    ``allowed_statuses`` is ``None`` for unrestricted roles and an ordered
    tuple otherwise. An empty tuple means nothing is visible: the
    ``default_status`` of ``"all"`` is then only a placeholder that
    ``allows`` rejects, and callers check ``nothing_visible`` instead of
    fetching or exporting.
    """

    allowed_statuses: tuple[str, ...] | None
    default_status: str

    @property
    def is_restricted(self) -> bool:
        return self.allowed_statuses is not None

    @property
    def nothing_visible(self) -> bool:
        return self.allowed_statuses == ()

    def allows(self, status_filter: str) -> bool:
        if self.allowed_statuses is None:
            return status_filter == ALL_STATUSES or LoanApplicationStatus.parse(status_filter) is not None
        return status_filter in self.allowed_statuses


@dataclass(frozen=True, slots=True)
class FilterCorrection:
    status_filter: str
    corrected: bool
    previous: str


def _default_for(allowed: tuple[str, ...]) -> str:
    if ALL_STATUSES in allowed:
        return ALL_STATUSES
    if allowed:
        return allowed[0]
    return ALL_STATUSES


def resolve(role_context: RoleContext) -> StatusVisibility:
    if role_context.is_nbfc_admin:
        return StatusVisibility(NBFC_ADMIN_STATUSES, _default_for(NBFC_ADMIN_STATUSES))

    category = role_context.sub_admin_category
    if category is None:
        if role_context.role == AdminRole.SUB_ADMIN.value:
            logger.warning("Sub-admin session without a category; no statuses visible")
            return StatusVisibility((), _default_for(()))
        return StatusVisibility(None, ALL_STATUSES)

    allowed = CATEGORY_STATUS_WHITELIST.get(category)
    if allowed is None:
        logger.warning("Unknown sub-admin category %s; no statuses visible", category)
        allowed = ()
    return StatusVisibility(allowed, _default_for(allowed))


def correct_status_filter(
    current: str | None,
    visibility: StatusVisibility,
    *,
    pinned_status: str | None = None,
) -> FilterCorrection:
    """Bring ``current`` back inside the visible set.

    A pinned status (a page that always shows one status) wins when the role
    can see it; otherwise the role's default replaces any filter it cannot
    see.
    """
    previous = current or ALL_STATUSES
    if pinned_status is not None and visibility.allows(pinned_status):
        return FilterCorrection(pinned_status, pinned_status != previous, previous)
    if visibility.allows(previous):
        return FilterCorrection(previous, False, previous)
    logger.info(
        "Status filter %s not visible; redirecting to %s",
        previous,
        visibility.default_status,
    )
    return FilterCorrection(visibility.default_status, True, previous)


def ensure_visible(status_filter: str, visibility: StatusVisibility) -> str:
    """Strict variant for callers that must not redirect silently."""
    if not visibility.allows(status_filter):
        raise PermissionDenied(
            f"Status '{status_filter}' is not visible for this role",
            details={"allowed_statuses": list(visibility.allowed_statuses or ())},
        )
    return status_filter
