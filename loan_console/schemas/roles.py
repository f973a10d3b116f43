from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AdminRole(str, Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    MANAGER = "manager"
    OFFICER = "officer"
    SUB_ADMIN = "sub_admin"
    NBFC_ADMIN = "nbfc_admin"


class SubAdminCategory(str, Enum):
    VERIFY_USER = "verify_user"
    QA_USER = "qa_user"
    ACCOUNT_MANAGER = "account_manager"
    RECOVERY_OFFICER = "recovery_officer"
    DEBT_AGENCY = "debt_agency"
    FOLLOW_UP_USER = "follow_up_user"


@dataclass(frozen=True, slots=True)
class RoleContext:
    """Who is looking at the queue. Fixed for the lifetime of a session."""

    role: str
    sub_admin_category: str | None = None

    @classmethod
    def from_raw(cls, role: str | None, sub_admin_category: str | None = None) -> RoleContext:
        cleaned_role = (role or "").strip().lower() or AdminRole.ADMIN.value
        cleaned_category = (sub_admin_category or "").strip().lower() or None
        return cls(role=cleaned_role, sub_admin_category=cleaned_category)

    @property
    def is_nbfc_admin(self) -> bool:
        return self.role == AdminRole.NBFC_ADMIN.value
