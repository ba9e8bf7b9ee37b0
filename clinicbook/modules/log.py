from __future__ import annotations

import datetime as dt
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.modules.users.models import AuditLog

AUDIT_ACTIONS = frozenset(
    {
        "CREATE_APPOINTMENT",
        "CONFIRM_APPOINTMENT",
        "RESEND_CONFIRMATION_CODE",
        "CANCEL_APPOINTMENT",
        "RESCHEDULE_APPOINTMENT",
        "PATCH_APPOINTMENT",
        "REPLACE_SCHEDULE",
        "REPLACE_AVAILABILITIES",
        "DELETE_AVAILABILITY",
    }
)


def _render(value: Any) -> str:
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(_render(v) for v in value)
    return str(value)


def format_details(**fields: Any) -> Optional[str]:
    """
    `key=value` pairs in call order; None values are left out.
    Confirmation codes never belong here.
    """
    parts = [f"{key}={_render(value)}" for key, value in fields.items() if value is not None]
    return " ".join(parts) or None


async def write_audit_log(
    session: AsyncSession,
    user_id: UUID | None,
    action: str,
    **fields: Any,
) -> None:
    """
    Write an audit log entry in the caller's transaction; it commits or rolls
    back together with the change it describes.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action {action!r}")
    await session.execute(
        insert(AuditLog).values(
            user_id=user_id,
            action=action,
            details=format_details(**fields),
        )
    )
