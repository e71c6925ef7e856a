# dependencies.py — FastAPI dependencies for the tenancy core
from typing import Optional

from fastapi import Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy import AuditTrail, QuotaGovernor, Conflict


def get_audit_trail(request: Request) -> AuditTrail:
    return request.app.state.audit_trail


def get_quota_governor(request: Request) -> QuotaGovernor:
    return request.app.state.quota


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def page_window(page: int, limit: int) -> int:
    """Offset for a 1-based page number"""
    return (page - 1) * limit


def pagination(total: int, page: int, limit: int) -> dict:
    return {
        "current_page": page,
        "total_pages": (total + limit - 1) // limit if limit else 0,
        "limit": limit,
    }


async def commit_or_conflict(db: AsyncSession, message: str) -> None:
    """Commit, turning a uniqueness violation into a Conflict"""
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise Conflict(message) from exc
