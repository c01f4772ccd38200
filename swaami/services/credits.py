"""Credit ledger: an append-only record of balance changes."""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from swaami.db_models import CreditLedger
from swaami.ids import ledger_id
from swaami.utils import iso


async def record_credit(
    session: AsyncSession,
    profile_id: str,
    amount: int,
    reason: str,
    task_id: str | None = None,
) -> None:
    entry = CreditLedger(
        id=ledger_id(), profile_id=profile_id, amount=amount, reason=reason, task_id=task_id
    )
    session.add(entry)


async def get_ledger(
    session: AsyncSession, profile_id: str, offset: int = 0, limit: int = 50
) -> tuple[list[dict], int]:
    """Return (entries, total_count)."""
    count_result = await session.execute(
        select(func.count()).select_from(CreditLedger).where(CreditLedger.profile_id == profile_id)
    )
    total = count_result.scalar_one()

    result = await session.execute(
        select(CreditLedger)
        .where(CreditLedger.profile_id == profile_id)
        .order_by(CreditLedger.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    entries = [
        {
            "id": r.id,
            "amount": r.amount,
            "reason": r.reason,
            "task_id": r.task_id,
            "created_at": iso(r.created_at),
        }
        for r in result.scalars().all()
    ]
    return entries, total
