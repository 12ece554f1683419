"""Session-aware dependencies for account-scoped APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from trendle_api.db.session import get_session
from trendle_api.models.account import Account
from trendle_api.services.ledger import Ledger


async def require_account_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> Account:
    """Resolve the authenticated account from forwarded session headers.

    Accounts are provisioned with a zero balance on first use.
    """

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    try:
        account_id = UUID(session_user)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        ) from error

    return await Ledger(db).ensure_account(account_id)
