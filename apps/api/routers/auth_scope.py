"""Authentication dependencies for API account scoping."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.account import Account
from routers.rate_limit import client_identifier
from services.errors import AuthError
from services.generation import Caller
from services.public_access import resolve_store_owner
from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    account_id: str
    email: Optional[str] = None


def _context_from_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> AuthContext:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise AuthError("Missing Bearer session token.")

    try:
        claims = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise AuthError(str(exc)) from exc

    return AuthContext(account_id=claims.account_id, email=claims.email)


async def ensure_account(db: AsyncSession, account_id: str, email: Optional[str] = None) -> Account:
    result = await db.execute(select(Account).where(Account.id == account_id))
    account = result.scalar_one_or_none()
    if account:
        return account

    account = Account(id=account_id, email=email)
    db.add(account)
    await db.commit()
    return account


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated account from Bearer session token."""
    return _context_from_credentials(credentials)


async def get_caller(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
    x_store_slug: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> Caller:
    """Bearer token wins; otherwise a store slug header selects the public storefront flow."""
    if credentials is not None:
        auth = _context_from_credentials(credentials)
        await ensure_account(db, auth.account_id, auth.email)
        return Caller(account_id=auth.account_id)

    if x_store_slug:
        owner = await resolve_store_owner(x_store_slug, db)
        return Caller(
            account_id=owner.id,
            public=True,
            store_slug=owner.store_slug,
            client_ip=client_identifier(request),
        )

    raise AuthError("Missing Bearer session token or store identifier.")
