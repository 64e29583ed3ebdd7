# backend/trainflow/security.py
"""
Actor resolution for the HTTP surface.

Authentication is handled upstream (gateway / SSO). By the time a request
reaches this service it carries the authenticated user's id in the
`X-User-Id` header; this module turns that into a User row and enforces
role checks.
"""

from __future__ import annotations

from typing import Callable, Optional, Set, Union

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from .apps.accounts import models as account_models
from .apps.accounts.models import AccountRole
from .database import get_db


def get_user_by_id(
    db: Session,
    user_id: Optional[str],
) -> Optional[account_models.User]:
    if user_id is None:
        return None

    normalised_id = str(user_id).strip()
    if not normalised_id:
        return None

    return (
        db.query(account_models.User)
        .filter(account_models.User.id == normalised_id)
        .first()
    )


# ---------------------------------------------------------------------------
# FASTAPI DEPENDENCIES
# ---------------------------------------------------------------------------


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not identify the calling user",
    )


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> account_models.User:
    user = get_user_by_id(db, x_user_id)
    if user is None:
        raise _credentials_exception()
    return user


def get_current_active_user(
    current_user: account_models.User = Depends(get_current_user),
) -> account_models.User:
    """
    Ensure the current user is active.

    Deactivated users are blocked here rather than deeper in the app.
    """
    if not getattr(current_user, "is_active", False):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user account",
        )
    return current_user


def require_roles(
    *allowed_roles: Union[AccountRole, str],
) -> Callable[[account_models.User], account_models.User]:
    """
    Dependency factory to enforce that the current user has one of the given roles.

    Usage:
        @router.post(...)
        def endpoint(
            current_user: User = Depends(require_roles(AccountRole.L_AND_D, "admin"))
        ):
            ...

    ADMIN always passes, even if not explicitly listed in `allowed_roles`.
    """
    normalised_roles: Set[AccountRole] = set()
    for r in allowed_roles:
        if isinstance(r, AccountRole):
            normalised_roles.add(r)
        else:
            try:
                normalised_roles.add(AccountRole(r))
            except ValueError:
                raise ValueError(f"Unknown role {r!r} passed to require_roles()")

    def dependency(
        current_user: account_models.User = Depends(get_current_active_user),
    ) -> account_models.User:
        if current_user.role == AccountRole.ADMIN:
            return current_user

        if current_user.role not in normalised_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this operation",
            )
        return current_user

    return dependency


# Roles that manage sessions, attendance and completion.
TRAINING_ADMIN_ROLES = (AccountRole.HRBP, AccountRole.L_AND_D, AccountRole.CHRO)
