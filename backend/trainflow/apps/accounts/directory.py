"""
Directory lookups used by the approval router.

Each lookup returns a user id or None. None means "nobody found" and is a
fallback trigger for the caller, never a success.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


def _first_active_with_role(db: Session, role: models.AccountRole) -> Optional[str]:
    user = (
        db.query(models.User)
        .filter(models.User.role == role, models.User.is_active.is_(True))
        .order_by(models.User.created_at.asc(), models.User.id.asc())
        .first()
    )
    return user.id if user else None


def get_user(db: Session, user_id: Optional[str]) -> Optional[models.User]:
    if not user_id:
        return None
    return db.query(models.User).filter(models.User.id == user_id).first()


def manager_of(db: Session, user_id: str) -> Optional[str]:
    user = get_user(db, user_id)
    if not user or not user.manager_id:
        return None
    manager = get_user(db, user.manager_id)
    if not manager or not manager.is_active:
        logger.info("Manager inactive or missing", extra={"user_id": user_id, "manager_id": user.manager_id})
        return None
    return manager.id


def hrbp_for_entity(db: Session, entity_id: Optional[str]) -> Optional[str]:
    if not entity_id:
        return None
    user = (
        db.query(models.User)
        .filter(
            models.User.role == models.AccountRole.HRBP,
            models.User.entity_id == entity_id,
            models.User.is_active.is_(True),
        )
        .order_by(models.User.created_at.asc(), models.User.id.asc())
        .first()
    )
    return user.id if user else None


def any_hrbp(db: Session) -> Optional[str]:
    return _first_active_with_role(db, models.AccountRole.HRBP)


def any_l_and_d(db: Session) -> Optional[str]:
    return _first_active_with_role(db, models.AccountRole.L_AND_D)


def any_chro(db: Session) -> Optional[str]:
    return _first_active_with_role(db, models.AccountRole.CHRO)


def role_of(db: Session, user_id: Optional[str]) -> Optional[models.AccountRole]:
    user = get_user(db, user_id)
    return user.role if user else None
