# backend/trainflow/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountRole(str, enum.Enum):
    EMPLOYEE = "employee"
    MANAGER = "manager"
    HRBP = "hrbp"
    L_AND_D = "l_and_d"
    CHRO = "chro"
    ADMIN = "admin"


# Position of each role in the approval chain. Admin signs at the CHRO tier.
ROLE_RANK: dict[AccountRole, int] = {
    AccountRole.EMPLOYEE: 0,
    AccountRole.MANAGER: 1,
    AccountRole.HRBP: 2,
    AccountRole.L_AND_D: 3,
    AccountRole.CHRO: 4,
    AccountRole.ADMIN: 4,
}


class Entity(Base):
    """
    Legal entity / business unit an employee belongs to.

    HRBPs are scoped to an entity; the approval router prefers the HRBP of
    the requester's own entity.
    """

    __tablename__ = "entities"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    code = Column(String(32), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Entity {self.code}>"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_role_active", "role", "is_active"),
        Index("idx_users_entity_role", "entity_id", "role"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    entity_id = Column(
        String(36),
        ForeignKey("entities.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    manager_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        doc="Line manager; first approver for this user's training requests.",
    )

    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False)

    role = Column(
        Enum(AccountRole, name="account_role_enum", native_enum=False),
        nullable=False,
        default=AccountRole.EMPLOYEE,
        index=True,
    )
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    entity = relationship("Entity", lazy="joined")
    manager = relationship("User", remote_side=[id], lazy="select")

    @property
    def role_rank(self) -> int:
        return ROLE_RANK.get(self.role, 0)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
