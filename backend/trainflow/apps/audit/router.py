from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from trainflow.apps.accounts.models import AccountRole, User
from trainflow.database import get_read_db
from trainflow.security import require_roles

from . import schemas, services


router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/", response_model=List[schemas.AuditLogEntryRead])
def list_audit_entries(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    field: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(
        require_roles(
            AccountRole.HRBP,
            AccountRole.L_AND_D,
            AccountRole.CHRO,
        )
    ),
):
    return services.list_entries(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        field=field,
        start=start,
        end=end,
    )
