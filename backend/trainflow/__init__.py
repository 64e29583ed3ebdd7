# backend/trainflow/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- String relationship targets ("Course", "TrainingSession", ...) resolve
  no matter which app is imported first.

The actual model classes are kept in trainflow/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models            # entities / users / roles
from .apps.catalog import models as catalog_models              # courses + policy fields
from .apps.approvals import models as approvals_models          # requests + approval chain
from .apps.enrollment import models as enrollment_models        # sessions + enrollments
from .apps.audit import models as audit_models                  # append-only audit log
from .apps.notifications import models as notifications_models  # in-app notifications
from .apps.certificates import models as certificates_models    # certificate issuance outbox

__all__ = [
    "accounts_models",
    "catalog_models",
    "approvals_models",
    "enrollment_models",
    "audit_models",
    "notifications_models",
    "certificates_models",
]
