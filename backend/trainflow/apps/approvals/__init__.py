# backend/trainflow/apps/approvals/__init__.py
"""
Approvals app.

Training requests, their approval chain and the router that advances it.
This module is imported in trainflow.__init__ so that Alembic sees the models.
"""

from . import models  # noqa: F401
