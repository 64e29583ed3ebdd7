# backend/trainflow/apps/enrollment/__init__.py
"""
Enrollment app: sessions, seats and the waitlist.
"""

from . import models  # noqa: F401
