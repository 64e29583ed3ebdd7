# backend/trainflow/apps/certificates/__init__.py
"""
Certificate issuance requests (outbox for the external certificate generator).
"""

from . import models  # noqa: F401
