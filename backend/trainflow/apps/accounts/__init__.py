# backend/trainflow/apps/accounts/__init__.py
"""
Accounts app

Responsible for:
- Organisational entities (HRBP scoping)
- Users, line managers and workflow roles
- Directory lookups the approval router resolves approvers with
"""

from . import directory, models  # noqa: F401

__all__ = ["directory", "models"]
