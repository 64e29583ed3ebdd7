# backend/trainflow/apps/catalog/__init__.py
"""
Rule catalog: course policy fields plus the pure functions that turn them
into an approval chain and a completion policy.
"""

from . import models, rules  # noqa: F401
