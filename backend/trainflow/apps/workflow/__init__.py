from .engine import apply_transition, check_transition
from .registry import WORKFLOWS

__all__ = ["WORKFLOWS", "apply_transition", "check_transition"]
