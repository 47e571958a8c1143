from .engine import apply_transition
from .registry import UNSET, WORKFLOWS

__all__ = ["UNSET", "WORKFLOWS", "apply_transition"]
