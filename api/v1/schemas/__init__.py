"""Re-export individual schema modules for easy imports."""

from .plan import PlanRequest, PlanResponse, ValidateRequest

__all__ = [
    "PlanRequest",
    "PlanResponse",
    "ValidateRequest",
]
