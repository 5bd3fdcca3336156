from .models import Discrepancy, ReconciliationAction, ReconciliationResult
from .service import ReconciliationService

__all__ = ["Discrepancy", "ReconciliationAction", "ReconciliationResult", "ReconciliationService"]
