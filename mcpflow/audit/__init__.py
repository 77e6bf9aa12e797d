from .service import AuditCategory, AuditService
from .usage import UsageRecorder

__all__ = ["AuditCategory", "AuditService", "UsageRecorder"]
