"""
Database package for the Delivery Review engine.
"""

from .audit_models import AuditLogModel
from .audit_service import AuditService
from .base import Base, get_db, get_engine, get_session_local, init_database
from .models import DeliveryModel, FeedbackModel, ReviewLinkModel, WorkItemModel

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "AuditLogModel",
    "AuditService",
    "WorkItemModel",
    "DeliveryModel",
    "FeedbackModel",
    "ReviewLinkModel",
]
