"""Service modules - Business logic layer"""
from .identity_resolver import IdentityResolver
from .collection_synchronizer import CollectionSynchronizer
from .notification_pipeline import NotificationPipeline, Subscription
from .audit_generator import AuditContentGenerator

__all__ = [
    "IdentityResolver",
    "CollectionSynchronizer",
    "NotificationPipeline",
    "Subscription",
    "AuditContentGenerator",
]
