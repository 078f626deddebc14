"""API module - Routes and dependencies"""
from .deps import get_correlation_id_dep, get_identity_resolver, get_collection_synchronizer

__all__ = ["get_correlation_id_dep", "get_identity_resolver", "get_collection_synchronizer"]
