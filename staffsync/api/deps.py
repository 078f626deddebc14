"""API Dependencies - Common dependencies for routes"""
from functools import lru_cache
from typing import Optional
from fastapi import Header

from ..repositories.audit_repo import AuditReportRepository
from ..scheduler.audit_scheduler import AuditScheduler, get_scheduler
from ..services.collection_synchronizer import CollectionSynchronizer
from ..services.identity_resolver import IdentityResolver
from ..utils.logger import set_correlation_id
from ..utils.idgen import generate_correlation_id


async def get_correlation_id_dep(
    x_correlation_id: Optional[str] = Header(None, alias="X-Correlation-Id")
) -> str:
    """
    Get or generate correlation ID for request tracing

    If client provides X-Correlation-Id, use it.
    Otherwise generate a new one.
    """
    correlation_id = x_correlation_id or generate_correlation_id()
    set_correlation_id(correlation_id)
    return correlation_id


@lru_cache()
def get_identity_resolver() -> IdentityResolver:
    """Process-wide resolver, so its cache and invalidation are shared"""
    return IdentityResolver()


@lru_cache()
def get_collection_synchronizer() -> CollectionSynchronizer:
    """Process-wide synchronizer sharing the resolver"""
    return CollectionSynchronizer(resolver=get_identity_resolver())


def get_audit_report_repo() -> AuditReportRepository:
    return AuditReportRepository()


def get_audit_scheduler() -> AuditScheduler:
    return get_scheduler()
