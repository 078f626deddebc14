"""Staff Repository - Data access for staff accounts"""
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from .async_mongo import get_async_collection
from ..domain.models import StaffRecord
from ..utils.logger import get_logger
from ..utils.retry import call_with_retry
from ..utils.time import format_iso, utc_now

logger = get_logger(__name__)


def _to_record(doc: Dict[str, Any]) -> StaffRecord:
    # Legacy documents only carry the id as _id
    doc_id = doc.pop("_id", None)
    doc.setdefault("record_id", doc_id)
    return StaffRecord.model_validate(doc)


class StaffRepository:
    """Repository for staff account operations"""

    COLLECTION_NAME = "staff_accounts"

    def __init__(self, database: Optional[AsyncIOMotorDatabase] = None):
        self._staff: AsyncIOMotorCollection = get_async_collection(self.COLLECTION_NAME, database)

    async def create(self, record: StaffRecord) -> StaffRecord:
        """Insert a staff record (onboarding and tests)"""
        now = utc_now()
        if record.created_at is None:
            record = record.model_copy(update={"created_at": now, "updated_at": now})

        doc = record.model_dump(mode="json")
        doc["_id"] = record.record_id

        await call_with_retry(lambda: self._staff.insert_one(doc), "staff.create")
        logger.info("Created staff record", extra={"record_id": record.record_id})
        return record

    async def get_by_record_id(self, record_id: str, active_only: bool = True) -> Optional[StaffRecord]:
        """Get a staff record by document ID"""
        query: Dict[str, Any] = {"_id": record_id}
        if active_only:
            query["is_active"] = True

        doc = await call_with_retry(lambda: self._staff.find_one(query), "staff.get_by_record_id")
        return _to_record(doc) if doc else None

    async def find_active_by_email(self, email: str, limit: int = 2) -> List[StaffRecord]:
        """Active records with this email (more than one is an integrity fault)"""
        query = {"email": email.strip().lower(), "is_active": True}
        docs = await call_with_retry(
            lambda: self._staff.find(query).sort("_id", ASCENDING).limit(limit).to_list(length=limit),
            "staff.find_active_by_email"
        )
        return [_to_record(doc) for doc in docs]

    async def find_active_by_key(self, identity_key: str, limit: int = 2) -> List[StaffRecord]:
        """Active records carrying this canonical key (more than one is an integrity fault)"""
        query = {"canonical_identity_key": identity_key, "is_active": True}
        docs = await call_with_retry(
            lambda: self._staff.find(query).sort("_id", ASCENDING).limit(limit).to_list(length=limit),
            "staff.find_active_by_key"
        )
        return [_to_record(doc) for doc in docs]

    async def backfill_key(self, record_id: str, identity_key: str) -> bool:
        """
        Write a canonical key onto a record that has none.

        Conditional on the key still being absent, so a concurrent resolver
        that already wrote a key is never clobbered.

        Returns:
            True if this call wrote the key
        """
        result = await call_with_retry(
            lambda: self._staff.update_one(
                {"_id": record_id, "canonical_identity_key": None},
                {"$set": {
                    "canonical_identity_key": identity_key,
                    "updated_at": format_iso(utc_now())
                }}
            ),
            "staff.backfill_key"
        )
        written = result.modified_count == 1
        if written:
            logger.info(
                "Backfilled canonical identity key",
                extra={"record_id": record_id, "identity_key": identity_key}
            )
        return written

    async def list_active(self) -> List[StaffRecord]:
        """All active staff records, ordered by record ID"""
        docs = await call_with_retry(
            lambda: self._staff.find({"is_active": True}).sort("_id", ASCENDING).to_list(length=None),
            "staff.list_active"
        )
        return [_to_record(doc) for doc in docs]

    async def deactivate(self, record_id: str) -> Optional[StaffRecord]:
        """Soft-deactivate a staff record (records are never hard-deleted)"""
        now = format_iso(utc_now())
        doc = await call_with_retry(
            lambda: self._staff.find_one_and_update(
                {"_id": record_id},
                {"$set": {"is_active": False, "deactivated_at": now, "updated_at": now}},
                return_document=ReturnDocument.AFTER
            ),
            "staff.deactivate"
        )
        if doc is None:
            return None

        logger.info("Deactivated staff record", extra={"record_id": record_id})
        return _to_record(doc)
