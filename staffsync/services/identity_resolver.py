"""Identity Resolver - Map any staff reference to one canonical identity key

A staff reference may be a document ID, an email address, or a key that was
handed out earlier. Every downstream collection is keyed on the canonical
key only, so this is the single place where references are interpreted.
"""
import asyncio
import re
from typing import Dict, List, Optional

from ..config.settings import settings
from ..domain.errors import AmbiguousIdentityError, IdentityNotFoundError, ValidationError
from ..domain.models import StaffRecord
from ..repositories.staff_repo import StaffRepository
from ..utils.idgen import derive_canonical_key
from ..utils.logger import get_logger

logger = get_logger(__name__)

CANONICAL_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{20,128}$")


def looks_like_canonical_key(staff_ref: str) -> bool:
    """Shape check only; emails and short IDs never pass"""
    return "@" not in staff_ref and bool(CANONICAL_KEY_PATTERN.match(staff_ref))


class IdentityResolver:
    """
    Resolve staff references to canonical identity keys

    Resolution order (first match wins):
    1. The reference is itself a key carried by an active record
    2. Active record whose document ID equals the reference
    3. Active record whose email equals the (lower-cased) reference
    4. A matched record without a key gets one derived and persisted

    Cached keys are re-checked against the active records on every hit,
    so deactivations made by other processes are seen immediately.
    """

    def __init__(self, staff_repo: Optional[StaffRepository] = None):
        self.staff_repo = staff_repo or StaffRepository()
        self._cache: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    # =========================================================================
    # Public API
    # =========================================================================

    async def resolve(self, staff_ref: str) -> str:
        """
        Resolve a staff reference to its canonical identity key

        Raises:
            ValidationError: Empty reference
            IdentityNotFoundError: No active record matches
            AmbiguousIdentityError: More than one active record matches
        """
        ref = self._normalize(staff_ref)

        cached = self._cache.get(ref)
        if cached is not None:
            # Records may be deactivated or duplicated behind this process
            if await self.active_holder(cached) is not None:
                return cached
            self._cache.pop(ref, None)

        record = await self.resolve_record(ref)
        return record.canonical_identity_key

    async def resolve_record(self, staff_ref: str) -> StaffRecord:
        """Resolve a reference to its active record, key populated"""
        ref = self._normalize(staff_ref)

        # Serialize resolutions of the same reference within this process
        lock = self._locks.setdefault(ref, asyncio.Lock())
        self._lock_users[ref] = self._lock_users.get(ref, 0) + 1
        try:
            async with lock:
                record = await self._lookup(ref)
                if record.canonical_identity_key is None:
                    record = await self._backfill(record)

                await self._check_unique_key(ref, record.canonical_identity_key)
                self._remember(ref, record.canonical_identity_key)
                return record
        finally:
            self._lock_users[ref] -= 1
            if not self._lock_users[ref]:
                del self._lock_users[ref]
                self._locks.pop(ref, None)

    async def active_holder(self, identity_key: str) -> Optional[StaffRecord]:
        """
        The single active record carrying a key, or None if there is none

        Raises:
            AmbiguousIdentityError: More than one active record carries the key
        """
        holders = await self.staff_repo.find_active_by_key(identity_key)
        self._require_single(identity_key, holders, "canonical_identity_key")
        return holders[0] if holders else None

    def invalidate(self, staff_ref: str) -> None:
        """Drop one cached reference"""
        self._cache.pop(staff_ref.strip(), None)
        self._cache.pop(staff_ref.strip().lower(), None)

    def clear_cache(self) -> None:
        """Drop every cached reference"""
        self._cache.clear()

    async def deactivate(self, record_id: str) -> Optional[StaffRecord]:
        """
        Soft-deactivate a record and drop every cached reference to it

        Returns:
            The deactivated record, or None if no such record exists
        """
        record = await self.staff_repo.deactivate(record_id)
        if record is None:
            return None

        stale_refs = [
            ref for ref, key in self._cache.items()
            if key == record.canonical_identity_key or ref in (record.record_id, record.email)
        ]
        for ref in stale_refs:
            del self._cache[ref]

        logger.info(
            f"Invalidated {len(stale_refs)} cached references",
            extra={"record_id": record_id, "identity_key": record.canonical_identity_key}
        )
        return record

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _normalize(staff_ref: str) -> str:
        if not isinstance(staff_ref, str) or not staff_ref.strip():
            raise ValidationError("Staff reference must be a non-empty string")
        return staff_ref.strip()

    def _remember(self, ref: str, identity_key: str) -> None:
        if ref not in self._cache and len(self._cache) >= settings.identity_cache_size:
            # Evict the oldest entry
            self._cache.pop(next(iter(self._cache)))
        self._cache[ref] = identity_key

    async def _lookup(self, ref: str) -> StaffRecord:
        if looks_like_canonical_key(ref):
            by_key = await self.staff_repo.find_active_by_key(ref)
            if by_key:
                self._require_single(ref, by_key, "canonical_identity_key")
                return by_key[0]

        by_id = await self.staff_repo.get_by_record_id(ref, active_only=True)
        if by_id is not None:
            return by_id

        by_email = await self.staff_repo.find_active_by_email(ref)
        if by_email:
            self._require_single(ref, by_email, "email")
            return by_email[0]

        logger.info("Identity not recognized", extra={"staff_ref": ref})
        raise IdentityNotFoundError(
            "Identity not recognized",
            details={"staff_ref": ref}
        )

    async def _backfill(self, record: StaffRecord) -> StaffRecord:
        key = derive_canonical_key(record.record_id)
        written = await self.staff_repo.backfill_key(record.record_id, key)

        if not written:
            # Someone else wrote a key first; theirs is authoritative
            current = await self.staff_repo.get_by_record_id(record.record_id, active_only=True)
            if current is None or current.canonical_identity_key is None:
                raise IdentityNotFoundError(
                    "Identity not recognized",
                    details={"staff_ref": record.record_id}
                )
            return current

        return record.model_copy(update={"canonical_identity_key": key})

    async def _check_unique_key(self, ref: str, identity_key: str) -> None:
        holders = await self.staff_repo.find_active_by_key(identity_key)
        self._require_single(ref, holders, "canonical_identity_key")

    @staticmethod
    def _require_single(ref: str, records: List[StaffRecord], field: str) -> None:
        if len(records) <= 1:
            return

        record_ids = [r.record_id for r in records]
        logger.error(
            f"Ambiguous identity: {len(records)} active records share {field}",
            extra={"staff_ref": ref, "alert": True}
        )
        raise AmbiguousIdentityError(
            "More than one active staff record matches this identity",
            details={"staff_ref": ref, "field": field, "record_ids": record_ids}
        )
