"""
BarcodeCacheService -- per-tenant product metadata remembered by barcode.

Responsibility:
    Write-through refresh of cached name / category / storage location when
    stock with an external barcode is ingested, and read-through lookup
    (cache first, then a live Lot) for the scanning flow.

Architecture position:
    Kernel > Services.  Inventory store.

Invariants enforced:
    - Never authoritative for stock.  A cache hit carries no quantity.
    - Internally generated barcodes (``SYS-`` / ``INT-``) are never cached.
    - (tenant_id, barcode) is unique; concurrent first writes resolve to one
      row through the savepoint-and-retry pattern.
"""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from pantry_kernel.domain.dtos import BarcodeLookup
from pantry_kernel.domain.values import clean_barcode, is_internal_barcode, require_text
from pantry_kernel.logging_config import get_logger
from pantry_kernel.models.lot import BarcodeCacheEntry, Lot
from pantry_kernel.services.base import BaseService

logger = get_logger("services.barcode_cache")


class BarcodeCacheService(BaseService):
    """Read-through / write-through barcode metadata cache."""

    def remember(
        self,
        tenant_id: str,
        barcode: str | None,
        *,
        name: str,
        category: str,
        storage_location: str = "",
    ) -> bool:
        """
        Upsert the cache entry for an external barcode.

        Returns:
            False when the barcode is blank or internal (nothing written).
        """
        barcode = clean_barcode(barcode)
        if barcode is None or is_internal_barcode(barcode):
            return False

        values = {
            "name": name,
            "category": category,
            "storage_location": storage_location or "",
            "last_modified": self._clock.now(),
        }
        with self._transaction("barcode_cache.remember") as session:
            if self._refresh_in(session, tenant_id, barcode, values):
                return True

            savepoint = session.begin_nested()
            try:
                session.add(BarcodeCacheEntry(tenant_id=tenant_id, barcode=barcode, **values))
                session.flush()
                savepoint.commit()
            except IntegrityError:
                logger.debug(
                    "barcode_cache_race_retry",
                    extra={"tenant_id": tenant_id, "barcode": barcode},
                )
                savepoint.rollback()
                self._refresh_in(session, tenant_id, barcode, values)

        logger.debug("barcode_cached", extra={"tenant_id": tenant_id, "barcode": barcode})
        return True

    def _refresh_in(self, session, tenant_id: str, barcode: str, values: dict) -> bool:
        refreshed = session.execute(
            update(BarcodeCacheEntry)
            .where(
                BarcodeCacheEntry.tenant_id == tenant_id,
                BarcodeCacheEntry.barcode == barcode,
            )
            .values(**values)
            .returning(BarcodeCacheEntry.id)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()
        return refreshed is not None

    def lookup(self, tenant_id: str, barcode: str | None) -> BarcodeLookup:
        """
        Resolve a scanned barcode: cache entry first, then any live Lot with
        that barcode (soonest expiring), else ``not_found``.

        Raises:
            MissingFieldError: if the barcode is blank.
        """
        code = require_text(barcode, "barcode")
        with self._transaction("barcode_cache.lookup") as session:
            entry = session.execute(
                select(BarcodeCacheEntry).where(
                    BarcodeCacheEntry.tenant_id == tenant_id,
                    BarcodeCacheEntry.barcode == code,
                )
            ).scalar_one_or_none()
            if entry is not None:
                result = BarcodeLookup.from_cache(entry)
            else:
                lot = session.execute(
                    select(Lot)
                    .where(Lot.tenant_id == tenant_id, Lot.barcode == code)
                    .order_by(Lot.expiration_date.is_(None), Lot.expiration_date, Lot.id)
                    .limit(1)
                ).scalar_one_or_none()
                result = BarcodeLookup.from_lot(lot) if lot is not None else BarcodeLookup.not_found(code)

        logger.debug(
            "barcode_lookup",
            extra={"tenant_id": tenant_id, "barcode": code, "source": result.source.value},
        )
        return result
