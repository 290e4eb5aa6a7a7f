"""In-memory name -> id lookup for categories and vendors during one import run."""

from __future__ import annotations

import logging
import time

from sqlalchemy import select
from sqlalchemy.orm import Session

from finance_importer.db.models.category import FinanceCategory, Vendor

logger = logging.getLogger(__name__)

CATEGORY = "category"
VENDOR = "vendor"


def _normalize(name: str) -> str:
    return " ".join(name.split()).lower()


class ReferenceCache:
    """Case-insensitive reference lookups warmed with one query per table.

    Entries loaded by ``load`` are never changed; references created while the
    run is in progress are added through ``remember`` so later rows reuse them.
    """

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, int]] = {CATEGORY: {}, VENDOR: {}}

    @classmethod
    def load(cls, session: Session, owner_id: str, record_type: str) -> "ReferenceCache":
        started = time.perf_counter()
        cache = cls()

        categories = session.execute(
            select(FinanceCategory.id, FinanceCategory.name).where(
                FinanceCategory.owner_id == owner_id,
                FinanceCategory.kind == record_type,
            )
        ).all()
        for ref_id, name in categories:
            cache._entries[CATEGORY].setdefault(_normalize(name), ref_id)

        vendors = session.execute(
            select(Vendor.id, Vendor.name).where(Vendor.owner_id == owner_id)
        ).all()
        for ref_id, name in vendors:
            cache._entries[VENDOR].setdefault(_normalize(name), ref_id)

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Reference cache warmed for owner {owner_id} in {elapsed_ms:.0f}ms "
            f"({len(categories)} categories, {len(vendors)} vendors)"
        )
        return cache

    def resolve(self, name: str, kind: str) -> int | None:
        return self._entries[kind].get(_normalize(name))

    def remember(self, name: str, kind: str, ref_id: int) -> None:
        self._entries[kind].setdefault(_normalize(name), ref_id)

    def size(self, kind: str) -> int:
        return len(self._entries[kind])
