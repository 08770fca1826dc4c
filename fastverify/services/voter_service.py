"""
FastVerify Booth - Voter Cache Service

Read access to the cached voter roll and the upsert path used by pull sync.
Voters are never created or edited by local user action.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func

from fastverify.models import VoterRecord
from fastverify.schemas.voter import VoterPayload, VoterSearchType
from fastverify.services.store import Collection, LocalStore, StoreTransaction

logger = logging.getLogger(__name__)


SEARCH_COLUMNS = {
    VoterSearchType.ID: VoterRecord.voter_id,
    VoterSearchType.NAME: VoterRecord.full_name,
    VoterSearchType.MOBILE: VoterRecord.registered_mobile,
}


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class VoterService:
    """Lookups over the local voter cache."""

    def __init__(self, store: LocalStore):
        self.store = store

    async def get_voter(self, voter_id: str) -> Optional[VoterRecord]:
        return await self.store.get(Collection.VOTERS, voter_id)

    async def search_voters(
        self,
        term: str,
        search_type: VoterSearchType = VoterSearchType.ID,
        limit: int = 20,
    ) -> List[VoterRecord]:
        """Case-insensitive prefix search over active voters."""
        term = term.strip()
        if not term:
            return []
        column = SEARCH_COLUMNS[VoterSearchType(search_type)]
        pattern = f"{_escape_like(term.lower())}%"
        return await self.store.query(
            Collection.VOTERS,
            func.lower(column).like(pattern, escape="\\"),
            VoterRecord.is_active.is_(True),
            limit=limit,
            order_by=column,
        )

    async def active_count(self) -> int:
        return await self.store.count(Collection.VOTERS, VoterRecord.is_active.is_(True))

    async def apply_updates(
        self,
        tx: StoreTransaction,
        voters: Iterable[VoterPayload],
        synced_at: datetime,
    ) -> int:
        """
        Upsert pulled voters inside the caller's transaction.

        Rows whose authoritative fields are unchanged are left untouched.
        Returns the number of rows written.
        """
        written = 0
        for voter in voters:
            incoming = voter.model_dump()
            existing = await tx.get(Collection.VOTERS, voter.voter_id)
            if existing is not None and all(
                getattr(existing, field) == incoming[field]
                for field in VoterRecord.AUTHORITATIVE_FIELDS
            ):
                continue
            await tx.put(Collection.VOTERS, {**incoming, "last_synced_at": synced_at})
            written += 1

        if written:
            logger.info(f"Applied {written} voter updates")
        return written
