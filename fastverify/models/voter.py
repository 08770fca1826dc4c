"""
FastVerify Booth - Voter Record Model

Local cache of authoritative voter data. Rows are created and overwritten
only by the pull phase of a sync cycle.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from fastverify.database import Base, UTCDateTime


class VoterRecord(Base):
    """Cached voter as last reported by the remote authority."""
    
    __tablename__ = "voters"
    __key__ = "voter_id"
    
    # Fields owned by the remote authority; a pull only rewrites a row when one of these differs
    AUTHORITATIVE_FIELDS = (
        "full_name",
        "registered_mobile",
        "district",
        "polling_booth",
        "is_active",
    )
    
    voter_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    registered_mobile: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    district: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    polling_booth: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    
    def __repr__(self) -> str:
        return f"<VoterRecord(voter_id={self.voter_id})>"
