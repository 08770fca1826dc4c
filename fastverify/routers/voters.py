"""
FastVerify Booth - Voter Router

Read-only lookups over the cached voter roll.
"""

from typing import List

from fastapi import APIRouter, Depends, Query

from fastverify.dependencies import get_voter_service
from fastverify.schemas.voter import VoterRead, VoterSearchType
from fastverify.services.voter_service import VoterService
from fastverify.utils.errors import NotFoundError

router = APIRouter(prefix="/voters", tags=["Voters"])


@router.get("/search", response_model=List[VoterRead])
async def search_voters(
    q: str = Query(..., min_length=1),
    type: VoterSearchType = Query(VoterSearchType.ID),
    limit: int = Query(20, ge=1, le=100),
    voters: VoterService = Depends(get_voter_service),
):
    return await voters.search_voters(q, type, limit=limit)


@router.get("/{voter_id}", response_model=VoterRead)
async def get_voter(voter_id: str, voters: VoterService = Depends(get_voter_service)):
    voter = await voters.get_voter(voter_id)
    if voter is None:
        raise NotFoundError("Voter", voter_id)
    return voter
