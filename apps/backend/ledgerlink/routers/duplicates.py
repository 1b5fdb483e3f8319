"""Duplicate detection API router."""

from fastapi import APIRouter

from ledgerlink.schemas import (
    DuplicateDetectionRequest,
    DuplicateDetectionResult,
    DuplicateGroup,
    DuplicateGroupsRequest,
)
from ledgerlink.services import DuplicateDetector, detect_duplicates

router = APIRouter(prefix="/duplicates", tags=["duplicates"])


@router.post("/detect", response_model=DuplicateDetectionResult)
async def detect(request: DuplicateDetectionRequest) -> DuplicateDetectionResult:
    """Split incoming records into duplicates of existing ones and unique ones."""
    return detect_duplicates(request.existing, request.incoming, request.config)


@router.post("/groups", response_model=list[DuplicateGroup])
async def groups(request: DuplicateGroupsRequest) -> list[DuplicateGroup]:
    return DuplicateDetector(request.config).find_duplicate_groups(request.transactions)
