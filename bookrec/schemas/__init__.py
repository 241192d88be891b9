"""
Pydantic Schemas Package

Domain records shared by every tier, plus the response shapes returned by
the HTTP layer.

Import from here:
    from bookrec.schemas import BookRecord, CachedBook, ImageDetails
"""

from bookrec.schemas.book import (
    BookRecord,
    BookSearchResponse,
    BookSummary,
    CachedBook,
    EditionInfo,
    SimilarBook,
)
from bookrec.schemas.image import (
    AttemptedSourceInfo,
    CoverImageSource,
    CoverResolution,
    ImageAttemptStatus,
    ImageDetails,
    ImageProvenanceData,
    ImageResolutionPreference,
    ImageSourceName,
    ProvenanceTracker,
    SelectedImageInfo,
)

__all__ = [
    "BookRecord",
    "BookSearchResponse",
    "BookSummary",
    "CachedBook",
    "EditionInfo",
    "SimilarBook",
    "AttemptedSourceInfo",
    "CoverImageSource",
    "CoverResolution",
    "ImageAttemptStatus",
    "ImageDetails",
    "ImageProvenanceData",
    "ImageResolutionPreference",
    "ImageSourceName",
    "ProvenanceTracker",
    "SelectedImageInfo",
]
