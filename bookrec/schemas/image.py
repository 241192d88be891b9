"""
Cover Image Schemas

Types used by the cover resolution chain:
- ImageSourceName / CoverImageSource: where an image came from
- ImageAttemptStatus: outcome of one fetch attempt
- ImageResolutionPreference: caller's resolution policy
- ImageDetails: the selected (or placeholder) image
- ImageProvenanceData: frozen audit trail of every attempt
- ProvenanceTracker: mutable builder used while the chain runs
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ~800x600 or 600x800
HIGH_RES_PIXEL_THRESHOLD = 480_000


class ImageSourceName(StrEnum):
    """Source that produced (or was asked for) an image."""

    GOOGLE_BOOKS = "GOOGLE_BOOKS"
    OPEN_LIBRARY = "OPEN_LIBRARY"
    LONGITOOD = "LONGITOOD"
    LOCAL_CACHE = "LOCAL_CACHE"
    S3_CACHE = "S3_CACHE"
    INTERNAL_PROCESSING = "INTERNAL_PROCESSING"
    UNKNOWN = "UNKNOWN"


class CoverImageSource(StrEnum):
    """Cover source as stored on a book record."""

    ANY = "ANY"
    GOOGLE_BOOKS = "GOOGLE_BOOKS"
    OPEN_LIBRARY = "OPEN_LIBRARY"
    LONGITOOD = "LONGITOOD"
    S3_CACHE = "S3_CACHE"
    LOCAL_CACHE = "LOCAL_CACHE"
    NONE = "NONE"
    UNDEFINED = "UNDEFINED"


class ImageAttemptStatus(StrEnum):
    """Outcome of a single cover fetch attempt."""

    SUCCESS = "SUCCESS"
    FAILURE_404 = "FAILURE_404"
    FAILURE_TIMEOUT = "FAILURE_TIMEOUT"
    FAILURE_GENERIC = "FAILURE_GENERIC"
    SKIPPED = "SKIPPED"
    SKIPPED_BAD_URL = "SKIPPED_BAD_URL"
    FAILURE_PROCESSING = "FAILURE_PROCESSING"
    FAILURE_EMPTY_CONTENT = "FAILURE_EMPTY_CONTENT"
    FAILURE_PLACEHOLDER_DETECTED = "FAILURE_PLACEHOLDER_DETECTED"
    FAILURE_IO = "FAILURE_IO"
    FAILURE_GENERIC_DOWNLOAD = "FAILURE_GENERIC_DOWNLOAD"
    SUCCESS_NO_METADATA = "SUCCESS_NO_METADATA"
    PENDING = "PENDING"


class ImageResolutionPreference(StrEnum):
    """
    Caller's resolution policy.

    - ANY: first usable image wins
    - HIGH_ONLY: images below HIGH_RES_PIXEL_THRESHOLD are skipped
    - HIGH_FIRST: larger candidates are tried first within a source
    """

    ANY = "ANY"
    HIGH_ONLY = "HIGH_ONLY"
    HIGH_FIRST = "HIGH_FIRST"
    LARGE = "LARGE"
    MEDIUM = "MEDIUM"
    SMALL = "SMALL"
    ORIGINAL = "ORIGINAL"


SOURCE_TO_COVER_SOURCE = {
    ImageSourceName.GOOGLE_BOOKS: CoverImageSource.GOOGLE_BOOKS,
    ImageSourceName.OPEN_LIBRARY: CoverImageSource.OPEN_LIBRARY,
    ImageSourceName.LONGITOOD: CoverImageSource.LONGITOOD,
    ImageSourceName.S3_CACHE: CoverImageSource.S3_CACHE,
    ImageSourceName.LOCAL_CACHE: CoverImageSource.LOCAL_CACHE,
}


def is_high_resolution(width: int | None, height: int | None) -> bool:
    """True when width x height meets HIGH_RES_PIXEL_THRESHOLD."""
    if width is None or height is None:
        return False
    return width * height >= HIGH_RES_PIXEL_THRESHOLD


class ImageDetails(BaseModel):
    """Resolved cover image (URL or storage path plus dimensions)."""

    url_or_path: str
    source_name: ImageSourceName = ImageSourceName.UNKNOWN
    source_system_id: str | None = None
    cover_source: CoverImageSource = CoverImageSource.UNDEFINED
    resolution: ImageResolutionPreference = ImageResolutionPreference.ORIGINAL
    width: int | None = None
    height: int | None = None
    storage_location: str | None = Field(default=None, description="S3, LOCAL or REMOTE")
    storage_key: str | None = None
    source_url: str | None = Field(default=None, description="Remote URL the bytes came from")
    placeholder: bool = False

    @property
    def is_placeholder(self) -> bool:
        return self.placeholder

    @property
    def is_high_resolution(self) -> bool:
        return is_high_resolution(self.width, self.height)


# =============================================================================
# Provenance
# =============================================================================


class AttemptedSourceInfo(BaseModel):
    """One attempt to fetch a cover from a source."""

    model_config = ConfigDict(frozen=True)

    source_name: ImageSourceName
    url_attempted: str | None
    status: ImageAttemptStatus
    failure_reason: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class SelectedImageInfo(BaseModel):
    """The image the chain finally selected."""

    model_config = ConfigDict(frozen=True)

    source_name: ImageSourceName
    final_url: str
    resolution: str | None = None
    storage_location: str | None = None
    s3_key: str | None = None


class ImageProvenanceData(BaseModel):
    """
    Audit trail of a cover resolution.

    Frozen: built once by ProvenanceTracker.finish() when the chain ends.
    Used for debugging only; business logic never branches on it beyond
    "was anything selected".
    """

    model_config = ConfigDict(frozen=True)

    book_id: str | None
    google_books_api_response: Any = None
    attempted_image_sources: tuple[AttemptedSourceInfo, ...] = ()
    selected_image_info: SelectedImageInfo | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def has_selection(self) -> bool:
        return self.selected_image_info is not None


class ProvenanceTracker:
    """Collects attempts while a resolution runs."""

    def __init__(self, book_id: str | None, google_books_api_response: Any = None):
        self.book_id = book_id
        self.google_books_api_response = google_books_api_response
        self.attempts: list[AttemptedSourceInfo] = []
        self.selected: SelectedImageInfo | None = None
        self._finished: ImageProvenanceData | None = None

    def record_attempt(
        self,
        source_name: ImageSourceName,
        url: str | None,
        status: ImageAttemptStatus,
        failure_reason: str | None = None,
        **metadata: Any,
    ) -> None:
        if self._finished is not None:
            raise RuntimeError("provenance already finished")
        self.attempts.append(
            AttemptedSourceInfo(
                source_name=source_name,
                url_attempted=url,
                status=status,
                failure_reason=failure_reason,
                metadata={k: str(v) for k, v in metadata.items() if v is not None},
            )
        )

    def select(self, details: ImageDetails) -> None:
        if self._finished is not None:
            raise RuntimeError("provenance already finished")
        resolution = None
        if details.width and details.height:
            resolution = f"{details.width}x{details.height}"
        self.selected = SelectedImageInfo(
            source_name=details.source_name,
            final_url=details.url_or_path,
            resolution=resolution or details.resolution.value,
            storage_location=details.storage_location,
            s3_key=details.storage_key if details.storage_location == "S3" else None,
        )

    def finish(self) -> ImageProvenanceData:
        if self._finished is None:
            self._finished = ImageProvenanceData(
                book_id=self.book_id,
                google_books_api_response=self.google_books_api_response,
                attempted_image_sources=tuple(self.attempts),
                selected_image_info=self.selected,
            )
        return self._finished


class CoverResolution(BaseModel):
    """Result of a cover resolution: the chosen image and how it was found."""

    model_config = ConfigDict(frozen=True)

    image: ImageDetails
    provenance: ImageProvenanceData
