"""
Cover Resolution Service

Finds a usable cover image for a book by trying sources in a fixed order:

    S3 object → local disk cache → Google Books → Open Library → Longitood → placeholder

The first candidate whose bytes decode as an image (and meet the caller's
resolution preference) wins. Every attempt, successful or not, is
recorded in an ImageProvenanceData audit trail returned with the result.

Resolution Preferences
======================
- ANY: candidates in each source's natural order, first usable wins
- HIGH_ONLY: candidates below the high-resolution threshold are skipped,
  and the chain moves on to the next candidate or source
- HIGH_FIRST: candidates inside a source are tried largest first;
  no candidate or source is skipped for being small

The chain never raises. When nothing qualifies the placeholder image is
selected and marked as such.

Remote winners are written back to S3 and the local disk cache. That
write-back, and the full resolution triggered by
get_initial_cover_and_trigger_background_update, run on the worker pool.
"""

import json
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable
from typing import NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookrec.schemas.book import BookRecord
from bookrec.schemas.image import (
    SOURCE_TO_COVER_SOURCE,
    CoverImageSource,
    CoverResolution,
    ImageAttemptStatus,
    ImageDetails,
    ImageResolutionPreference,
    ImageSourceName,
    ProvenanceTracker,
    is_high_resolution,
)
from bookrec.services.background import BackgroundTasks
from bookrec.services.events import EventPublisher
from bookrec.services.local_covers import LocalCoverCache
from bookrec.services.object_storage import S3ObjectStorage
from bookrec.services.providers import (
    GoogleBooksClient,
    ImageFetcher,
    LongitoodClient,
    OpenLibraryClient,
)
from bookrec.services.repository import BookRepository
from bookrec.utils.book_json import GOOGLE_IMAGE_SIZES, google_image_links
from bookrec.utils.images import (
    MIN_ACCEPTABLE_NON_GOOGLE,
    ImageInfo,
    inspect_image,
    looks_like_placeholder,
)
from bookrec.utils.identifiers import looks_like_uuid, sanitize_isbn

logger = logging.getLogger(__name__)

_GOOGLE_SIZE_LABELS = {
    "extraLarge": ImageResolutionPreference.LARGE,
    "large": ImageResolutionPreference.LARGE,
    "medium": ImageResolutionPreference.MEDIUM,
    "small": ImageResolutionPreference.SMALL,
    "thumbnail": ImageResolutionPreference.SMALL,
    "smallThumbnail": ImageResolutionPreference.SMALL,
}
_OPEN_LIBRARY_SIZE_LABELS = {
    "L": ImageResolutionPreference.LARGE,
    "M": ImageResolutionPreference.MEDIUM,
    "S": ImageResolutionPreference.SMALL,
}


class Candidate(NamedTuple):
    url: str
    label: ImageResolutionPreference
    # lower is larger
    rank: int


def order_candidates(
    candidates: list[Candidate], preference: ImageResolutionPreference
) -> list[Candidate]:
    """Largest first under HIGH_FIRST; natural order otherwise."""
    if preference == ImageResolutionPreference.HIGH_FIRST:
        return sorted(candidates, key=lambda c: c.rank)
    return list(candidates)


class CoverResolver:
    """
    Cover resolution chain with provenance.

    Every collaborator except the image fetcher is optional; a missing
    source is recorded as SKIPPED.

    URLs whose bytes were undecodable or a placeholder are remembered (up to
    max_known_bad_urls, least recently seen dropped first) and not fetched again.
    """

    def __init__(
        self,
        fetcher: ImageFetcher,
        google: Optional[GoogleBooksClient] = None,
        open_library: Optional[OpenLibraryClient] = None,
        longitood: Optional[LongitoodClient] = None,
        object_storage: Optional[S3ObjectStorage] = None,
        local_covers: Optional[LocalCoverCache] = None,
        placeholder_path: str = "/images/placeholder-book-cover.svg",
        background: Optional[BackgroundTasks] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        events: Optional[EventPublisher] = None,
        on_cover_updated: Optional[Callable[[BookRecord], None]] = None,
        max_known_bad_urls: int = 10_000,
    ):
        self.fetcher = fetcher
        self.google = google
        self.open_library = open_library
        self.longitood = longitood
        self.object_storage = object_storage
        self.local_covers = local_covers
        self.placeholder_path = placeholder_path
        self.background = background
        self.session_factory = session_factory
        self.events = events
        self.on_cover_updated = on_cover_updated
        # LRU of rejected URLs; the oldest is forgotten once the limit is hit
        self._known_bad_urls: OrderedDict[str, None] = OrderedDict()
        self._max_known_bad_urls = max_known_bad_urls
        self._bad_url_lock = threading.Lock()

    # =========================================================================
    # Public API
    # =========================================================================

    def resolve_cover(
        self,
        book: BookRecord,
        preference: ImageResolutionPreference = ImageResolutionPreference.ANY,
        write_back: bool = True,
    ) -> CoverResolution:
        """
        Run the full chain for one book.

        Args:
            book: Book to find a cover for
            preference: Resolution policy
            write_back: Store a remote winner in S3 / on disk (on the worker
                pool when one is configured)

        Returns:
            CoverResolution with the selected image (possibly the
            placeholder) and the frozen provenance
        """
        resolution, data, info = self._resolve(book, preference)
        if write_back and data is not None and info is not None:
            self._schedule_write_back(book, resolution.image, data, info)
        return resolution

    def get_initial_cover_and_trigger_background_update(self, book: BookRecord) -> ImageDetails:
        """
        Return the best cover known right now and resolve properly later.

        The immediate answer is the stored S3 cover, else the recorded
        external URL, else the placeholder. The full chain then runs on the
        worker pool; when it finds a real image the stored cover fields are
        updated and a cover.updated event is published.
        """
        if book.s3_image_path and self.object_storage is not None:
            immediate = ImageDetails(
                url_or_path=self.object_storage.public_url(book.s3_image_path),
                source_name=ImageSourceName.S3_CACHE,
                cover_source=CoverImageSource.S3_CACHE,
                width=book.cover_image_width,
                height=book.cover_image_height,
                storage_location="S3",
                storage_key=book.s3_image_path,
            )
        elif book.external_image_url:
            immediate = ImageDetails(
                url_or_path=book.external_image_url,
                source_name=ImageSourceName.UNKNOWN,
                width=book.cover_image_width,
                height=book.cover_image_height,
                storage_location="REMOTE",
                source_url=book.external_image_url,
            )
        else:
            immediate = self.placeholder()

        if self.background is not None:
            self.background.submit(self.update_cover_in_background, book)
        return immediate

    def update_cover_in_background(self, book: BookRecord) -> CoverResolution:
        """Resolve, store the winner, update the book and announce the change."""
        resolution, data, info = self._resolve(book, ImageResolutionPreference.ANY)
        image = resolution.image
        if image.is_placeholder:
            return resolution

        if data is not None and info is not None:
            image = self._write_back(book, image, data, info)
            resolution = CoverResolution(image=image, provenance=resolution.provenance)

        self._record_cover(book, image)
        if self.events is not None and book.id:
            self.events.publish_cover_updated(
                book.id,
                {
                    "url": image.url_or_path,
                    "source": image.source_name.value,
                    "width": image.width,
                    "height": image.height,
                    "high_resolution": image.is_high_resolution,
                },
            )
        return resolution

    def placeholder(self) -> ImageDetails:
        return ImageDetails(
            url_or_path=self.placeholder_path,
            source_name=ImageSourceName.INTERNAL_PROCESSING,
            cover_source=CoverImageSource.NONE,
            storage_location="LOCAL",
            placeholder=True,
        )

    # =========================================================================
    # Chain
    # =========================================================================

    def _resolve(
        self, book: BookRecord, preference: ImageResolutionPreference
    ) -> tuple[CoverResolution, Optional[bytes], Optional[ImageInfo]]:
        tracker = ProvenanceTracker(book.id, _parse_raw_json(book.raw_json_response))
        try:
            image, data, info = self._run_chain(book, preference, tracker)
        except Exception:
            logger.exception(f"Cover resolution failed for book {book.id}")
            image, data, info = None, None, None

        if image is None:
            image = self.placeholder()

        tracker.select(image)
        provenance = tracker.finish()
        logger.debug(
            f"Cover for {book.id}: {image.source_name} "
            f"({len(provenance.attempted_image_sources)} attempts)"
        )
        return CoverResolution(image=image, provenance=provenance), data, info

    def _run_chain(
        self,
        book: BookRecord,
        preference: ImageResolutionPreference,
        tracker: ProvenanceTracker,
    ) -> tuple[Optional[ImageDetails], Optional[bytes], Optional[ImageInfo]]:
        """Return (image, bytes for write-back, info) or Nones when nothing qualifies."""
        image = self._try_s3(book, preference, tracker)
        if image is not None:
            return image, None, None

        image = self._try_local(book, preference, tracker)
        if image is not None:
            return image, None, None

        for source_name, candidates in self._remote_sources(book, tracker):
            for candidate in order_candidates(candidates, preference):
                result = self._try_remote(source_name, candidate, preference, tracker)
                if result is not None:
                    return result
        return None, None, None

    def _try_s3(self, book, preference, tracker) -> Optional[ImageDetails]:
        source = ImageSourceName.S3_CACHE
        if self.object_storage is None:
            tracker.record_attempt(source, None, ImageAttemptStatus.SKIPPED, "object storage disabled")
            return None
        if not book.s3_image_path:
            tracker.record_attempt(source, None, ImageAttemptStatus.SKIPPED, "no stored cover key")
            return None

        key = book.s3_image_path
        data = self.object_storage.get_object(key)
        if not data:
            tracker.record_attempt(source, key, ImageAttemptStatus.FAILURE_404, "object missing")
            return None
        info = self._accept(source, key, data, preference, tracker)
        if info is None:
            return None
        return ImageDetails(
            url_or_path=self.object_storage.public_url(key),
            source_name=source,
            cover_source=CoverImageSource.S3_CACHE,
            width=info.width,
            height=info.height,
            storage_location="S3",
            storage_key=key,
        )

    def _try_local(self, book, preference, tracker) -> Optional[ImageDetails]:
        source = ImageSourceName.LOCAL_CACHE
        if self.local_covers is None or not book.id:
            tracker.record_attempt(source, None, ImageAttemptStatus.SKIPPED, "local cache disabled")
            return None
        cached = self.local_covers.read(book.id)
        if cached is None:
            tracker.record_attempt(source, None, ImageAttemptStatus.SKIPPED, "not cached")
            return None

        path, data = cached
        web_path = self.local_covers.web_path(path)
        info = self._accept(source, web_path, data, preference, tracker)
        if info is None:
            return None
        return ImageDetails(
            url_or_path=web_path,
            source_name=source,
            source_system_id=path.name,
            cover_source=CoverImageSource.LOCAL_CACHE,
            width=info.width,
            height=info.height,
            storage_location="LOCAL",
            storage_key=str(path),
        )

    def _remote_sources(self, book: BookRecord, tracker: ProvenanceTracker):
        """Yield (source, candidates) lazily so later lookups only run when needed."""
        isbn = sanitize_isbn(book.isbn13) or sanitize_isbn(book.isbn10)

        yield ImageSourceName.GOOGLE_BOOKS, self._google_candidates(book, isbn, tracker)

        if self.open_library is None or not isbn:
            reason = "no ISBN" if self.open_library is not None else "source disabled"
            tracker.record_attempt(ImageSourceName.OPEN_LIBRARY, None, ImageAttemptStatus.SKIPPED, reason)
        else:
            yield ImageSourceName.OPEN_LIBRARY, [
                Candidate(url, _OPEN_LIBRARY_SIZE_LABELS[size], rank)
                for rank, (size, url) in enumerate(self.open_library.cover_urls(isbn))
            ]

        if self.longitood is None or not isbn:
            reason = "no ISBN" if self.longitood is not None else "source disabled"
            tracker.record_attempt(ImageSourceName.LONGITOOD, None, ImageAttemptStatus.SKIPPED, reason)
        else:
            url = self.longitood.cover_url(isbn)
            if url:
                yield ImageSourceName.LONGITOOD, [Candidate(url, ImageResolutionPreference.ORIGINAL, 0)]
            else:
                tracker.record_attempt(
                    ImageSourceName.LONGITOOD, None, ImageAttemptStatus.FAILURE_404, "no cover URL for ISBN"
                )

    def _google_candidates(
        self, book: BookRecord, isbn: Optional[str], tracker: ProvenanceTracker
    ) -> list[Candidate]:
        volume = tracker.google_books_api_response
        links = google_image_links(volume) if isinstance(volume, dict) else []

        if not links and self.google is not None:
            lookup = isbn or (book.id if book.id and not looks_like_uuid(book.id) else None)
            if lookup:
                volume = self.google.fetch_by_id(lookup)
                tracker.google_books_api_response = volume
                links = google_image_links(volume)

        candidates = [
            Candidate(url, _GOOGLE_SIZE_LABELS[size], GOOGLE_IMAGE_SIZES.index(size))
            for size, url in links
        ]
        if not candidates and book.external_image_url and "books.google" in book.external_image_url:
            candidates.append(Candidate(book.external_image_url, ImageResolutionPreference.ORIGINAL, 0))
        if not candidates:
            tracker.record_attempt(
                ImageSourceName.GOOGLE_BOOKS, None, ImageAttemptStatus.SKIPPED, "no image links"
            )
        return candidates

    def _try_remote(
        self,
        source: ImageSourceName,
        candidate: Candidate,
        preference: ImageResolutionPreference,
        tracker: ProvenanceTracker,
    ) -> Optional[tuple[ImageDetails, bytes, ImageInfo]]:
        if self._is_known_bad(candidate.url):
            tracker.record_attempt(
                source, candidate.url, ImageAttemptStatus.SKIPPED_BAD_URL, "previously rejected"
            )
            return None

        download = self.fetcher.fetch(candidate.url)
        if not download.ok:
            tracker.record_attempt(source, candidate.url, download.status, download.reason)
            return None

        info = self._accept(source, candidate.url, download.data, preference, tracker)
        if info is None:
            return None
        details = ImageDetails(
            url_or_path=candidate.url,
            source_name=source,
            cover_source=SOURCE_TO_COVER_SOURCE.get(source, CoverImageSource.UNDEFINED),
            resolution=candidate.label,
            width=info.width,
            height=info.height,
            storage_location="REMOTE",
            source_url=candidate.url,
        )
        return details, download.data, info

    def _accept(
        self,
        source: ImageSourceName,
        url: str,
        data: bytes,
        preference: ImageResolutionPreference,
        tracker: ProvenanceTracker,
    ) -> Optional[ImageInfo]:
        """Validate candidate bytes and record the attempt; None means rejected."""
        info = inspect_image(data)
        if info is None:
            tracker.record_attempt(source, url, ImageAttemptStatus.FAILURE_PROCESSING, "not a decodable image")
            self._mark_bad(url)
            return None

        dimensions = f"{info.width}x{info.height}"
        if looks_like_placeholder(info):
            tracker.record_attempt(
                source, url, ImageAttemptStatus.FAILURE_PLACEHOLDER_DETECTED, dimensions=dimensions
            )
            self._mark_bad(url)
            return None
        if (
            source in (ImageSourceName.OPEN_LIBRARY, ImageSourceName.LONGITOOD)
            and info.width < MIN_ACCEPTABLE_NON_GOOGLE
        ):
            tracker.record_attempt(
                source, url, ImageAttemptStatus.FAILURE_PROCESSING, "image too small", dimensions=dimensions
            )
            return None
        if preference == ImageResolutionPreference.HIGH_ONLY and not _is_high_res(info):
            tracker.record_attempt(
                source, url, ImageAttemptStatus.SKIPPED, "below high-resolution threshold",
                dimensions=dimensions,
            )
            return None

        tracker.record_attempt(source, url, ImageAttemptStatus.SUCCESS, dimensions=dimensions)
        return info

    # =========================================================================
    # Write-back
    # =========================================================================

    def _schedule_write_back(self, book, image, data, info) -> None:
        if self.object_storage is None and self.local_covers is None:
            return
        if self.background is not None:
            self.background.submit(self._write_back_and_record, book, image, data, info)
        else:
            self._write_back_and_record(book, image, data, info)

    def _write_back_and_record(self, book, image, data, info) -> None:
        stored = self._write_back(book, image, data, info)
        if stored.storage_location != "REMOTE":
            self._record_cover(book, stored)

    def _write_back(
        self, book: BookRecord, image: ImageDetails, data: bytes, info: ImageInfo
    ) -> ImageDetails:
        """Store a remote winner; returns details pointing at the stored copy."""
        if not book.id:
            return image
        stored = image
        if self.local_covers is not None:
            path = self.local_covers.write(book.id, data, info.extension)
            if path is not None:
                stored = image.model_copy(
                    update={
                        "url_or_path": self.local_covers.web_path(path),
                        "storage_location": "LOCAL",
                        "storage_key": str(path),
                        "source_system_id": path.name,
                    }
                )
        if self.object_storage is not None:
            key = f"images/book-covers/{book.id}-{image.source_name.value.lower()}.{info.extension}"
            if self.object_storage.put_object(key, data, info.content_type):
                stored = image.model_copy(
                    update={
                        "url_or_path": self.object_storage.public_url(key),
                        "storage_location": "S3",
                        "storage_key": key,
                    }
                )
        return stored

    def _record_cover(self, book: BookRecord, image: ImageDetails) -> None:
        """Persist cover fields on the canonical book and refresh cached copies."""
        if image.storage_location == "S3":
            book.s3_image_path = image.storage_key
        if image.source_url:
            book.external_image_url = image.source_url
        book.cover_image_width = image.width
        book.cover_image_height = image.height
        book.is_cover_high_resolution = image.is_high_resolution

        if self.session_factory is not None and book.is_canonical:
            try:
                with self.session_factory() as db:
                    BookRepository(db).update_cover(book.id, image)
            except SQLAlchemyError as e:
                logger.warning(f"Failed to store cover for {book.id}: {e}")
        if self.on_cover_updated is not None:
            self.on_cover_updated(book)

    # =========================================================================
    # Known-bad URLs
    # =========================================================================

    def _is_known_bad(self, url: str) -> bool:
        with self._bad_url_lock:
            if url not in self._known_bad_urls:
                return False
            self._known_bad_urls.move_to_end(url)
            return True

    def _mark_bad(self, url: str) -> None:
        if not url.startswith("http"):
            return
        with self._bad_url_lock:
            self._known_bad_urls[url] = None
            self._known_bad_urls.move_to_end(url)
            while len(self._known_bad_urls) > self._max_known_bad_urls:
                self._known_bad_urls.popitem(last=False)


def _is_high_res(info: ImageInfo) -> bool:
    return is_high_resolution(info.width, info.height)


def _parse_raw_json(raw: Optional[str]):
    """Google volume JSON stored on the record, if that is what it holds."""
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        return None
    if isinstance(value, dict) and ("volumeInfo" in value or value.get("kind") == "books#volume"):
        return value
    return None
