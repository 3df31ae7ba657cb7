"""Fetch, verify and store a single resolved plugin artifact."""

import logging
import threading
import time
from typing import Callable, Optional
from urllib.parse import urlsplit

from .errors import (
    DownloadCancelled,
    DownloadError,
    IntegrityError,
    TransientDownloadError,
    TransportError,
    UnsupportedArtifactError,
)
from .lockfile import Lockfile, compute_integrity, verify_integrity
from .models import LockEntry, ResolvedDownload, Success
from .rate_limiter import RateLimiter
from .store import ARCHIVE_EXTENSIONS, ArtifactStore

logger = logging.getLogger(__name__)

# 439 is returned by some registries when their rate limit is exceeded.
RETRYABLE_STATUSES = frozenset({429, 439})


def archive_extension(url: str) -> Optional[str]:
    """Return the supported archive suffix of ``url``'s path, if any."""
    path = urlsplit(url).path.lower()
    for ext in ARCHIVE_EXTENSIONS:
        if path.endswith(ext):
            return ext
    return None


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUSES or status_code >= 500


class Downloader:
    """Downloads one artifact with bounded retries.

    Every attempt takes one rate limiter token. Transport errors and
    retryable statuses wait ``retry_delay`` seconds (doubled per attempt
    with ``exponential_backoff``) before trying again. Bytes are checked
    against the integrity pinned in the lockfile before anything is
    written.
    """

    def __init__(
        self,
        transport,
        store: ArtifactStore,
        lockfile: Lockfile,
        rate_limiter: RateLimiter,
        max_attempts: int = 5,
        retry_delay: float = 2.0,
        exponential_backoff: bool = False,
        cancel_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.transport = transport
        self.store = store
        self.lockfile = lockfile
        self.rate_limiter = rate_limiter
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.exponential_backoff = exponential_backoff
        self.cancel_event = cancel_event
        self._sleep = sleep

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _wait(self, delay: float) -> None:
        if self._sleep is not None:
            self._sleep(delay)
        elif self.cancel_event is not None:
            self.cancel_event.wait(delay)
        else:
            time.sleep(delay)
        if self._cancelled():
            raise DownloadCancelled("Download cancelled")

    def _delay_for(self, attempt: int) -> float:
        if self.exponential_backoff:
            return self.retry_delay * (2 ** (attempt - 1))
        return self.retry_delay

    def _fetch(self, resolved: ResolvedDownload) -> tuple[bytes, int]:
        url = resolved.download_url
        last_error = ""
        for attempt in range(1, self.max_attempts + 1):
            if self._cancelled():
                raise DownloadCancelled("Download cancelled")
            self.rate_limiter.acquire()
            try:
                resp = self.transport.get(url)
            except TransportError as e:
                last_error = str(e)
            else:
                if resp.status_code == 200:
                    return resp.body, attempt
                if not is_retryable_status(resp.status_code):
                    raise DownloadError(
                        f"Failed to download {resolved.id} from {url}: "
                        f"{resp.status_code} {resp.reason}".rstrip()
                    )
                last_error = f"{resp.status_code} {resp.reason}".rstrip()

            if attempt < self.max_attempts:
                delay = self._delay_for(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} for {resolved.id} "
                    f"failed ({last_error}), retrying in {delay:.1f}s"
                )
                self._wait(delay)

        raise TransientDownloadError(
            f"Failed to download {resolved.id} from {url} after "
            f"{self.max_attempts} attempts: {last_error}"
        )

    def download(self, resolved: ResolvedDownload) -> Success:
        """Make sure ``resolved`` is present in the store.

        Returns:
            Success with ``attempts=0`` when the plugin was already there.

        Raises:
            DownloadError: Subclass describing why the artifact could not
                be acquired.
            StoreError: If writing to disk fails.
        """
        ext = archive_extension(resolved.download_url)
        if ext is None:
            raise UnsupportedArtifactError(
                f"Unsupported file type for {resolved.id}: {resolved.download_url}"
            )

        target = self.store.target_path(resolved.id, ext)
        if self.store.exists(target):
            logger.debug(f"{resolved.id}: already present at {target}")
            return Success(id=resolved.id, version=resolved.version, attempts=0)

        body, attempts = self._fetch(resolved)

        prior = self.lockfile.get(resolved.spec)
        if prior is not None and prior.integrity:
            if not verify_integrity(body, prior.integrity):
                raise IntegrityError(f"{resolved.id}: checksum verification failed")
            integrity = prior.integrity
        else:
            integrity = compute_integrity(body)

        if self.store.packed:
            self.store.write_archive(target, body)
        else:
            self.store.write_directory(target, body, ext)

        self.lockfile.put(
            resolved.spec,
            LockEntry(resolved=resolved.download_url, integrity=integrity),
        )
        logger.info(f"Downloaded {resolved.id} ({len(body)} bytes)")
        return Success(id=resolved.id, version=resolved.version, attempts=attempts)
