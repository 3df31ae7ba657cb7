"""Tests for the single-artifact downloader."""

import threading

import pytest

from pluginsync.download.downloader import Downloader, archive_extension, is_retryable_status
from pluginsync.download.errors import (
    DownloadCancelled,
    DownloadError,
    IntegrityError,
    TransientDownloadError,
    UnsupportedArtifactError,
)
from pluginsync.download.lockfile import Lockfile, compute_integrity
from pluginsync.download.models import LockEntry, ResolvedDownload
from pluginsync.download.store import ArtifactStore
from pluginsync.download.transport import HttpResponse

URL = "https://example.com/a.b-1.0.0.vsix"


@pytest.fixture
def lockfile():
    return Lockfile()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_downloader(fake_transport, lockfile, unlimited, sleeps, tmp_path):
    def _make(packed=True, **kwargs):
        kwargs.setdefault("sleep", sleeps.append)
        store = ArtifactStore(tmp_path / "plugins", packed=packed)
        return Downloader(fake_transport, store, lockfile, unlimited, **kwargs)

    return _make


def resolved(url=URL, plugin_id="a.b", spec="a.b"):
    return ResolvedDownload(id=plugin_id, spec=spec, download_url=url, version="1.0.0")


class TestArchiveExtension:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://x/a.vsix", ".vsix"),
            ("https://x/a.theia", ".theia"),
            ("https://x/a.tar.gz", ".tar.gz"),
            ("https://x/a.VSIX?token=1", ".vsix"),
            ("https://x/a.zip", None),
            ("https://x/a.vsix.sig", None),
        ],
    )
    def test_suffixes(self, url, expected):
        assert archive_extension(url) == expected

    @pytest.mark.parametrize("status", [429, 439, 500, 502, 503])
    def test_retryable(self, status):
        assert is_retryable_status(status)

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_not_retryable(self, status):
        assert not is_retryable_status(status)


class TestDownload:
    def test_success_writes_and_locks(self, make_downloader, fake_transport, ok_response, lockfile, tmp_path):
        fake_transport.add(URL, ok_response(b"vsix-bytes"))
        result = make_downloader().download(resolved())

        assert result.attempts == 1
        assert result.version == "1.0.0"
        assert (tmp_path / "plugins" / "a.b.vsix").read_bytes() == b"vsix-bytes"
        entry = lockfile.get("a.b")
        assert entry.resolved == URL
        assert entry.integrity == compute_integrity(b"vsix-bytes")

    def test_unpacked_extracts(self, make_downloader, fake_transport, ok_response, make_vsix, tmp_path):
        fake_transport.add(URL, ok_response(make_vsix({"name": "a.b"})))
        make_downloader(packed=False).download(resolved())
        assert (tmp_path / "plugins" / "a.b" / "extension" / "package.json").is_file()

    def test_existing_target_skips_network(self, make_downloader, fake_transport, tmp_path):
        (tmp_path / "plugins").mkdir()
        (tmp_path / "plugins" / "a.b.vsix").write_bytes(b"old")

        result = make_downloader().download(resolved())

        assert result.attempts == 0
        assert fake_transport.requests == []

    def test_unsupported_suffix_makes_no_request(self, make_downloader, fake_transport):
        with pytest.raises(UnsupportedArtifactError):
            make_downloader().download(resolved(url="https://x/a.zip"))
        assert fake_transport.requests == []

    def test_retries_then_succeeds(self, make_downloader, fake_transport, ok_response, sleeps, transport_error):
        fake_transport.add(
            URL,
            HttpResponse(503, b"", "Service Unavailable"),
            transport_error(),
            ok_response(b"data"),
        )
        result = make_downloader().download(resolved())

        assert result.attempts == 3
        assert sleeps == [2.0, 2.0]

    def test_retry_bound(self, make_downloader, fake_transport, sleeps):
        fake_transport.add(URL, HttpResponse(439, b"", "Too Many Requests"))

        with pytest.raises(TransientDownloadError, match="after 5 attempts: 439"):
            make_downloader().download(resolved())

        assert fake_transport.count(URL) == 5
        assert len(sleeps) == 4

    def test_custom_attempts_and_backoff(self, make_downloader, fake_transport, sleeps):
        fake_transport.add(URL, HttpResponse(500, b"", "Internal Server Error"))

        with pytest.raises(TransientDownloadError):
            make_downloader(max_attempts=3, retry_delay=1.0, exponential_backoff=True).download(resolved())

        assert fake_transport.count(URL) == 3
        assert sleeps == [1.0, 2.0]

    def test_non_retryable_status_fails_fast(self, make_downloader, fake_transport, sleeps):
        fake_transport.add(URL, HttpResponse(404, b"", "Not Found"))

        with pytest.raises(DownloadError, match="404") as exc_info:
            make_downloader().download(resolved())

        assert not isinstance(exc_info.value, TransientDownloadError)
        assert fake_transport.count(URL) == 1
        assert sleeps == []

    def test_each_attempt_takes_a_token(self, fake_transport, lockfile, tmp_path, fake_clock, sleeps):
        from pluginsync.download.rate_limiter import RateLimiter

        limiter = RateLimiter(1, clock=fake_clock.monotonic, sleep=fake_clock.sleep)
        fake_transport.add(URL, HttpResponse(503, b"", ""))
        downloader = Downloader(
            fake_transport,
            ArtifactStore(tmp_path, packed=True),
            lockfile,
            limiter,
            max_attempts=3,
            sleep=sleeps.append,
        )
        with pytest.raises(TransientDownloadError):
            downloader.download(resolved())

        # One free token, then two waits of a full second.
        assert fake_clock.sleeps == [pytest.approx(1.0), pytest.approx(1.0)]


class TestIntegrity:
    def test_matching_digest_accepted(self, make_downloader, fake_transport, ok_response, lockfile):
        lockfile.put("a.b", LockEntry(URL, compute_integrity(b"data")))
        fake_transport.add(URL, ok_response(b"data"))
        assert make_downloader().download(resolved()).attempts == 1

    def test_tampered_bytes_rejected(self, make_downloader, fake_transport, ok_response, lockfile, tmp_path):
        pinned = LockEntry(URL, compute_integrity(b"original"))
        lockfile.put("a.b", pinned)
        fake_transport.add(URL, ok_response(b"tampered"))

        with pytest.raises(IntegrityError, match="checksum verification failed"):
            make_downloader().download(resolved())

        assert fake_transport.count(URL) == 1
        assert not (tmp_path / "plugins" / "a.b.vsix").exists()
        assert lockfile.get("a.b") == pinned

    def test_entry_without_integrity_is_trusted(self, make_downloader, fake_transport, ok_response, lockfile):
        lockfile.put("a.b", LockEntry(URL, ""))
        fake_transport.add(URL, ok_response(b"data"))
        make_downloader().download(resolved())
        assert lockfile.get("a.b").integrity == compute_integrity(b"data")


class TestCancellation:
    def test_cancel_before_start(self, make_downloader, fake_transport):
        event = threading.Event()
        event.set()
        with pytest.raises(DownloadCancelled):
            make_downloader(cancel_event=event).download(resolved())
        assert fake_transport.requests == []

    def test_cancel_during_backoff(self, make_downloader, fake_transport):
        event = threading.Event()
        fake_transport.add(URL, HttpResponse(503, b"", ""))

        def cancel_on_sleep(delay):
            event.set()

        with pytest.raises(DownloadCancelled):
            make_downloader(cancel_event=event, sleep=cancel_on_sleep).download(resolved())
        assert fake_transport.count(URL) == 1

    def test_event_wait_used_without_sleep(self, fake_transport, lockfile, unlimited, tmp_path):
        event = threading.Event()
        fake_transport.add(URL, HttpResponse(503, b"", ""))
        downloader = Downloader(
            fake_transport,
            ArtifactStore(tmp_path, packed=True),
            lockfile,
            unlimited,
            max_attempts=2,
            retry_delay=0.0,
            cancel_event=event,
        )
        with pytest.raises(TransientDownloadError):
            downloader.download(resolved())
        assert fake_transport.count(URL) == 2
