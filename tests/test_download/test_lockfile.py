"""Tests for the lockfile and integrity helpers."""

import json
from unittest.mock import patch

import pytest

from pluginsync.download.lockfile import Lockfile, compute_integrity, verify_integrity
from pluginsync.download.models import LockEntry


class TestIntegrity:
    def test_sha512_prefix(self):
        assert compute_integrity(b"abc").startswith("sha512-")

    def test_deterministic(self):
        assert compute_integrity(b"abc") == compute_integrity(b"abc")

    def test_verify_roundtrip(self):
        assert verify_integrity(b"abc", compute_integrity(b"abc"))

    def test_tampered_bytes_fail(self):
        assert not verify_integrity(b"abd", compute_integrity(b"abc"))

    def test_other_algorithm(self):
        digest = compute_integrity(b"abc", "sha256")
        assert digest.startswith("sha256-")
        assert verify_integrity(b"abc", digest)

    def test_unknown_algorithm_never_verifies(self):
        assert not verify_integrity(b"abc", "md5-kAFQmDzST7DWlj99KOF/cg==")
        assert not verify_integrity(b"abc", "garbage")

    def test_unsupported_algorithm_rejected(self):
        with pytest.raises(ValueError):
            compute_integrity(b"abc", "md5")


class TestLockfileLoad:
    def test_missing_file(self, tmp_path):
        lockfile = Lockfile.load(tmp_path / "plugins.lock.json")
        assert len(lockfile) == 0

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "plugins.lock.json"
        path.write_text("{broken")
        assert len(Lockfile.load(path)) == 0

    def test_non_object(self, tmp_path):
        path = tmp_path / "plugins.lock.json"
        path.write_text("[]")
        assert len(Lockfile.load(path)) == 0

    def test_malformed_entries_skipped(self, tmp_path):
        path = tmp_path / "plugins.lock.json"
        path.write_text(
            json.dumps(
                {
                    "good.one": {"resolved": "https://x/good.vsix", "integrity": "sha512-AA=="},
                    "no.resolved": {"integrity": "sha512-AA=="},
                    "not.a.dict": "https://x/y.vsix",
                    "no.integrity": {"resolved": "https://x/z.vsix"},
                }
            )
        )
        lockfile = Lockfile.load(path)
        assert len(lockfile) == 2
        assert lockfile.get("good.one") == LockEntry("https://x/good.vsix", "sha512-AA==")
        assert lockfile.get("no.integrity").integrity == ""
        assert lockfile.get("no.resolved") is None


class TestLockfileFlush:
    def test_roundtrip(self, tmp_path):
        path = tmp_path / "plugins.lock.json"
        lockfile = Lockfile()
        lockfile.put("b.b", LockEntry("https://x/b.vsix", "sha512-B"))
        lockfile.put("a.a", LockEntry("https://x/a.vsix", "sha512-A"))
        lockfile.flush(path)

        loaded = Lockfile.load(path)
        assert loaded.to_dict() == lockfile.to_dict()

    def test_pretty_and_sorted(self, tmp_path):
        path = tmp_path / "plugins.lock.json"
        lockfile = Lockfile()
        lockfile.put("b.b", LockEntry("https://x/b.vsix", "sha512-B"))
        lockfile.put("a.a", LockEntry("https://x/a.vsix", "sha512-A"))
        lockfile.flush(path)

        text = path.read_text()
        assert text.index('"a.a"') < text.index('"b.b"')
        assert '\n  "a.a": {' in text
        assert text.endswith("\n")

    def test_creates_parent(self, tmp_path):
        path = tmp_path / "nested" / "plugins.lock.json"
        Lockfile().flush(path)
        assert json.loads(path.read_text()) == {}

    def test_failed_write_keeps_previous_file(self, tmp_path):
        path = tmp_path / "plugins.lock.json"
        path.write_text('{"old.one": {"resolved": "https://x/old.vsix", "integrity": ""}}')
        lockfile = Lockfile()
        lockfile.put("new.one", LockEntry("https://x/new.vsix", "sha512-N"))

        with patch("pluginsync.download.lockfile.json.dump", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                lockfile.flush(path)

        assert "old.one" in json.loads(path.read_text())
        assert [p.name for p in tmp_path.iterdir()] == ["plugins.lock.json"]
