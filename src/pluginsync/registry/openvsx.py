"""HTTP client for the Open VSX extension registry.

Resolves ``publisher.name`` identifiers to the download URL of the newest
version that is compatible with a given VS Code API version and target
platform.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from packaging.version import InvalidVersion, Version

from pluginsync.config.models import DEFAULT_API_URL

logger = logging.getLogger(__name__)

UNIVERSAL_PLATFORM = "universal"

_ENGINE_VERSION_RE = re.compile(r"(\d+)(?:\.(\d+|x))?(?:\.(\d+|x))?")


class RegistryError(Exception):
    """Raised when the registry cannot be queried or returns garbage."""


@dataclass(frozen=True)
class RegistryExtension:
    """One published version of an extension."""

    extension_id: str
    version: str
    download_url: str
    target_platform: str = UNIVERSAL_PLATFORM
    engine: Optional[str] = None


def _parse_version(value: str) -> Optional[Version]:
    try:
        return Version(value)
    except (InvalidVersion, TypeError):
        return None


def is_engine_supported(engine: Optional[str], api_version: str) -> bool:
    """Check an ``engines.vscode`` range against the supported API version.

    Only the minimal version of the range is considered: ``^1.40.0``,
    ``>=1.40.0`` and ``1.40.x`` all need ``api_version >= 1.40.0``.
    ``*`` matches any version; a missing engine never matches.
    """
    if not engine:
        return False
    engine = engine.strip()
    if engine == "*":
        return True
    match = _ENGINE_VERSION_RE.search(engine)
    supported = _parse_version(api_version)
    if match is None or supported is None:
        return False
    parts = [p if p and p != "x" else "0" for p in match.groups()]
    return Version(".".join(parts)) <= supported


def _version_key(entry: Dict[str, Any]):
    parsed = _parse_version(str(entry.get("version", "")))
    # Unparseable versions sort last.
    return (parsed is not None, parsed or Version("0"))


class OpenVSXClient:
    """Client for the Open VSX ``/-/query`` API.

    Connection failures are retried by the underlying httpx transport;
    HTTP errors are not.

    Args:
        api_url: Base URL of the registry API.
        timeout: Request timeout in seconds.
        retries: Connection retries per request.
        client: Preconfigured ``httpx.Client`` (tests pass one with a
            ``MockTransport``).
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 60.0,
        retries: int = 3,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            trust_env=True,
            transport=httpx.HTTPTransport(retries=retries),
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "OpenVSXClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def query(
        self,
        extension_id: str,
        version: Optional[str] = None,
        target_platform: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Return the raw extension entries published for ``extension_id``.

        Raises:
            RegistryError: On transport failures, non-2xx responses other
                than 404, or a malformed body.
        """
        params = {"extensionId": extension_id, "includeAllVersions": "true"}
        if version:
            params["extensionVersion"] = version
        if target_platform:
            params["targetPlatform"] = target_platform

        url = f"{self.api_url}/-/query"
        try:
            resp = self._client.get(url, params=params)
        except httpx.RequestError as e:
            raise RegistryError(f"Cannot reach registry at {self.api_url}: {e}") from e

        if resp.status_code == 404:
            return []
        if resp.status_code >= 400:
            raise RegistryError(
                f"Registry query for {extension_id} failed: "
                f"{resp.status_code} {resp.reason_phrase}"
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise RegistryError(f"Invalid registry response for {extension_id}") from e

        extensions = data.get("extensions") if isinstance(data, dict) else None
        if not isinstance(extensions, list):
            raise RegistryError(f"Invalid registry response for {extension_id}")
        return [e for e in extensions if isinstance(e, dict)]

    def resolve_extension(
        self,
        extension_id: str,
        target_platform: str,
        api_version: str,
        version: Optional[str] = None,
    ) -> Optional[RegistryExtension]:
        """Pick the newest compatible version of ``extension_id``.

        Returns:
            The selected extension, or None if no published version fits
            the target platform and API version.
        """
        entries = self.query(extension_id, version=version, target_platform=target_platform)
        candidates = [
            e
            for e in entries
            if e.get("targetPlatform", UNIVERSAL_PLATFORM)
            in (target_platform, UNIVERSAL_PLATFORM)
        ]
        if version:
            candidates = [e for e in candidates if e.get("version") == version]
        candidates.sort(key=_version_key, reverse=True)

        for entry in candidates:
            engine = (entry.get("engines") or {}).get("vscode")
            download = (entry.get("files") or {}).get("download")
            if not download:
                continue
            if not is_engine_supported(engine, api_version):
                logger.debug(
                    f"Skipping {extension_id}@{entry.get('version')}: "
                    f"engine {engine!r} needs a newer API than {api_version}"
                )
                continue
            return RegistryExtension(
                extension_id=extension_id,
                version=str(entry.get("version")),
                download_url=download,
                target_platform=entry.get("targetPlatform", UNIVERSAL_PLATFORM),
                engine=engine,
            )
        return None
