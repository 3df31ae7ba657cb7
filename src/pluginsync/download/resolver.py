"""Turn plugin references into concrete download URLs."""

import logging
import platform
import re
from typing import Optional, Tuple
from urllib.parse import urlsplit

from pluginsync.registry.openvsx import RegistryError

from .errors import ResolutionError
from .lockfile import Lockfile
from .models import PluginReference, ResolvedDownload
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

TARGET_PLATFORM_PLACEHOLDER = "${targetPlatform}"
LATEST_TAG = "latest"

_EXTENSION_ID_RE = re.compile(r"^[\w-]+\.[\w.-]+$")

_OS_NAMES = {"linux": "linux", "darwin": "darwin", "windows": "win32"}
_ARCH_NAMES = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armhf",
    "armv7": "armhf",
    "armhf": "armhf",
}


def detect_target_platform() -> str:
    """Map the running interpreter's OS and CPU onto a VS Code platform tag."""
    system = platform.system().lower()
    machine = platform.machine().lower()
    os_name = _OS_NAMES.get(system, system)
    arch = _ARCH_NAMES.get(machine, machine)
    return f"{os_name}-{arch}"


def substitute_placeholders(url: str, target_platform: str) -> str:
    return url.replace(TARGET_PLATFORM_PLACEHOLDER, target_platform)


def is_literal_url(spec: str) -> bool:
    """True when the reference is already a URL (scheme + ``://``)."""
    return "://" in spec and bool(urlsplit(spec).scheme)


def parse_registry_spec(spec: str) -> Tuple[str, Optional[str]]:
    """Split ``publisher.name[@version]`` into id and version.

    ``latest`` (or no tag) yields a version of None.

    Raises:
        ResolutionError: If the value is not a valid registry reference.
    """
    name, sep, version = spec.rpartition("@")
    if not sep:
        name, version = spec, ""
    elif not version:
        raise ResolutionError(f"Malformed registry reference '{spec}': empty version")
    if not _EXTENSION_ID_RE.match(name):
        raise ResolutionError(f"Malformed registry reference '{spec}'")
    if not version or version == LATEST_TAG:
        return name, None
    return name, version


class ReferenceResolver:
    """Resolves literal URLs, lockfile pins and registry references.

    Args:
        registry: Object with ``resolve_extension(extension_id,
            target_platform, api_version, version=None)``.
        lockfile: Lock map consulted before the registry.
        rate_limiter: Gate for registry requests.
        target_platform: VS Code platform tag, e.g. ``linux-x64``.
        api_version: Supported VS Code API version.
    """

    def __init__(
        self,
        registry,
        lockfile: Lockfile,
        rate_limiter: RateLimiter,
        target_platform: str,
        api_version: str,
    ) -> None:
        self.registry = registry
        self.lockfile = lockfile
        self.rate_limiter = rate_limiter
        self.target_platform = target_platform
        self.api_version = api_version

    def resolve(self, ref: PluginReference) -> ResolvedDownload:
        spec = ref.spec.strip()
        if is_literal_url(spec):
            return ResolvedDownload(
                id=ref.id,
                spec=ref.spec,
                download_url=substitute_placeholders(spec, self.target_platform),
            )

        extension_id, version = parse_registry_spec(spec)

        entry = self.lockfile.get(ref.spec)
        if entry is not None:
            logger.debug(f"Using locked URL for {ref.spec}: {entry.resolved}")
            return ResolvedDownload(
                id=ref.id,
                spec=ref.spec,
                download_url=substitute_placeholders(entry.resolved, self.target_platform),
                version=version,
            )

        self.rate_limiter.acquire()
        try:
            extension = self.registry.resolve_extension(
                extension_id,
                target_platform=self.target_platform,
                api_version=self.api_version,
                version=version,
            )
        except RegistryError as e:
            raise ResolutionError(f"Registry lookup for {extension_id} failed: {e}") from e

        if extension is None:
            raise ResolutionError(
                f"No version of {extension_id} ({version or LATEST_TAG}) compatible "
                f"with API {self.api_version} on {self.target_platform}"
            )
        logger.info(f"Resolved {ref.id} to {extension_id}@{extension.version}")
        return ResolvedDownload(
            id=ref.id,
            spec=ref.spec,
            download_url=substitute_placeholders(
                extension.download_url, self.target_platform
            ),
            version=extension.version,
        )
