"""Exceptions raised while resolving and downloading plugins.

Every per-plugin error derives from :class:`PluginSyncError`; the
orchestrator catches them at the worker boundary and records a
``Failure`` outcome instead of aborting the run.
"""


class PluginSyncError(Exception):
    """Base exception for plugin acquisition errors."""


class ResolutionError(PluginSyncError):
    """A plugin reference could not be turned into a download URL."""


class TransportError(PluginSyncError):
    """A single HTTP request failed below the status-code level."""


class DownloadError(PluginSyncError):
    """Base class for failures while fetching an artifact."""


class TransientDownloadError(DownloadError):
    """Retryable failures persisted past the attempt budget."""


class IntegrityError(DownloadError):
    """Downloaded bytes do not match the digest pinned in the lockfile."""


class UnsupportedArtifactError(DownloadError):
    """The artifact URL has a file type that cannot be installed."""


class DownloadCancelled(DownloadError):
    """The run was cancelled before the download finished."""


class StoreError(PluginSyncError):
    """Writing or extracting an artifact on disk failed."""


class ExtractionError(StoreError):
    """An archive could not be unpacked."""
