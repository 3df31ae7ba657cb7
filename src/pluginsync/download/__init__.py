"""Plugin download engine: resolution, fetching, storage and dependency scanning."""

from .models import DownloadReport, Failure, Phase, PluginReference, Success
from .orchestrator import PluginDownloadOrchestrator

__all__ = [
    "DownloadReport",
    "Failure",
    "Phase",
    "PluginDownloadOrchestrator",
    "PluginReference",
    "Success",
]
