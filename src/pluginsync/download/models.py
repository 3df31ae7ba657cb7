"""Plugin reference, lock and outcome dataclasses."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union


@dataclass(frozen=True)
class PluginReference:
    """One requested plugin: destination id plus URL or registry spec."""

    id: str
    spec: str


@dataclass(frozen=True)
class ResolvedDownload:
    """A plugin reference resolved to a concrete artifact URL."""

    id: str
    spec: str
    download_url: str
    version: Optional[str] = None


@dataclass(frozen=True)
class LockEntry:
    """Pinned resolution for a spec: the fetched URL and its digest."""

    resolved: str
    integrity: str = ""

    def to_dict(self) -> dict:
        return {"resolved": self.resolved, "integrity": self.integrity}


@dataclass(frozen=True)
class Success:
    """Plugin is present on disk. ``attempts`` is 0 when nothing was fetched."""

    id: str
    version: Optional[str] = None
    attempts: int = 0


@dataclass(frozen=True)
class Failure:
    """Plugin could not be acquired."""

    id: str
    reason: str


Outcome = Union[Success, Failure]


class Phase(str, Enum):
    """Stages of a download run, in execution order."""

    INIT = "init"
    DOWNLOADING_ROOT = "downloading_root"
    SCANNING_PACKS = "scanning_packs"
    DOWNLOADING_PACKS = "downloading_packs"
    SCANNING_DEPENDENCIES = "scanning_dependencies"
    DOWNLOADING_DEPENDENCIES = "downloading_dependencies"
    REPORTING = "reporting"
    DONE = "done"


@dataclass
class DownloadReport:
    """Aggregated result of a download run."""

    outcomes: List[Outcome] = field(default_factory=list)
    phases: List[Phase] = field(default_factory=list)
    ignore_errors: bool = False
    cancelled: bool = False
    lockfile_path: Optional[Path] = None
    lockfile_error: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> List[Success]:
        return [o for o in self.outcomes if isinstance(o, Success)]

    @property
    def downloaded(self) -> List[Success]:
        """Successes that actually fetched bytes this run."""
        return [o for o in self.succeeded if o.attempts > 0]

    @property
    def failures(self) -> List[Failure]:
        return [o for o in self.outcomes if isinstance(o, Failure)]

    @property
    def ok(self) -> bool:
        if self.cancelled or self.lockfile_error:
            return False
        return not self.failures or self.ignore_errors

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1
