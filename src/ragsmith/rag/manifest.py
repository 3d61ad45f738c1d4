"""
Durable record of which chunk ids are currently indexed.
"""

from dataclasses import dataclass, field
from pathlib import Path

from ..errors import ManifestError
from ..observability.logging import get_logger
from .jsonfile import atomic_write_json, read_json

logger = get_logger(__name__)


@dataclass
class ManifestDiff:
    """Ids to add and ids to delete. Order within each list carries no meaning."""

    to_add: list[str] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_delete


class Manifest:
    """Set of indexed chunk ids persisted as ``{"ids": [...]}``."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> set[str]:
        """Return the stored id set, or an empty set on the first run."""
        if not self.path.exists():
            logger.info("No manifest yet, starting from an empty id set", path=str(self.path))
            return set()

        try:
            data = read_json(self.path)
        except (OSError, ValueError) as e:
            raise ManifestError(
                f"Cannot read manifest {self.path}: {e}. Run a full reindex to rebuild it."
            ) from e

        ids = data.get("ids") if isinstance(data, dict) else None
        if not isinstance(ids, list):
            raise ManifestError(f"Manifest {self.path} has no 'ids' list")
        return {str(i) for i in ids}

    def save(self, id_set: set[str]) -> None:
        """Persist atomically; an interrupted save leaves the previous manifest intact."""
        atomic_write_json(self.path, {"ids": sorted(id_set)})
        logger.info("Saved manifest", path=str(self.path), ids=len(id_set))

    @staticmethod
    def diff(previous: set[str], current: set[str]) -> ManifestDiff:
        """``to_add`` = current - previous, ``to_delete`` = previous - current."""
        return ManifestDiff(
            to_add=sorted(current - previous),
            to_delete=sorted(previous - current),
        )
