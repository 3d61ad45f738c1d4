"""
Local JSON persistence for the manifest and the query caches.
"""

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from ..observability.logging import get_logger

log = get_logger(__name__)


def atomic_write_json(path: Path, obj: Any) -> None:
    """Write JSON to a sibling temp file, then rename it over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(obj, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
    log.debug("Wrote JSON file", path=str(path))


def read_json(path: Path) -> Any:
    """Read a JSON file. Raises ``FileNotFoundError`` or ``ValueError``."""
    return json.loads(path.read_text(encoding="utf-8"))
