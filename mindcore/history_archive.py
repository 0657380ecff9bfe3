"""Durable archive of evicted conversation turns.

One JSON array file per session start, named by the start timestamp, under
``<bots_dir>/<agent>/histories/``. The file is created lazily on the first
archival and then rewritten whole on every append.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from mindcore.errors import PersistenceError
from mindcore.turns import Turn, turns_to_dicts

logger = logging.getLogger(__name__)


class HistoryArchive:
    """Append-only archive of evicted turns for one agent session.

    Args:
        histories_dir: Directory holding the per-session archive files.
        session_start: Session start time used to name the file.
    """

    def __init__(self, histories_dir: Path, *, session_start: datetime = None):
        self._histories_dir = Path(histories_dir)
        self._session_start = session_start or datetime.now()
        self._archive_file: Optional[Path] = None

    @property
    def archive_file(self) -> Optional[Path]:
        """Path of the archive file, or None before the first archival."""
        return self._archive_file

    def _ensure_file(self) -> Path:
        if self._archive_file is None:
            self._histories_dir.mkdir(parents=True, exist_ok=True)
            stamp = self._session_start.strftime("%Y-%m-%d_%H-%M-%S")
            self._archive_file = self._histories_dir / f"{stamp}.json"
            if not self._archive_file.exists():
                self._archive_file.write_text("[]", encoding="utf-8")
        return self._archive_file

    def append(self, turns: Iterable[Turn]) -> None:
        """Append ``turns`` to the session archive (read-modify-write)."""
        try:
            path = self._ensure_file()
            with open(path, "r", encoding="utf-8") as f:
                full_history = json.load(f)
            full_history.extend(turns_to_dicts(turns))
            with open(path, "w", encoding="utf-8") as f:
                json.dump(full_history, f, indent=4, ensure_ascii=False)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to archive history to {self._archive_file}: {e}") from e
        logger.debug("Archived turns to %s", path)
