import json
import logging
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _load_entries(path: Path) -> Dict[str, str]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            return {str(k): v for k, v in data.items() if isinstance(v, str)}
        logger.warning("Ignoring %s: expected a JSON object", path)
    except FileNotFoundError:
        pass
    except Exception as exc:
        logger.warning("Failed to read %s: %s", path, exc)
    return {}


def _persist_entries(path: Path, entries: Dict[str, str]) -> None:
    try:
        _ensure_parent(path)
        with path.open("w", encoding="utf-8") as f:
            json.dump(entries, f, indent=2)
    except Exception as exc:
        logger.warning("Failed to write %s: %s", path, exc)


class JsonFileStore:
    """
    Key-value persistence in a single JSON file.

    Every ``set``/``remove`` rewrites the whole file; values are opaque strings.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._entries = _load_entries(self.path)

    def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    def set(self, key: str, value: str) -> None:
        self._entries[key] = value
        _persist_entries(self.path, self._entries)

    def remove(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            _persist_entries(self.path, self._entries)
