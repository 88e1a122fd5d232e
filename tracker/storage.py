from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote


logger = logging.getLogger(__name__)


def _key_to_filename(key: str) -> str:
    # percent-encoding keeps distinct keys on distinct files
    return f"{quote(key, safe='')}.json"


class JsonStore:
    """Key-value persistence: one JSON document per key inside ``directory``.

    Holds achievement records and managed staff, standards and groups.
    Errors are logged and degrade to the caller's default instead of
    propagating.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / _key_to_filename(key)

    def save(self, key: str, data: Any) -> bool:
        logger.info("Saving data for key: %s", key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path = self.path_for(key)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
            tmp.replace(path)
            return True
        except Exception:
            logger.exception("save for %s failed", key)
            return False

    def load(self, key: str, default: Optional[Any] = None) -> Any:
        logger.info("Loading data for key: %s", key)
        path = self.path_for(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except Exception:
            logger.exception("load for %s failed", key)
            return default

    def delete(self, key: str) -> bool:
        logger.info("Deleting data for key: %s", key)
        try:
            self.path_for(key).unlink(missing_ok=True)
            return True
        except Exception:
            logger.exception("delete for %s failed", key)
            return False

    def clear(self) -> bool:
        logger.info("Clearing all data in %s", self.directory)
        if not self.directory.exists():
            return True
        try:
            for path in [*self.directory.glob("*.json"), *self.directory.glob("*.json.tmp")]:
                path.unlink()
            return True
        except Exception:
            logger.exception("clear failed")
            return False
