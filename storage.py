"""
Local persisted key/value state.

Stands where a browser keeps localStorage: each key is a JSON file under a
namespace directory, so a cart or a chosen location survives a restart.
"""
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class LocalStorage:
    def __init__(self, base_dir: Union[str, Path], namespace: Optional[str] = None):
        self.root = Path(base_dir)
        if namespace:
            self.root = self.root / _SAFE_KEY.sub("_", namespace)

    def _path(self, key: str) -> Path:
        return self.root / f"{_SAFE_KEY.sub('_', key)}.json"

    def get_item(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            # Corrupt state reads as absent, like a bad localStorage entry
            logger.warning("local_storage_read_failed", key=key, error=str(e))
            return None

    def set_item(self, key: str, value: Any) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        # one temp file per writer, so concurrent writes of a key never share it
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", dir=self.root, prefix=f".{path.stem}.",
                                         suffix=".tmp", delete=False) as tmp:
            json.dump(value, tmp)
        try:
            os.replace(tmp.name, path)
        except OSError:
            os.unlink(tmp.name)
            raise

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
