"""
Local Rule Store

Rules live in a JSON file per user, the desktop equivalent of a browser
key-value slot. The file is rewritten in full on every mutation; writes go
through a temporary file so a crash never leaves half a rule list behind.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import TypeAdapter, ValidationError

from cashboard.config import get_settings
from cashboard.models.rules import AutoRule
from cashboard.services.storage.interface import RuleStoreInterface, StorageError


_RULE_LIST = TypeAdapter(list[AutoRule])


class JsonFileRuleStore(RuleStoreInterface):
    """Rule list serialized as JSON at `<storage_dir>/<storage_key>_<user_id>.json`."""

    def __init__(
        self,
        user_id: str,
        storage_dir: Optional[Path] = None,
        storage_key: Optional[str] = None,
    ):
        settings = get_settings().rule_store
        self._dir = Path(storage_dir or settings.storage_dir)
        key = storage_key or settings.storage_key
        self.path = self._dir / f"{key}_{user_id}.json"

    def load(self) -> list[AutoRule]:
        if not self.path.exists():
            return []
        try:
            return _RULE_LIST.validate_json(self.path.read_bytes())
        except ValidationError as e:
            raise StorageError(f"Rule file is corrupt: {self.path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to read rules: {e}")

    def save(self, rules: list[AutoRule]) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self._dir, suffix=".tmp")
        except OSError as e:
            raise StorageError(f"Failed to save rules: {e}")

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(_RULE_LIST.dump_json(rules, indent=2))
            os.replace(tmp_path, self.path)
        except OSError as e:
            Path(tmp_path).unlink(missing_ok=True)
            raise StorageError(f"Failed to save rules: {e}")
