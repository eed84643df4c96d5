# core/storage.py
"""JSON file persistence for registry and offline cache records."""

import json
import logging
import os
import shutil
import time
from typing import Any, Dict, List

from davmount.utils.helpers import atomic_write

logger = logging.getLogger(__name__)


class JsonRecordFile:
    """
    Ordered list of JSON records stored in one file.

    The file holds ``{"version": 1, "records": [...]}``. Writes go through a
    temporary file so a crash never leaves a half-written document. Callers
    provide their own locking.
    """

    VERSION = 1

    def __init__(self, path: str):
        self.path = path
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    def load(self) -> List[Dict[str, Any]]:
        """Load all records, backing up and resetting an unreadable file."""
        if not os.path.exists(self.path):
            logger.debug(f"Record file not found: {self.path}")
            return []

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Error reading {self.path}: {e}")
            self._backup_corrupted_file()
            return []

        records = data.get('records') if isinstance(data, dict) else None
        if not isinstance(records, list):
            logger.error(f"Unexpected layout in {self.path}")
            self._backup_corrupted_file()
            return []

        return [r for r in records if isinstance(r, dict)]

    def save(self, records: List[Dict[str, Any]]):
        """Replace the file content with records."""
        payload = {'version': self.VERSION, 'records': records}
        data = json.dumps(payload, indent=2, ensure_ascii=False)
        atomic_write(self.path, data.encode('utf-8'))
        logger.debug(f"Saved {len(records)} records to {self.path}")

    def _backup_corrupted_file(self):
        """Create backup of a corrupted record file."""
        try:
            backup_file = f"{self.path}.corrupted.{int(time.time())}"
            shutil.copy2(self.path, backup_file)
            logger.warning(f"Corrupted file backed up to {backup_file}")
        except OSError as e:
            logger.error(f"Error backing up corrupted file: {e}")
