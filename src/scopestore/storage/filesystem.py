"""File system row backend for scopestore."""

import logging
import os
import re
import tempfile
from enum import Enum
from io import StringIO
from pathlib import Path
from typing import Any, Optional, Union

import ruamel.yaml
from ruamel.yaml.error import YAMLError

from ..errors import RowReadError
from ..models import ABSENT

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.\-]+$")


def _plain(obj: Any) -> Any:
    """Convert YAML round-trip containers and enums to plain Python values."""
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_plain(item) for item in obj]
    elif isinstance(obj, Enum):
        return obj.value
    else:
        return obj


class FileSystemBackend:
    """Row backend storing one YAML document per row.

    Layout: ``<root>/<table>/<name>.yaml`` holding ``autoload`` and
    ``value`` entries.
    """

    def __init__(self, root: Path):
        """Initialize backend with root path."""
        self.root_path = Path(root)
        self.yaml = ruamel.yaml.YAML()
        self.yaml.preserve_quotes = True
        self.yaml.indent(mapping=2, sequence=4, offset=2)

    def get(self, table: str, name: str) -> Any:
        document = self._load_row(self._get_row_path(table, name))
        if document is ABSENT:
            return ABSENT
        return document.get("value")

    def add(self, table: str, name: str, value: Any, autoload: Optional[bool]) -> bool:
        row_path = self._get_row_path(table, name)
        content = self._dump({"autoload": autoload, "value": value})
        if content is None:
            return False
        return self._atomic_write(row_path, content, exclusive=True)

    def put(self, table: str, name: str, value: Any) -> bool:
        row_path = self._get_row_path(table, name)
        # Keep the autoload flag recorded at creation
        existing = self._load_row(row_path)
        autoload = existing.get("autoload") if existing is not ABSENT else None
        content = self._dump({"autoload": autoload, "value": value})
        if content is None:
            return False
        return self._atomic_write(row_path, content)

    def autoload_of(self, table: str, name: str) -> Optional[bool]:
        document = self._load_row(self._get_row_path(table, name))
        if document is ABSENT:
            return None
        return document.get("autoload")

    def list_paths(self) -> list[Path]:
        """List all row file paths in storage."""
        if not self.root_path.exists():
            return []

        return sorted(self.root_path.rglob("*.yaml"))

    def _get_row_path(self, table: str, name: str) -> Path:
        """Get the file path for a row."""
        for part in (table, name):
            if not part or not _SAFE_NAME.match(part) or part in (".", ".."):
                raise ValueError(f"Invalid row identifier: {table}/{name}")

        return self.root_path / table / f"{name}.yaml"

    def _load_row(self, path: Path) -> Union[dict[str, Any], Any]:
        """Load a row document, returning ABSENT when the file does not exist.

        Raises:
            RowReadError: the file exists but is unreadable or malformed
        """
        if not path.exists():
            return ABSENT

        try:
            with open(path, encoding="utf-8") as f:
                data = self.yaml.load(f)
        except (OSError, YAMLError) as e:
            logger.error(f"Error loading {path}: {e}")
            raise RowReadError(f"Cannot read row file {path}: {e}") from e

        if not isinstance(data, dict) or "value" not in data:
            logger.error(f"Malformed row file {path}")
            raise RowReadError(f"Malformed row file {path}")

        return _plain(data)

    def _dump(self, document: dict[str, Any]) -> Optional[str]:
        """Serialize a row document, returning None when it cannot be represented."""
        stream = StringIO()
        try:
            self.yaml.dump(_plain(document), stream)
        except YAMLError as e:
            logger.warning(f"Cannot serialize row: {e}")
            return None
        return stream.getvalue()

    def _atomic_write(self, path: Path, content: str, exclusive: bool = False) -> bool:
        """Write content to file atomically.

        With ``exclusive`` the write fails when the target already exists.
        """
        temp_fd = None
        temp_path = None

        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            # Create temporary file in same directory
            temp_fd, temp_path_str = tempfile.mkstemp(
                dir=path.parent, prefix=f"{path.name}.tmp.", suffix=".tmp"
            )
            temp_path = Path(temp_path_str)

            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())  # Force write to disk

            temp_fd = None  # Don't close again in finally

            if exclusive:
                # link() refuses to replace an existing file
                os.link(temp_path, path)
            else:
                temp_path.replace(path)
            return True

        except FileExistsError:
            logger.debug(f"Row {path} already exists; create skipped")
            return False
        except OSError as e:
            logger.warning(f"Failed to write {path}: {e}")
            return False

        finally:
            if temp_fd is not None:
                os.close(temp_fd)
            if temp_path and temp_path.exists():
                temp_path.unlink(missing_ok=True)
