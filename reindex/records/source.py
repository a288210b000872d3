"""Record source interface and JSON export implementation."""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from reindex.exceptions import ErrorCode, SourceReadError
from reindex.logging_config import get_logger
from reindex.records.models import RawRecord

logger = get_logger(__name__)


class RecordSource(ABC):
    """Abstract base class for upstream record sources.

    A source is pulled once per run and returns every record it holds.
    """

    @abstractmethod
    async def fetch(self) -> list[RawRecord]:
        """Read all raw records.

        Returns:
            Raw records tagged with their source-declared group.

        Raises:
            SourceReadError: If the source cannot be read.
        """
        ...


class StaticRecordSource(RecordSource):
    """Source over records already held in memory."""

    def __init__(self, records: list[RawRecord]) -> None:
        self._records = list(records)

    async def fetch(self) -> list[RawRecord]:
        """Return the held records."""
        return list(self._records)


class JSONExportSource(RecordSource):
    """Source reading a JSON content export.

    The export is either an object with one array per content type or a
    bare array whose items carry their own ``type``. When pointed at a
    directory the most recently modified ``*.json`` file is used.
    """

    GROUP_KEYS = ("routes", "venues", "curations", "group_ups", "groupUps", "survival_guides")

    def __init__(self, path: str | Path, encoding: str = "utf-8") -> None:
        """Initialize the export source.

        Args:
            path: Export file or directory holding exports.
            encoding: Text encoding of the export.
        """
        self.path = Path(path)
        self.encoding = encoding

    async def fetch(self) -> list[RawRecord]:
        """Read and flatten the export."""
        return await asyncio.to_thread(self._read)

    def resolve_file(self) -> Path:
        """Return the export file this source will read.

        Raises:
            SourceReadError: If no export file can be found.
        """
        if self.path.is_file():
            return self.path

        if self.path.is_dir():
            candidates = [p for p in self.path.glob("*.json") if p.is_file()]
            if not candidates:
                raise SourceReadError(
                    f"No JSON export found in {self.path}",
                    details={"path": str(self.path)},
                )
            latest = max(candidates, key=lambda p: p.stat().st_mtime)
            logger.info(f"Using latest export file: {latest.name}")
            return latest

        raise SourceReadError(
            f"Export not found: {self.path}",
            details={"path": str(self.path)},
        )

    def _read(self) -> list[RawRecord]:
        file_path = self.resolve_file()

        try:
            data = json.loads(file_path.read_text(encoding=self.encoding))
        except UnicodeDecodeError as e:
            raise SourceReadError(
                f"Failed to decode export: {file_path}",
                details={"path": str(file_path), "encoding": self.encoding, "error": str(e)},
            ) from e
        except json.JSONDecodeError as e:
            raise SourceReadError(
                f"Export is not valid JSON: {file_path}",
                details={"path": str(file_path), "error": str(e)},
            ) from e
        except OSError as e:
            raise SourceReadError(
                f"Failed to read export: {file_path}",
                details={"path": str(file_path), "error": str(e)},
            ) from e

        records = self._flatten(data)
        if not records:
            raise SourceReadError(
                f"Export contains no record arrays: {file_path}",
                code=ErrorCode.SOURCE_EMPTY,
                details={"path": str(file_path)},
            )

        logger.info(
            f"Read {len(records)} records from {file_path.name}",
            extra={"path": str(file_path)},
        )
        return records

    def _flatten(self, data: Any) -> list[RawRecord]:
        if isinstance(data, list):
            return [
                RawRecord(group=_item_group(item), ordinal=i, data=item)
                for i, item in enumerate(data)
            ]

        if not isinstance(data, dict):
            return []

        records: list[RawRecord] = []
        for key in self.GROUP_KEYS:
            items = data.get(key)
            if not isinstance(items, list):
                continue
            logger.debug(f"Found array '{key}' with {len(items)} items")
            records.extend(
                RawRecord(group=key, ordinal=i, data=item) for i, item in enumerate(items)
            )
        return records


def _item_group(item: Any) -> str | None:
    """Group for a bare-array item: its ``type`` label, ``default`` when absent.

    Non-object items and labels that are not strings get no group, so the
    normalizer skips them instead of the whole export failing.
    """
    if not isinstance(item, dict):
        return None
    label = item.get("type")
    if label is None or label == "":
        return "default"
    if isinstance(label, str):
        return label
    return None
