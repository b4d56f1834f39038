"""JSON file cache of per-package analyses.

Two documents live in the cache directory:

    analysis_cache.json     {package_id: PackageAnalysis}
    analyzed_packages.json  [package_id, ...]

Both are rewritten together on every mutation so the analyzed-id set always
matches the keys of the mapping. A document that cannot be parsed is treated
as empty: the packages it covered are simply analyzed again.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from rcspy.models.schemas import PackageAnalysis

logger = logging.getLogger(__name__)

CACHE_FILENAME = "analysis_cache.json"
ANALYZED_FILENAME = "analyzed_packages.json"


class ResultCache:
    """Durable mapping from package id to its last ``PackageAnalysis``.

    Mutations are read-modify-write of the whole mapping, serialized through
    an ``asyncio.Lock`` so concurrent packages of a batch cannot lose each
    other's records.
    """

    def __init__(self, cache_dir: Path):
        """Initialize the cache.

        Args:
            cache_dir: Directory holding the cache documents.
        """
        self.cache_dir = Path(cache_dir)
        self.cache_path = self.cache_dir / CACHE_FILENAME
        self.analyzed_path = self.cache_dir / ANALYZED_FILENAME
        self._lock = asyncio.Lock()
        self._opened = False

    def open(self) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._opened = True

    def close(self) -> None:
        self._opened = False

    def _ensure_open(self) -> None:
        if not self._opened:
            raise RuntimeError("Result cache is not open")

    def _read_json(self, path: Path) -> object | None:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache document {path}: {e}")
            return None

    def _write_json(self, path: Path, data: object) -> None:
        """Write ``data`` to a temporary sibling and atomically replace ``path``."""
        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def load_all(self) -> dict[str, PackageAnalysis]:
        """Load every cached record. A corrupt document yields an empty mapping."""
        raw = self._read_json(self.cache_path)
        if not isinstance(raw, dict):
            if raw is not None:
                logger.warning(f"Cache document {self.cache_path} is not a mapping, ignoring it")
            return {}

        records: dict[str, PackageAnalysis] = {}
        for package_id, data in raw.items():
            try:
                records[package_id] = PackageAnalysis.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Dropping unparsable cache entry {package_id}: {e.error_count()} errors")
        return records

    def analyzed_ids(self) -> set[str]:
        """Ids marked as analyzed that also have a cached record."""
        raw = self._read_json(self.analyzed_path)
        if not isinstance(raw, list):
            return set()
        marked = {item for item in raw if isinstance(item, str)}
        return marked & self.load_all().keys()

    def get(self, package_id: str) -> PackageAnalysis | None:
        return self.load_all().get(package_id)

    def _persist(self, records: dict[str, PackageAnalysis]) -> None:
        self._write_json(
            self.cache_path,
            {package_id: record.model_dump(mode="json") for package_id, record in records.items()},
        )
        self._write_json(self.analyzed_path, sorted(records))

    def _upsert(self, record: PackageAnalysis) -> None:
        records = self.load_all()
        records[record.package_id] = record
        self._persist(records)

    def _discard(self, package_id: str) -> None:
        records = self.load_all()
        records.pop(package_id, None)
        self._persist(records)

    async def save(self, record: PackageAnalysis) -> None:
        """Insert or replace the record of ``record.package_id``."""
        self._ensure_open()
        async with self._lock:
            await asyncio.to_thread(self._upsert, record)

    async def remove(self, package_id: str) -> None:
        """Remove one record and its analyzed marker."""
        self._ensure_open()
        async with self._lock:
            await asyncio.to_thread(self._discard, package_id)

    async def clear_all(self) -> None:
        """Empty both documents."""
        self._ensure_open()
        async with self._lock:
            await asyncio.to_thread(self._persist, {})
        logger.info("Analysis cache cleared")
