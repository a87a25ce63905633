"""JSON-file record store: one list of records per collection file."""

import json
import logging
import os
import tempfile
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

from storageroom.models import BucketRecord

logger = logging.getLogger(__name__)

PROJECTS = "projects.json"
BUCKETS = "buckets.json"
FILES = "files.json"

Record = dict[str, Any]


class RecordStore:
    """Keyed-list CRUD over ``<data_dir>/<collection>.json`` files.

    Every record carries a stable ``id`` assigned at creation.
    """

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)

    def _path(self, collection: str) -> Path:
        return self.data_dir / collection

    def read(self, collection: str) -> list[Record]:
        path = self._path(collection)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise ValueError(f"{path} is not valid JSON: {e}") from e
        if not isinstance(data, list):
            raise ValueError(f"{path} must contain a JSON list")
        return data

    def write(self, collection: str, records: list[Record]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(collection)
        fd, tmp = tempfile.mkstemp(dir=self.data_dir, prefix=f".{collection}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
            os.replace(tmp, path)
        except BaseException:
            os.unlink(tmp)
            raise

    def append(self, collection: str, record: Record) -> Record:
        record = dict(record)
        record.setdefault("id", str(uuid.uuid4()))
        records = self.read(collection)
        records.append(record)
        self.write(collection, records)
        return record

    def find(self, collection: str, record_id: str) -> Record | None:
        return next((r for r in self.read(collection) if r.get("id") == record_id), None)

    def filter(self, collection: str, predicate: Callable[[Record], bool]) -> list[Record]:
        return [r for r in self.read(collection) if predicate(r)]

    def update(self, collection: str, record_id: str, fields: Record) -> Record | None:
        records = self.read(collection)
        for i, record in enumerate(records):
            if record.get("id") == record_id:
                records[i] = {**record, **fields, "id": record_id}
                self.write(collection, records)
                return records[i]
        return None

    def delete(self, collection: str, record_id: str) -> bool:
        records = self.read(collection)
        remaining = [r for r in records if r.get("id") != record_id]
        if len(remaining) == len(records):
            return False
        self.write(collection, remaining)
        return True

    # -- bucket helpers ---------------------------------------------------

    def buckets(self) -> list[BucketRecord]:
        return [BucketRecord.from_dict(r) for r in self.read(BUCKETS)]

    def bucket(self, bucket_id: str) -> BucketRecord | None:
        data = self.find(BUCKETS, bucket_id)
        return BucketRecord.from_dict(data) if data else None

    def remove_bucket(self, record: BucketRecord) -> None:
        """Delete a bucket record together with its file index entries."""
        self.delete(BUCKETS, record.id)
        files = self.read(FILES)
        remaining = [f for f in files if f.get("bucketName") != record.s3_bucket_name]
        if len(remaining) != len(files):
            self.write(FILES, remaining)
            dropped = len(files) - len(remaining)
            logger.info("Dropped %d file record(s) for %s", dropped, record.s3_bucket_name)
