"""
Record store adapter for clinic resources.

Stands in for the relational database behind the API. Records are plain
dictionaries grouped by collection name.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from shared.errors import NotFoundError, ValidationError
from shared.logging import get_logger


COLLECTIONS = (
    "clinics",
    "patients",
    "doctors",
    "appointments",
    "visits",
    "medical-records",
    "lab-requests",
)

_RESERVED_FIELDS = ("id", "created_at", "updated_at")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class InMemoryRecordStore:
    """Async CRUD over named collections."""

    def __init__(self, collections=COLLECTIONS):
        self.logger = get_logger("clinic.records")
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in collections}
        self._lock = asyncio.Lock()

    @property
    def collections(self) -> List[str]:
        return list(self._collections)

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        try:
            return self._collections[name]
        except KeyError:
            raise NotFoundError(f"Unknown collection '{name}'", details={"collection": name}) from None

    @staticmethod
    def _validate_payload(data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ValidationError("Record payload must be a JSON object")
        return {key: value for key, value in data.items() if key not in _RESERVED_FIELDS}

    async def list_records(self, collection: str, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """Return records ordered by creation, optionally filtered by text search."""
        records = list(self._collection(collection).values())
        if search:
            needle = search.lower()
            records = [
                record for record in records
                if any(isinstance(value, str) and needle in value.lower() for value in record.values())
            ]
        return [dict(record) for record in records]

    async def get_record(self, collection: str, record_id: str) -> Dict[str, Any]:
        record = self._collection(collection).get(record_id)
        if record is None:
            raise NotFoundError(
                "Record not found",
                details={"collection": collection, "id": record_id},
            )
        return dict(record)

    async def create_record(self, collection: str, data: Any) -> Dict[str, Any]:
        fields = self._validate_payload(data)
        async with self._lock:
            records = self._collection(collection)
            timestamp = _now()
            record = {"id": str(uuid.uuid4()), **fields, "created_at": timestamp, "updated_at": timestamp}
            records[record["id"]] = record

        self.logger.info("Record created", collection=collection, record_id=record["id"])
        return dict(record)

    async def update_record(self, collection: str, record_id: str, data: Any) -> Dict[str, Any]:
        fields = self._validate_payload(data)
        async with self._lock:
            current = await self.get_record(collection, record_id)
            record = {**current, **fields, "updated_at": _now()}
            self._collection(collection)[record_id] = record

        self.logger.info("Record updated", collection=collection, record_id=record_id)
        return dict(record)

    async def delete_record(self, collection: str, record_id: str) -> None:
        async with self._lock:
            records = self._collection(collection)
            if records.pop(record_id, None) is None:
                raise NotFoundError(
                    "Record not found",
                    details={"collection": collection, "id": record_id},
                )

        self.logger.info("Record deleted", collection=collection, record_id=record_id)

    async def count_records(self) -> Dict[str, int]:
        return {name: len(records) for name, records in self._collections.items()}
