"""
Storage for reusable records: saved sellers, witnesses and draft jobs.

Two backends share one interface:

* ``DynamoRecordStore`` - one DynamoDB table per collection (``id`` hash key),
  used in production through boto3.
* ``LocalRecordStore`` - one JSON file per record under a base directory,
  handy for local development without AWS credentials.

Jobs expire 48 hours after creation; listing jobs sweeps the expired ones
first. There is no locking: the last write wins.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .models import ContractForm, SavedJob, Seller, Witness

logger = logging.getLogger(__name__)

SELLERS = "sellers"
WITNESSES = "witnesses"
JOBS = "savedJobs"
PERSON_COLLECTIONS = (SELLERS, WITNESSES)
COLLECTIONS = (SELLERS, WITNESSES, JOBS)

JOB_EXPIRY_HOURS = 48


class RecordStoreError(RuntimeError):
    """Raised when the backing store rejects a read or write."""


class RecordNotFound(RecordStoreError):
    """Raised when deleting a record that does not exist."""


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _iso(moment: dt.datetime) -> str:
    return moment.astimezone(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(value: Optional[str]) -> Optional[dt.datetime]:
    if not value:
        return None
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


_EPOCH = dt.datetime.min.replace(tzinfo=dt.timezone.utc)


def _sort_key(created_at: Optional[str]) -> dt.datetime:
    return _parse_iso(created_at) or _EPOCH


def _newest_first(items: List[Dict]) -> List[Dict]:
    return sorted(items, key=lambda item: _sort_key(item.get("created_at")), reverse=True)


class RecordStore:
    """Collection-level operations; subclasses implement the raw item access."""

    def __init__(self, clock: Callable[[], dt.datetime] = utcnow, job_expiry_hours: int = JOB_EXPIRY_HOURS):
        self.clock = clock
        self.job_expiry = dt.timedelta(hours=job_expiry_hours)

    # -- raw access -----------------------------------------------------
    def _put(self, collection: str, item: Dict) -> None:
        raise NotImplementedError

    def _scan(self, collection: str) -> List[Dict]:
        raise NotImplementedError

    def _delete(self, collection: str, record_id: str) -> bool:
        raise NotImplementedError

    def _delete_many(self, collection: str, record_ids: Iterable[str]) -> None:
        for record_id in record_ids:
            self._delete(collection, record_id)

    # -- persons --------------------------------------------------------
    def save_seller(self, seller: Seller) -> str:
        item = seller.model_dump(exclude={"id", "created_at"})
        return self._insert(SELLERS, item)

    def list_sellers(self) -> List[Seller]:
        return [Seller(**item) for item in _newest_first(self._scan(SELLERS))]

    def save_witness(self, witness: Witness) -> str:
        item = witness.model_dump(exclude={"id", "created_at"})
        return self._insert(WITNESSES, item)

    def list_witnesses(self) -> List[Witness]:
        return [Witness(**item) for item in _newest_first(self._scan(WITNESSES))]

    def delete_person(self, collection: str, record_id: str) -> None:
        if collection not in PERSON_COLLECTIONS:
            raise ValueError(f"Unknown person collection '{collection}'")
        self._delete_or_raise(collection, record_id)

    # -- jobs -----------------------------------------------------------
    def save_job(self, form: ContractForm) -> str:
        item = {
            "form_data_json": form.model_dump_json(),
            "rendszam": form.job_display_name(),
        }
        return self._insert(JOBS, item)

    def list_jobs(self) -> List[SavedJob]:
        cutoff = self.clock() - self.job_expiry
        jobs: List[SavedJob] = []
        expired: List[str] = []

        for item in self._scan(JOBS):
            created = _parse_iso(item.get("created_at"))
            if created is not None and created < cutoff:
                expired.append(item["id"])
                continue
            try:
                form = ContractForm.model_validate_json(item.get("form_data_json") or "{}")
            except ValueError as exc:
                logger.warning("Skipping job %s with unreadable form data: %s", item.get("id"), exc)
                continue
            jobs.append(
                SavedJob(
                    id=item["id"],
                    form_data=form,
                    created_at=item.get("created_at") or _iso(self.clock()),
                    rendszam=form.rendszam or item.get("rendszam", ""),
                )
            )

        if expired:
            try:
                self._delete_many(JOBS, expired)
                logger.info("Removed %d expired jobs", len(expired))
            except RecordStoreError as exc:
                logger.warning("Couldn't clean up expired jobs: %s", exc)

        jobs.sort(key=lambda job: _sort_key(job.created_at), reverse=True)
        return jobs

    def get_job(self, job_id: str) -> Optional[SavedJob]:
        for job in self.list_jobs():
            if job.id == job_id:
                return job
        return None

    def delete_job(self, job_id: str) -> None:
        self._delete_or_raise(JOBS, job_id)

    # -- helpers --------------------------------------------------------
    def _insert(self, collection: str, item: Dict) -> str:
        record_id = uuid.uuid4().hex
        record = dict(item, id=record_id, created_at=_iso(self.clock()))
        self._put(collection, record)
        logger.info("Saved %s record %s", collection, record_id)
        return record_id

    def _delete_or_raise(self, collection: str, record_id: str) -> None:
        if not self._delete(collection, record_id):
            raise RecordNotFound(f"No {collection} record with id '{record_id}'")
        logger.info("Deleted %s record %s", collection, record_id)


class LocalRecordStore(RecordStore):
    """JSON files under ``<base_dir>/<collection>/<id>.json``."""

    def __init__(self, base_dir: Path, **kwargs):
        super().__init__(**kwargs)
        self.base_dir = Path(base_dir)
        for collection in COLLECTIONS:
            self._collection_dir(collection).mkdir(parents=True, exist_ok=True)

    def _collection_dir(self, collection: str) -> Path:
        return self.base_dir / collection

    def _put(self, collection: str, item: Dict) -> None:
        target = self._collection_dir(collection) / f"{item['id']}.json"
        try:
            with target.open("w", encoding="utf-8") as f:
                json.dump(item, f, indent=2, ensure_ascii=False)
        except OSError as exc:
            raise RecordStoreError(f"Error saving {collection}/{item['id']}: {exc}") from exc

    def _scan(self, collection: str) -> List[Dict]:
        items = []
        for record_file in self._collection_dir(collection).glob("*.json"):
            try:
                with record_file.open("r", encoding="utf-8") as f:
                    items.append(json.load(f))
            except (OSError, json.JSONDecodeError) as exc:
                logger.error("Error reading %s: %s", record_file, exc)
        return items

    def _delete(self, collection: str, record_id: str) -> bool:
        target = self._collection_dir(collection) / f"{Path(record_id).name}.json"
        if not target.exists():
            return False
        try:
            target.unlink()
        except OSError as exc:
            raise RecordStoreError(f"Error deleting {collection}/{record_id}: {exc}") from exc
        return True


class DynamoRecordStore(RecordStore):
    """One DynamoDB table per collection, named ``<prefix><collection>``."""

    def __init__(
        self,
        table_prefix: str = "",
        region_name: Optional[str] = None,
        dynamodb=None,
        tables: Optional[Dict[str, object]] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        if tables is None:
            dynamodb = dynamodb or boto3.resource("dynamodb", region_name=region_name)
            tables = {c: dynamodb.Table(f"{table_prefix}{c}") for c in COLLECTIONS}
        self.tables = tables

    def _put(self, collection: str, item: Dict) -> None:
        try:
            self.tables[collection].put_item(Item=item)
        except (BotoCoreError, ClientError) as exc:
            raise RecordStoreError(f"Error saving to {collection}: {exc}") from exc

    def _scan(self, collection: str) -> List[Dict]:
        table = self.tables[collection]
        items: List[Dict] = []
        kwargs: Dict = {}
        try:
            while True:
                response = table.scan(**kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except (BotoCoreError, ClientError) as exc:
            raise RecordStoreError(f"Error reading {collection}: {exc}") from exc
        return items

    def _delete(self, collection: str, record_id: str) -> bool:
        try:
            response = self.tables[collection].delete_item(
                Key={"id": record_id}, ReturnValues="ALL_OLD"
            )
        except (BotoCoreError, ClientError) as exc:
            raise RecordStoreError(f"Error deleting from {collection}: {exc}") from exc
        return bool(response.get("Attributes"))

    def _delete_many(self, collection: str, record_ids: Iterable[str]) -> None:
        try:
            with self.tables[collection].batch_writer() as batch:
                for record_id in record_ids:
                    batch.delete_item(Key={"id": record_id})
        except (BotoCoreError, ClientError) as exc:
            raise RecordStoreError(f"Error deleting from {collection}: {exc}") from exc


def create_record_store() -> RecordStore:
    """Pick the backend from ``RECORD_STORE`` (``dynamodb`` or ``local``)."""
    backend = os.getenv("RECORD_STORE", "local").lower()
    if backend == "dynamodb":
        return DynamoRecordStore(
            table_prefix=os.getenv("DYNAMODB_TABLE_PREFIX", "contract_"),
            region_name=os.getenv("AWS_REGION", "eu-central-1"),
        )
    if backend != "local":
        raise RecordStoreError(f"Unknown RECORD_STORE backend '{backend}'")
    base_dir = Path(os.getenv("RECORD_STORE_DIR") or Path(__file__).resolve().parent / "user_data")
    return LocalRecordStore(base_dir)
