"""
Mark/upsert/sweep reconciliation of one entity type for one tenant.

1. mark   - flag every local entity of the tenant ``outdated``
2. upsert - write each validated record inside its own SAVEPOINT, clearing
            the flag; failures are collected, and only a worker soft time
            limit propagates
3. sweep  - delete entities still flagged, except those whose upstream id
            was in the validated fetch

The phases are a strict barrier: each one must finish before the next is
allowed to start, and calling them out of order raises
``ReconciliationStateError``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from celery.exceptions import SoftTimeLimitExceeded

from catalog_sync.database.repository import CatalogRepository
from catalog_sync.services.normalization import extract_upstream_id
from catalog_sync.utils.exceptions import ReconciliationStateError, RecordUpsertError
from catalog_sync.utils.logger import get_logger


logger = get_logger(__name__)

Normalizer = Callable[[Dict[str, Any]], Dict[str, Any]]
FieldHook = Callable[[Dict[str, Any]], Dict[str, Any]]

MAX_ERROR_TEXT = 1000


class ReconciliationPhase(Enum):
    IDLE = "idle"
    MARKED = "marked"
    UPSERTED = "upserted"
    SWEPT = "swept"


@dataclass
class ReconciliationResult:
    """Counts and errors for one entity type."""

    entity: str
    synced_count: int = 0
    deleted_count: int = 0
    errors: List[str] = field(default_factory=list)
    marked_count: int = 0
    synced_ids: Dict[str, str] = field(default_factory=dict)  # upstream id -> local id
    failed_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "synced_count": self.synced_count,
            "deleted_count": self.deleted_count,
            "errors": list(self.errors),
        }


class ReconciliationEngine:
    """
    Converges a tenant's stored entities to a validated fetched set.

    One engine instance performs one run: mark, upsert, sweep. Every write
    goes through the repository, and every query is scoped to ``tenant_id``.
    """

    def __init__(self, repository: CatalogRepository, tenant_id: str,
                 normalizer: Normalizer, field_hook: Optional[FieldHook] = None):
        """
        Args:
            repository: Persistence for the entity type being reconciled
            tenant_id: Local tenant id all writes are attributed to
            normalizer: Maps a raw upstream record to column values
            field_hook: Optional post-normalization step (e.g. parent linking)
        """
        self.repository = repository
        self.tenant_id = tenant_id
        self.normalizer = normalizer
        self.field_hook = field_hook
        self.phase = ReconciliationPhase.IDLE
        self.result = ReconciliationResult(entity=repository.entity_name)
        self._fetched_ids: Set[str] = set()

    @property
    def entity(self) -> str:
        return self.result.entity

    def _require(self, expected: ReconciliationPhase, action: str) -> None:
        if self.phase is not expected:
            raise ReconciliationStateError(
                f"Cannot {action} {self.entity} in phase {self.phase.value}; "
                f"expected {expected.value}",
                {"tenant_id": self.tenant_id, "entity": self.entity},
            )

    def mark(self) -> int:
        """
        Phase 1: flag every stored entity of the tenant as outdated.

        Returns:
            Number of entities newly flagged
        """
        self._require(ReconciliationPhase.IDLE, "mark")

        marked = 0
        for entity in self.repository.list_active(self.tenant_id):
            entity.outdated = True
            marked += 1
        self.repository.session.flush()

        self.result.marked_count = marked
        self.phase = ReconciliationPhase.MARKED
        logger.debug(f"Marked {marked} {self.entity} outdated for tenant {self.tenant_id}")
        return marked

    def upsert(self, records: List[Dict[str, Any]]) -> ReconciliationResult:
        """
        Phase 2: write each validated record.

        Every record's upstream id joins the sweep exclusion set before it is
        written, so a record that fails here is never swept as stale.
        """
        self._require(ReconciliationPhase.MARKED, "upsert")

        for record in records:
            upstream_id = extract_upstream_id(record)
            if upstream_id is None:
                self._collect_failure(None, "record has no upstream id")
                continue

            self._fetched_ids.add(upstream_id)
            try:
                entity = self._upsert_one(upstream_id, record)
            except SoftTimeLimitExceeded:
                raise
            except Exception as e:
                self._collect_failure(upstream_id, str(e) or type(e).__name__)
                continue

            self.result.synced_count += 1
            self.result.synced_ids[upstream_id] = entity.id

        self.phase = ReconciliationPhase.UPSERTED
        logger.debug(
            f"Upserted {self.result.synced_count}/{len(records)} {self.entity} "
            f"for tenant {self.tenant_id}"
        )
        return self.result

    def _upsert_one(self, upstream_id: str, record: Dict[str, Any]):
        fields = self.normalizer(record)
        if self.field_hook:
            fields = self.field_hook(fields)

        fields["upstream_id"] = upstream_id
        fields["outdated"] = False
        fields["sync_error"] = None
        fields["last_synced_at"] = datetime.utcnow()

        with self.repository.savepoint():
            existing = self.repository.find_by_upstream(self.tenant_id, upstream_id)
            if existing is not None:
                return self.repository.patch(existing, fields)
            return self.repository.insert(self.tenant_id, fields)

    def _collect_failure(self, upstream_id: Optional[str], reason: str) -> None:
        error = RecordUpsertError(
            f"Failed to sync {self.entity} {upstream_id or '<unknown>'}: {reason}",
            entity=self.entity,
            upstream_id=upstream_id,
        )
        logger.error(error.message)
        self.result.errors.append(error.message)

        if upstream_id is None:
            return
        self.result.failed_ids.append(upstream_id)
        self._record_sync_error(upstream_id, reason)

    def _record_sync_error(self, upstream_id: str, reason: str) -> None:
        """Keep a failed existing entity and note the error on it."""
        try:
            with self.repository.savepoint():
                existing = self.repository.find_by_upstream(self.tenant_id, upstream_id)
                if existing is not None:
                    self.repository.patch(existing, {
                        "outdated": False,
                        "sync_error": reason[:MAX_ERROR_TEXT],
                    })
        except SoftTimeLimitExceeded:
            raise
        except Exception as e:
            logger.error(
                f"Could not record sync error on {self.entity} {upstream_id}: {e}"
            )

    def sweep(self, delete: bool = True) -> int:
        """
        Phase 3: delete entities still flagged outdated.

        Args:
            delete: When False (fetch was truncated), only clear the flags;
                entities beyond the page limit were not seen and are kept

        Returns:
            Number of entities deleted
        """
        self._require(ReconciliationPhase.UPSERTED, "sweep")

        deleted = 0
        for entity in self.repository.list_outdated(self.tenant_id):
            if not delete or entity.upstream_id in self._fetched_ids:
                entity.outdated = False
                continue
            try:
                with self.repository.savepoint():
                    self.repository.delete(entity)
            except SoftTimeLimitExceeded:
                raise
            except Exception as e:
                message = f"Failed to delete {self.entity} {entity.upstream_id}: {e}"
                logger.error(message)
                self.result.errors.append(message)
                continue
            deleted += 1
            logger.debug(f"Deleted stale {self.entity} {entity.upstream_id} for tenant {self.tenant_id}")

        self.repository.session.flush()
        self.result.deleted_count = deleted
        self.phase = ReconciliationPhase.SWEPT
        return deleted

    def run(self, records: List[Dict[str, Any]], complete: bool = True) -> ReconciliationResult:
        """
        Run mark, upsert and sweep for one validated batch.

        Args:
            records: Validated upstream records
            complete: False when the fetch was truncated; nothing is deleted
        """
        self.mark()
        self.upsert(records)
        self.sweep(delete=complete)

        logger.info(
            f"Reconciled {self.entity} for tenant {self.tenant_id}: "
            f"synced={self.result.synced_count}, deleted={self.result.deleted_count}, "
            f"errors={len(self.result.errors)}"
        )
        return self.result
