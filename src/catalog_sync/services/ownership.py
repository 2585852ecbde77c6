"""
Tenant ownership validation for fetched batches.

A record is attributed to a tenant only when its ownership field equals the
tenant's upstream id exactly. Records without a readable owner are excluded
and reported. If any record names a different owner, or carries ownership
fields that disagree with each other, the whole batch is rejected, since
that means either an upstream defect or a misconfigured tenant, and nothing
from the batch may be written.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

from catalog_sync.services.normalization import extract_owner_ids, extract_upstream_id
from catalog_sync.utils.exceptions import ConfigurationError, OwnershipAnomalyError
from catalog_sync.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass
class OwnershipReport:
    """Outcome of validating one fetched batch."""

    expected_owner_id: str
    entity: str
    accepted: List[Dict[str, Any]] = field(default_factory=list)
    anomalies: List[str] = field(default_factory=list)
    owner_ids: Set[str] = field(default_factory=set)

    @property
    def accepted_ids(self) -> Set[str]:
        """Upstream ids of every accepted record."""
        return {extract_upstream_id(record) for record in self.accepted}

    @property
    def excluded_count(self) -> int:
        return len(self.anomalies)


class TenantOwnershipValidator:
    """Validates fetched records against the syncing tenant's upstream id."""

    def validate(self, records: List[Dict[str, Any]], expected_owner_id: str,
                 entity: str = "records") -> OwnershipReport:
        """
        Filter a batch down to records provably owned by the expected owner.

        Args:
            records: Raw upstream records
            expected_owner_id: Syncing tenant's upstream id
            entity: Entity label used in logs and errors

        Returns:
            OwnershipReport with accepted records and excluded-record anomalies

        Raises:
            OwnershipAnomalyError: If any record is owned by someone else
            ConfigurationError: If no expected owner id was given
        """
        if not expected_owner_id:
            raise ConfigurationError("Cannot validate ownership without an expected owner id")

        report = OwnershipReport(expected_owner_id=expected_owner_id, entity=entity)
        seen_ids: Set[str] = set()
        foreign: List[str] = []

        for index, record in enumerate(records):
            upstream_id = extract_upstream_id(record)
            label = upstream_id or f"#{index}"
            owners = extract_owner_ids(record)

            if not owners:
                report.anomalies.append(f"{entity} {label}: missing ownership field, excluded")
                continue

            report.owner_ids.update(owners)
            if len(owners) > 1:
                foreign.append(f"{entity} {label}: ambiguous ownership ({', '.join(owners)})")
                continue

            owner_id = owners[0]
            if owner_id != expected_owner_id:
                foreign.append(f"{entity} {label}: owned by {owner_id}")
                continue

            if upstream_id is None:
                report.anomalies.append(f"{entity} {label}: missing upstream id, excluded")
                continue

            if upstream_id in seen_ids:
                report.anomalies.append(f"{entity} {upstream_id}: duplicate in fetch, later copy ignored")
                continue

            seen_ids.add(upstream_id)
            report.accepted.append(record)

        for anomaly in report.anomalies:
            logger.warning(f"Ownership check ({expected_owner_id}): {anomaly}")

        unexpected = report.owner_ids - {expected_owner_id}
        if unexpected:
            logger.error(
                f"Rejecting {len(records)} {entity} for {expected_owner_id}: "
                f"batch contains records owned by {', '.join(sorted(unexpected))}"
            )
            raise OwnershipAnomalyError(
                f"Fetched {entity} include records owned by "
                f"{', '.join(sorted(unexpected))}, expected only {expected_owner_id}; "
                "batch rejected",
                expected_owner_id=expected_owner_id,
                owner_ids=list(report.owner_ids),
                anomalies=foreign + report.anomalies,
                entity=entity,
            )

        logger.info(
            f"Ownership check ({expected_owner_id}): accepted {len(report.accepted)} "
            f"of {len(records)} {entity}"
        )
        return report
