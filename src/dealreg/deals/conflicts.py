"""Conflict detection between an incoming deal and the existing deal population.

Three detectors run against each existing deal:
- duplicate end user: normalized company-name similarity
- territory overlap: another reseller claiming the same or an equivalent
  territory
- timing: a similar company at a similar value submitted shortly before

Detected conflicts are ranked by severity, then conflict type, then
similarity, and summarized into advisory suggestions.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog

from src.dealreg.core.monitoring import deal_conflicts_detected_total
from src.dealreg.deals.matching import (
    as_utc,
    calculate_similarity,
    check_territory_overlap,
    days_between,
    is_deal_value_similar,
    is_within_time_window,
)
from src.dealreg.deals.schemas import (
    ConflictDetectionResult,
    ConflictSeverity,
    ConflictType,
    DealConflictCreate,
    DealConflictRead,
    DealRead,
    DealStatus,
    DealStatusChange,
    DealSubmission,
    DealSubstatus,
    DetectedConflict,
    ResolutionStatus,
    SimilarDeal,
)
from src.dealreg.deals.store import StoreError

logger = structlog.get_logger(__name__)

SEVERITY_RANK: dict[ConflictSeverity, int] = {
    ConflictSeverity.HIGH: 3,
    ConflictSeverity.MEDIUM: 2,
    ConflictSeverity.LOW: 1,
}

CONFLICT_TYPE_PRIORITY: dict[ConflictType, int] = {
    ConflictType.DUPLICATE_END_USER: 3,
    ConflictType.TERRITORY_OVERLAP: 2,
    ConflictType.TIMING_CONFLICT: 1,
}

SUGGESTION_HIGH_SEVERITY = (
    "High-severity conflicts detected: manual review is required before approval."
)
SUGGESTION_DUPLICATE = (
    "Contact the other reseller or the end customer to confirm which registration is valid."
)
SUGGESTION_TERRITORY = (
    "Review territory assignments and confirm the reseller is authorized for this territory."
)
SUGGESTION_MANY = (
    "Multiple conflicts detected: consider escalating to a manager for resolution."
)


# ── Ranking & Suggestions ───────────────────────────────────────────────────


def prioritize_conflicts(conflicts: list[DetectedConflict]) -> list[DetectedConflict]:
    """Sort by severity desc, then type priority desc, then similarity desc."""
    return sorted(
        conflicts,
        key=lambda c: (
            SEVERITY_RANK[c.severity],
            CONFLICT_TYPE_PRIORITY[c.type],
            c.similarity or 0.0,
        ),
        reverse=True,
    )


def generate_suggestions(conflicts: list[DetectedConflict]) -> list[str]:
    suggestions: list[str] = []
    if any(c.severity == ConflictSeverity.HIGH for c in conflicts):
        suggestions.append(SUGGESTION_HIGH_SEVERITY)
    if any(c.type == ConflictType.DUPLICATE_END_USER for c in conflicts):
        suggestions.append(SUGGESTION_DUPLICATE)
    if any(c.type == ConflictType.TERRITORY_OVERLAP for c in conflicts):
        suggestions.append(SUGGESTION_TERRITORY)
    if len(conflicts) > 2:
        suggestions.append(SUGGESTION_MANY)
    return suggestions


# ── Engine ──────────────────────────────────────────────────────────────────


class ConflictDetectionEngine:
    """Detects and records conflicts between deal registrations.

    Args:
        store: DealStore (or compatible) providing deal lookups and writes.
        scan_limit: Number of most recent deals compared per candidate.
    """

    DUPLICATE_THRESHOLD = 0.85
    HIGH_SIMILARITY_THRESHOLD = 0.95
    EMAIL_SIMILARITY_THRESHOLD = 0.8
    RELATED_COMPANY_THRESHOLD = 0.7
    VALUE_TOLERANCE = 0.2
    TIMING_WINDOW_DAYS = 90

    def __init__(self, store, scan_limit: int = 1000) -> None:
        self._store = store
        self._scan_limit = scan_limit

    async def detect_conflicts(
        self, candidate: DealSubmission, reference_date: datetime | None = None
    ) -> ConflictDetectionResult:
        """Compare a candidate deal against recent deals.

        Args:
            candidate: The incoming deal.
            reference_date: Submission instant used for timing checks;
                defaults to the candidate's submission_date, then now.

        Returns:
            ConflictDetectionResult with ranked conflicts and suggestions.
            A store failure yields an empty result.
        """
        try:
            existing = await self._store.list_recent_deals(
                limit=self._scan_limit, exclude_deal_id=candidate.id
            )
        except StoreError as exc:
            logger.warning(
                "conflict_detection_failed",
                reseller_id=candidate.reseller_id,
                error=str(exc),
            )
            return ConflictDetectionResult()

        submitted_at = (
            reference_date or candidate.submission_date or datetime.now(timezone.utc)
        )
        conflicts: list[DetectedConflict] = []
        for deal in existing:
            conflicts.extend(self.check_deal_conflicts(candidate, deal, submitted_at))

        ranked = prioritize_conflicts(conflicts)
        for conflict in ranked:
            deal_conflicts_detected_total.labels(severity=conflict.severity.value).inc()

        if ranked:
            logger.info(
                "conflicts_detected",
                reseller_id=candidate.reseller_id,
                company_name=candidate.end_user.company_name,
                count=len(ranked),
                highest_severity=ranked[0].severity.value,
            )

        return ConflictDetectionResult(
            has_conflicts=bool(ranked),
            conflicts=ranked,
            suggestions=generate_suggestions(ranked),
        )

    def check_deal_conflicts(
        self, candidate: DealSubmission, existing: DealRead, submitted_at: datetime
    ) -> list[DetectedConflict]:
        """Run every detector for one existing deal."""
        found: list[DetectedConflict] = []
        for detector in (
            self._check_duplicate_end_user,
            self._check_territory_overlap,
            self._check_timing,
        ):
            conflict = detector(candidate, existing, submitted_at)
            if conflict is not None:
                found.append(conflict)
        return found

    def _check_duplicate_end_user(
        self, candidate: DealSubmission, existing: DealRead, submitted_at: datetime
    ) -> DetectedConflict | None:
        similarity = calculate_similarity(
            candidate.end_user.company_name, existing.end_user.company_name
        )
        if similarity < self.DUPLICATE_THRESHOLD:
            return None

        email_similarity = 0.0
        if candidate.end_user.contact_email and existing.end_user.contact_email:
            email_similarity = calculate_similarity(
                candidate.end_user.contact_email, existing.end_user.contact_email
            )
        same_reseller = candidate.reseller_id == existing.reseller_id

        severity = ConflictSeverity.MEDIUM
        if (
            similarity >= self.HIGH_SIMILARITY_THRESHOLD
            or email_similarity >= self.EMAIL_SIMILARITY_THRESHOLD
            or same_reseller
        ):
            severity = ConflictSeverity.HIGH

        return DetectedConflict(
            type=ConflictType.DUPLICATE_END_USER,
            severity=severity,
            conflicting_deal=existing,
            reason=(
                f'Similar end user "{existing.end_user.company_name}" already '
                f"registered ({similarity:.0%} match)"
            ),
            similarity=similarity,
        )

    def _check_territory_overlap(
        self, candidate: DealSubmission, existing: DealRead, submitted_at: datetime
    ) -> DetectedConflict | None:
        if candidate.reseller_id == existing.reseller_id:
            return None
        if not check_territory_overlap(
            candidate.end_user.territory, existing.end_user.territory
        ):
            return None

        similarity = calculate_similarity(
            candidate.end_user.company_name, existing.end_user.company_name
        )
        severity = (
            ConflictSeverity.HIGH
            if similarity >= self.RELATED_COMPANY_THRESHOLD
            else ConflictSeverity.MEDIUM
        )
        return DetectedConflict(
            type=ConflictType.TERRITORY_OVERLAP,
            severity=severity,
            conflicting_deal=existing,
            reason=(
                f"Territory {candidate.end_user.territory} overlaps with an existing "
                f"registration in {existing.end_user.territory}"
            ),
            similarity=similarity,
        )

    def _check_timing(
        self, candidate: DealSubmission, existing: DealRead, submitted_at: datetime
    ) -> DetectedConflict | None:
        existing_at = existing.submission_date or existing.created_at
        if existing_at is None:
            return None
        if not is_within_time_window(submitted_at, existing_at, self.TIMING_WINDOW_DAYS):
            return None

        similarity = calculate_similarity(
            candidate.end_user.company_name, existing.end_user.company_name
        )
        if similarity < self.RELATED_COMPANY_THRESHOLD:
            return None
        if not is_deal_value_similar(
            candidate.total_value, existing.total_value, self.VALUE_TOLERANCE
        ):
            return None

        days = days_between(submitted_at, existing_at)
        if days <= 7:
            severity = ConflictSeverity.HIGH
        elif days <= 30:
            severity = ConflictSeverity.MEDIUM
        else:
            severity = ConflictSeverity.LOW

        return DetectedConflict(
            type=ConflictType.TIMING_CONFLICT,
            severity=severity,
            conflicting_deal=existing,
            reason=(
                f"Similar deal of comparable value submitted {round(days)} days apart"
            ),
            similarity=similarity,
        )

    # ── Recording ───────────────────────────────────────────────────────────

    async def create_conflict_records(
        self, deal_id: str, conflicts: list[DetectedConflict]
    ) -> int:
        """Persist detected conflicts for a deal.

        One record is written per competing deal, typed by its highest-ranked
        conflict. Pairs already recorded for the same unordered deal pair are
        skipped by the store. Any high-severity conflict moves the deal to
        disputed / conflict_review in the same transaction.

        Args:
            deal_id: Deal the conflicts were detected for.
            conflicts: Output of detect_conflicts.

        Returns:
            Number of new conflict records.

        Raises:
            StoreError: The write failed.
        """
        if not conflicts:
            return 0

        records: list[DealConflictCreate] = []
        seen: set[str] = set()
        for conflict in prioritize_conflicts(conflicts):
            competing_id = conflict.conflicting_deal.id
            if competing_id == deal_id or competing_id in seen:
                continue
            seen.add(competing_id)
            records.append(
                DealConflictCreate(
                    deal_id=deal_id,
                    competing_deal_id=competing_id,
                    conflict_type=conflict.type,
                )
            )
        status_change = None
        if any(c.severity == ConflictSeverity.HIGH for c in conflicts):
            status_change = DealStatusChange(
                status=DealStatus.DISPUTED,
                substatus=DealSubstatus.CONFLICT_REVIEW,
                reason="High-severity conflict detected",
            )

        inserted = await self._store.create_conflicts(
            deal_id, records, status_change=status_change
        )
        logger.info(
            "conflict_records_created",
            deal_id=deal_id,
            detected=len(records),
            inserted=inserted,
            disputed=status_change is not None,
        )
        return inserted

    # ── Lookups ─────────────────────────────────────────────────────────────

    async def find_similar_deals(
        self,
        company_name: str,
        reseller_id: str | None = None,
        window_days: int | None = None,
        reference_date: datetime | None = None,
        exclude_deal_id: str | None = None,
        min_similarity: float | None = None,
    ) -> list[SimilarDeal]:
        """Existing deals whose end customer resembles ``company_name``.

        Returns:
            SimilarDeal list, most similar first.

        Raises:
            StoreError: The lookup failed.
        """
        threshold = self.DUPLICATE_THRESHOLD if min_similarity is None else min_similarity
        since = None
        if window_days is not None:
            since = as_utc(reference_date or datetime.now(timezone.utc)) - timedelta(
                days=window_days
            )

        deals = await self._store.list_recent_deals(
            limit=self._scan_limit,
            since=since,
            reseller_id=reseller_id,
            exclude_deal_id=exclude_deal_id,
        )
        similar = []
        for deal in deals:
            similarity = calculate_similarity(company_name, deal.end_user.company_name)
            if similarity >= threshold:
                similar.append(SimilarDeal(deal=deal, similarity=similarity))
        return sorted(similar, key=lambda s: s.similarity, reverse=True)

    async def resolve_conflict(
        self,
        conflict_id: str,
        resolution_status: ResolutionStatus,
        assigned_to_staff: str | None = None,
    ) -> DealConflictRead | None:
        """Update a recorded conflict's resolution status and assignee."""
        conflict = await self._store.update_conflict(
            conflict_id, resolution_status, assigned_to_staff
        )
        if conflict is not None:
            logger.info(
                "conflict_resolved",
                conflict_id=conflict_id,
                resolution_status=resolution_status.value,
                assigned_to_staff=assigned_to_staff,
            )
        return conflict
