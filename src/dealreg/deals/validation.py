"""Deal validation -- the gatekeeper run before conflict checks and pricing.

ValidationEngine runs six independent sub-checks and accumulates every
finding as a ValidationIssue:

- territory: end user territory against the reseller's territory
- products: existence, tier restrictions, availability overrides
- pricing: per-line price floors by partner tier
- deal size: tier deal-size ceilings and the high-value warning
- duplicates: similar end customers recently registered by the same reseller
- documentation: paperwork required above value thresholds

A store failure inside one sub-check becomes a single error for that
sub-check; the remaining sub-checks still run.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog

from src.dealreg.core.monitoring import deal_validations_total
from src.dealreg.deals.conflicts import ConflictDetectionEngine
from src.dealreg.deals.matching import check_territory_overlap
from src.dealreg.deals.pricing import availability_from_rows
from src.dealreg.deals.schemas import (
    DealSubmission,
    EligibilityRule,
    IssueSeverity,
    PartnerTier,
    Product,
    Reseller,
    ValidationIssue,
    ValidationResult,
)
from src.dealreg.deals.selection import select_first_eligible
from src.dealreg.deals.store import StoreError

logger = structlog.get_logger(__name__)

# Maximum discount off list price a partner tier may offer
TIER_MAX_DISCOUNT: dict[PartnerTier, float] = {
    PartnerTier.GOLD: 0.30,
    PartnerTier.SILVER: 0.20,
    PartnerTier.BRONZE: 0.10,
}

SIGNIFICANT_DISCOUNT_RATIO = 0.8
MATCH_RESELLER_TERRITORY = "match_reseller_territory"

# (deal value strictly above, documents required)
DOCUMENTATION_REQUIREMENTS: tuple[tuple[float, tuple[str, ...]], ...] = (
    (50_000, ("quote", "technical_specification")),
    (100_000, ("contract", "financial_verification")),
)

DUPLICATE_SIMILARITY_THRESHOLD = 0.85
DUPLICATE_VALUE_DIFFERENCE = 0.2
SIMILAR_COMPANY_THRESHOLD = 0.95


def _error(field: str, code: str, message: str, suggestion: str | None = None) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        code=code,
        message=message,
        severity=IssueSeverity.ERROR,
        suggestion=suggestion,
    )


def _warning(field: str, code: str, message: str, suggestion: str | None = None) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        code=code,
        message=message,
        severity=IssueSeverity.WARNING,
        suggestion=suggestion,
    )


def minimum_allowed_price(list_price: float, tier: PartnerTier) -> float:
    """Lowest unit price a reseller of ``tier`` may quote for a product."""
    return list_price * (1 - TIER_MAX_DISCOUNT.get(tier, 0.0))


class _ReferenceData:
    """Per-validation cache of the reseller, products, and eligibility rules.

    Only successful loads are cached, so a failed lookup fails again for
    the next sub-check that needs it.
    """

    def __init__(self, store, submission: DealSubmission) -> None:
        self._store = store
        self._submission = submission
        self._reseller: Reseller | None = None
        self._reseller_loaded = False
        self._products: dict[str, Product] | None = None
        self._rules: dict[str, list[EligibilityRule]] = {}

    async def reseller(self) -> Reseller | None:
        if not self._reseller_loaded:
            self._reseller = await self._store.get_reseller(self._submission.reseller_id)
            self._reseller_loaded = True
        return self._reseller

    async def products(self) -> dict[str, Product]:
        if self._products is None:
            self._products = await self._store.get_products(
                [line.product_id for line in self._submission.products]
            )
        return self._products

    async def rules(self, rule_type: str) -> list[EligibilityRule]:
        if rule_type not in self._rules:
            self._rules[rule_type] = await self._store.list_eligibility_rules(rule_type)
        return self._rules[rule_type]


SubCheck = Callable[[DealSubmission, _ReferenceData], Awaitable[list[ValidationIssue]]]


class ValidationEngine:
    """Validates deal submissions against reference data and business rules.

    Args:
        store: DealStore (or compatible).
        conflict_engine: Used for the duplicate-registration check.
        high_value_threshold: Deal value above which HIGH_VALUE_DEAL is raised.
        duplicate_window_days: Look-back window for duplicate registrations.
    """

    def __init__(
        self,
        store,
        conflict_engine: ConflictDetectionEngine,
        high_value_threshold: float = 100_000.0,
        duplicate_window_days: int = 90,
    ) -> None:
        self._store = store
        self._conflict_engine = conflict_engine
        self._high_value_threshold = high_value_threshold
        self._duplicate_window_days = duplicate_window_days

    def _sub_checks(self) -> list[tuple[str, str, str, SubCheck]]:
        """(field, failure code, failure message, check) in execution order."""
        return [
            ("territory", "TERRITORY_VALIDATION_ERROR", "Error validating territory", self._validate_territory),
            ("products", "PRODUCT_VALIDATION_ERROR", "Error validating products", self._validate_products),
            ("pricing", "PRICING_VALIDATION_ERROR", "Error validating pricing", self._validate_pricing),
            ("total_value", "DEAL_SIZE_VALIDATION_ERROR", "Error validating deal size", self._validate_deal_size),
            ("end_user", "DUPLICATE_CHECK_ERROR", "Error checking for duplicate deals", self._validate_duplicates),
            ("documentation", "DOCUMENTATION_VALIDATION_ERROR", "Error validating documentation", self._validate_documentation),
        ]

    async def validate_deal(self, submission: DealSubmission) -> ValidationResult:
        """Run every sub-check and collect errors and warnings.

        Args:
            submission: The deal to validate.

        Returns:
            ValidationResult; ``is_valid`` is True iff no error-severity issue
            was found.
        """
        reference = _ReferenceData(self._store, submission)
        issues: list[ValidationIssue] = []

        for field, code, message, check in self._sub_checks():
            try:
                issues.extend(await check(submission, reference))
            except StoreError as exc:
                logger.warning(
                    "validation_check_failed",
                    check=field,
                    reseller_id=submission.reseller_id,
                    error=str(exc),
                )
                issues.append(_error(field, code, message))

        errors = [i for i in issues if i.severity == IssueSeverity.ERROR]
        warnings = [i for i in issues if i.severity == IssueSeverity.WARNING]
        result = ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

        deal_validations_total.labels(outcome="valid" if result.is_valid else "invalid").inc()
        logger.info(
            "deal_validated",
            reseller_id=submission.reseller_id,
            is_valid=result.is_valid,
            error_codes=[e.code for e in errors],
            warning_count=len(warnings),
        )
        return result

    # ── Sub-checks ──────────────────────────────────────────────────────────

    async def _validate_territory(
        self, submission: DealSubmission, reference: _ReferenceData
    ) -> list[ValidationIssue]:
        reseller = await reference.reseller()
        if reseller is None:
            return [
                _error(
                    "reseller_id",
                    "RESELLER_NOT_FOUND",
                    "Reseller not found",
                    suggestion="Check the reseller id on the submission",
                )
            ]

        territory = submission.end_user.territory
        if check_territory_overlap(territory, reseller.territory):
            return []

        rules = await reference.rules("territory")
        strict = any(
            MATCH_RESELLER_TERRITORY in rule.conditions.get("allowed_territories", [])
            for rule in rules
        )
        message = (
            f"End user territory ({territory}) does not match "
            f"reseller territory ({reseller.territory})"
        )
        if strict:
            return [
                _error(
                    "end_user.territory",
                    "TERRITORY_MISMATCH",
                    message,
                    suggestion="Ensure the end user is located in your assigned territory",
                )
            ]
        return [
            _warning(
                "end_user.territory",
                "TERRITORY_WARNING",
                message,
                suggestion="Cross-territory deals may require additional approval",
            )
        ]

    async def _validate_products(
        self, submission: DealSubmission, reference: _ReferenceData
    ) -> list[ValidationIssue]:
        reseller = await reference.reseller()
        if reseller is None:
            return []

        products = await reference.products()
        restricting_rules = [
            rule
            for rule in await reference.rules("product")
            if reseller.tier.value in rule.conditions.get("restricted_tiers", [])
        ]

        issues: list[ValidationIssue] = []
        for index, line in enumerate(submission.products):
            field = f"products.{index}.product_id"
            product = products.get(line.product_id)
            if product is None:
                issues.append(
                    _error(field, "PRODUCT_NOT_FOUND", f"Product {line.product_id} not found")
                )
                continue

            if any(
                product.id in rule.conditions.get("restricted_products", [])
                for rule in restricting_rules
            ):
                issues.append(
                    _error(
                        field,
                        "PRODUCT_NOT_ELIGIBLE",
                        f"Product {product.name} is not available for "
                        f"{reseller.tier.value} tier partners",
                        suggestion="Upgrade partnership tier or select a different product",
                    )
                )
                continue

            availability = availability_from_rows(
                await self._store.list_product_availability(product.id),
                reseller_id=reseller.id,
                territory=submission.end_user.territory,
                reseller_tier=reseller.tier,
            )
            if not availability.available:
                issues.append(
                    _error(
                        field,
                        "PRODUCT_NOT_AVAILABLE",
                        f"Product {product.name} is not available: {availability.reason}",
                    )
                )
        return issues

    async def _validate_pricing(
        self, submission: DealSubmission, reference: _ReferenceData
    ) -> list[ValidationIssue]:
        reseller = await reference.reseller()
        if reseller is None:
            return []

        products = await reference.products()
        issues: list[ValidationIssue] = []
        for index, line in enumerate(submission.products):
            product = products.get(line.product_id)
            if product is None:
                continue
            field = f"products.{index}.price"
            minimum = minimum_allowed_price(product.list_price, reseller.tier)
            if line.price < minimum:
                max_discount = TIER_MAX_DISCOUNT.get(reseller.tier, 0.0)
                issues.append(
                    _error(
                        field,
                        "PRICE_BELOW_MINIMUM",
                        f"Price {line.price:.2f} is below minimum allowed "
                        f"({minimum:.2f}) for {product.name}",
                        suggestion=(
                            f"Maximum discount for {reseller.tier.value} tier is "
                            f"{max_discount:.0%}"
                        ),
                    )
                )
            elif line.price < product.list_price * SIGNIFICANT_DISCOUNT_RATIO:
                issues.append(
                    _warning(
                        field,
                        "SIGNIFICANT_DISCOUNT",
                        f"Significant discount applied to {product.name}",
                        suggestion="Large discounts may require additional approval",
                    )
                )
        return issues

    async def _validate_deal_size(
        self, submission: DealSubmission, reference: _ReferenceData
    ) -> list[ValidationIssue]:
        reseller = await reference.reseller()
        if reseller is None:
            return []

        total = submission.total_value
        issues: list[ValidationIssue] = []

        rule = select_first_eligible(
            await reference.rules("deal_size"),
            lambda r: reseller.tier.value in r.conditions.get("applies_to_tiers", [])
            and r.conditions.get("max_value") is not None,
        )
        if rule is not None and total > float(rule.conditions["max_value"]):
            issues.append(
                _error(
                    "total_value",
                    "DEAL_SIZE_EXCEEDED",
                    f"Deal value {total:.2f} exceeds maximum allowed "
                    f"({float(rule.conditions['max_value']):.2f}) for "
                    f"{reseller.tier.value} tier",
                    suggestion="Contact your channel manager for large deal approval",
                )
            )

        if total > self._high_value_threshold:
            issues.append(
                _warning(
                    "total_value",
                    "HIGH_VALUE_DEAL",
                    "High-value deal requires additional documentation and approval",
                    suggestion="Prepare detailed technical and commercial documentation",
                )
            )
        return issues

    async def _validate_duplicates(
        self, submission: DealSubmission, reference: _ReferenceData
    ) -> list[ValidationIssue]:
        similar = await self._conflict_engine.find_similar_deals(
            submission.end_user.company_name,
            reseller_id=submission.reseller_id,
            window_days=self._duplicate_window_days,
            reference_date=submission.submission_date or datetime.now(timezone.utc),
            exclude_deal_id=submission.id,
        )

        total = submission.total_value
        issues: list[ValidationIssue] = []
        for match in similar:
            existing_total = match.deal.total_value
            largest = max(total, existing_total)
            value_difference = abs(total - existing_total) / largest if largest else 0.0

            if (
                match.similarity > DUPLICATE_SIMILARITY_THRESHOLD
                and value_difference < DUPLICATE_VALUE_DIFFERENCE
            ):
                issues.append(
                    _error(
                        "end_user.company_name",
                        "POTENTIAL_DUPLICATE",
                        f"Potential duplicate deal found for "
                        f"{match.deal.end_user.company_name}",
                        suggestion="Check if this deal was already submitted",
                    )
                )
            elif match.similarity > SIMILAR_COMPANY_THRESHOLD:
                issues.append(
                    _warning(
                        "end_user.company_name",
                        "SIMILAR_COMPANY",
                        f"Similar company name found: {match.deal.end_user.company_name}",
                        suggestion="Verify this is not a duplicate registration",
                    )
                )
        return issues

    async def _validate_documentation(
        self, submission: DealSubmission, reference: _ReferenceData
    ) -> list[ValidationIssue]:
        total = submission.total_value
        required = [
            doc
            for threshold, documents in DOCUMENTATION_REQUIREMENTS
            if total > threshold
            for doc in documents
        ]
        if not required:
            return []
        return [
            _warning(
                "documentation",
                "DOCUMENTATION_REQUIRED",
                f"Required documentation: {', '.join(required)}",
                suggestion="Upload required documents to expedite approval",
            )
        ]
