"""Pricing calculator: configuration + participants + add-ons -> PriceBreakdown."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Sequence, assert_never

from ..core.exceptions import ValidationError
from ..core.money import ZERO, quantize_money
from ..schemas.pricing import (
    Addon,
    AppliedAddon,
    CategoryLine,
    GroupDiscountTier,
    GroupPricingTier,
    GroupTierPricing,
    ParticipantCategory,
    ParticipantCategoryPricing,
    PerPersonPricing,
    PriceBreakdown,
    PricingConfiguration,
    PrivateTourPricing,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ProcessorFee:
    """Card processing fee: a percentage of the subtotal plus a fixed amount."""

    percentage: Decimal
    fixed: Decimal


DEFAULT_PROCESSOR_FEE = ProcessorFee(Decimal("2.9"), Decimal("0.30"))

PROCESSOR_FEES: dict[str, ProcessorFee] = {
    "EUR": ProcessorFee(Decimal("1.5"), Decimal("0.25")),
    "GBP": ProcessorFee(Decimal("1.5"), Decimal("0.25")),
    "USD": ProcessorFee(Decimal("2.9"), Decimal("0.30")),
    "CAD": ProcessorFee(Decimal("2.9"), Decimal("0.30")),
    "CHF": ProcessorFee(Decimal("2.9"), Decimal("0.30")),
    "AUD": ProcessorFee(Decimal("1.75"), Decimal("0.30")),
    "DKK": ProcessorFee(Decimal("1.5"), Decimal("1.80")),
    "NOK": ProcessorFee(Decimal("1.5"), Decimal("1.80")),
    "SEK": ProcessorFee(Decimal("1.5"), Decimal("1.80")),
    "PLN": ProcessorFee(Decimal("1.5"), Decimal("1.00")),
    "CZK": ProcessorFee(Decimal("1.5"), Decimal("6.00")),
}


@dataclass
class PricingValidation:
    """Outcome of checking a pricing configuration."""

    errors: list[dict[str, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error(self, path: str, message: str) -> None:
        self.errors.append({"path": path, "message": message})


def processor_fee_for(currency: str) -> ProcessorFee:
    return PROCESSOR_FEES.get(currency.upper(), DEFAULT_PROCESSOR_FEE)


def calculate_processor_fee(subtotal: Decimal, currency: str) -> Decimal:
    """Fee charged on top of the subtotal. Free bookings carry no fee."""
    if subtotal <= 0:
        return ZERO
    fee = processor_fee_for(currency)
    return quantize_money(subtotal * fee.percentage / HUNDRED + fee.fixed)


def _check_ranges(
    report: PricingValidation,
    path: str,
    ranges: Sequence[GroupPricingTier | GroupDiscountTier],
) -> None:
    """Every range needs min >= 1 and max >= min; ranges may not overlap; gaps only warn."""
    for index, item in enumerate(ranges):
        if item.min_participants < 1:
            report.error(f"{path}[{index}].min_participants", "Minimum participants must be at least 1")
        if item.max_participants < item.min_participants:
            report.error(
                f"{path}[{index}].max_participants",
                "Maximum participants must be greater than or equal to minimum participants",
            )

    ordered = sorted(ranges, key=lambda r: (r.min_participants, r.max_participants))
    for previous, current in zip(ordered, ordered[1:]):
        if current.min_participants <= previous.max_participants:
            report.error(
                path,
                f"Ranges {previous.min_participants}-{previous.max_participants} and "
                f"{current.min_participants}-{current.max_participants} overlap",
            )
        elif current.min_participants > previous.max_participants + 1:
            report.warnings.append(
                f"{path}: no range covers {previous.max_participants + 1}-{current.min_participants - 1} participants"
            )


def _check_addons(report: PricingValidation, addons: Sequence[Addon]) -> None:
    seen: set[str] = set()
    for index, addon in enumerate(addons):
        if addon.price < 0:
            report.error(f"addons[{index}].price", "Add-on price cannot be negative")
        if addon.id in seen:
            report.error(f"addons[{index}].id", f"Duplicate add-on id '{addon.id}'")
        seen.add(addon.id)


def _check_discounts(report: PricingValidation, discounts: Sequence[GroupDiscountTier]) -> None:
    for index, tier in enumerate(discounts):
        if tier.discount_value < 0:
            report.error(f"group_discounts[{index}].discount_value", "Discount value cannot be negative")
        elif tier.discount_type == "percentage" and tier.discount_value > HUNDRED:
            report.error(f"group_discounts[{index}].discount_value", "Percentage discount cannot exceed 100")
    _check_ranges(report, "group_discounts", discounts)


def validate_pricing_configuration(config: PricingConfiguration) -> PricingValidation:
    """Check a configuration for errors (rejected) and warnings (accepted, logged)."""
    report = PricingValidation()

    match config:
        case PerPersonPricing():
            if config.price_per_person < 0:
                report.error("price_per_person", "Price per person cannot be negative")
            _check_discounts(report, config.group_discounts)
        case ParticipantCategoryPricing():
            seen: set[str] = set()
            for index, category in enumerate(config.categories):
                if category.price < 0:
                    report.error(f"categories[{index}].price", "Category price cannot be negative")
                if category.id in seen:
                    report.error(f"categories[{index}].id", f"Duplicate category id '{category.id}'")
                seen.add(category.id)
                if (
                    category.min_age is not None
                    and category.max_age is not None
                    and category.max_age < category.min_age
                ):
                    report.error(f"categories[{index}].max_age", "Maximum age must not be below minimum age")
            if not any(c.counts_toward_capacity for c in config.categories):
                report.warnings.append("categories: no category counts toward capacity")
            _check_discounts(report, config.group_discounts)
        case GroupTierPricing():
            for index, tier in enumerate(config.tiers):
                if tier.price < 0:
                    report.error(f"tiers[{index}].price", "Tier price cannot be negative")
            _check_ranges(report, "tiers", config.tiers)
        case PrivateTourPricing():
            if config.price < 0:
                report.error("price", "Private tour price cannot be negative")
            if config.min_group_size is not None and config.min_group_size < 1:
                report.error("min_group_size", "Minimum group size must be at least 1")
            if (
                config.min_group_size is not None
                and config.max_group_size is not None
                and config.max_group_size < config.min_group_size
            ):
                report.error("max_group_size", "Maximum group size must be greater than or equal to minimum")
        case _:
            assert_never(config)

    _check_addons(report, config.addons)
    return report


def find_range(ranges: Iterable[GroupPricingTier | GroupDiscountTier], participants: int):
    """First range containing ``participants``, or None."""
    for item in ranges:
        if item.min_participants <= participants <= item.max_participants:
            return item
    return None


def discounted_unit_price(unit_price: Decimal, tier: Optional[GroupDiscountTier]) -> Decimal:
    """
    Apply a group discount to a unit price.

    A fixed discount replaces the unit price, but never raises it.
    """
    if tier is None:
        return unit_price
    if tier.discount_type == "percentage":
        return quantize_money(unit_price * (HUNDRED - tier.discount_value) / HUNDRED)
    return min(unit_price, quantize_money(tier.discount_value))


def adult_category(categories: Sequence[ParticipantCategory]) -> ParticipantCategory:
    """Category used when a booking carries no per-category breakdown."""
    for category in categories:
        if category.id == "adult":
            return category
    for category in categories:
        if "adult" in category.label.lower():
            return category
    return categories[0]


def resolve_category_counts(
    config: ParticipantCategoryPricing,
    participants: int,
    participants_by_category: Optional[dict[str, int]],
) -> dict[str, int]:
    """Per-category counts, falling back to pricing everyone as adults."""
    if participants_by_category:
        return dict(participants_by_category)
    return {adult_category(config.categories).id: participants}


def counting_participants(
    config: PricingConfiguration,
    participants: int,
    participants_by_category: Optional[dict[str, int]] = None,
) -> int:
    """Participants who occupy a spot; non-counting categories (e.g. infants) are excluded."""
    if not isinstance(config, ParticipantCategoryPricing):
        return participants
    counts = resolve_category_counts(config, participants, participants_by_category)
    non_counting = sum(
        counts.get(category.id, 0)
        for category in config.categories
        if not category.counts_toward_capacity
    )
    return participants - non_counting


def _check_participants(
    config: PricingConfiguration,
    participants: int,
    participants_by_category: Optional[dict[str, int]],
) -> list[dict[str, str]]:
    violations: list[dict[str, str]] = []
    if participants < 1:
        violations.append({"path": "participants", "message": "At least one participant is required"})

    if participants_by_category:
        for category_id, count in participants_by_category.items():
            if count < 0:
                violations.append({
                    "path": f"participants_by_category.{category_id}",
                    "message": "Participant count cannot be negative",
                })
        if sum(participants_by_category.values()) != participants:
            violations.append({
                "path": "participants_by_category",
                "message": (
                    f"Category counts add up to {sum(participants_by_category.values())}, "
                    f"expected {participants}"
                ),
            })

    if isinstance(config, PrivateTourPricing):
        if config.min_group_size is not None and participants < config.min_group_size:
            violations.append({
                "path": "participants",
                "message": f"Private tour requires at least {config.min_group_size} participants",
            })
        if config.max_group_size is not None and participants > config.max_group_size:
            violations.append({
                "path": "participants",
                "message": f"Private tour allows at most {config.max_group_size} participants",
            })
    return violations


def _price_categories(
    config: ParticipantCategoryPricing,
    counts: dict[str, int],
    discount: Optional[GroupDiscountTier],
) -> list[CategoryLine]:
    known = {category.id for category in config.categories}
    unknown = sorted(set(counts) - known)
    if unknown:
        logger.warning(
            "Ignoring participant counts for unknown categories",
            extra={"unknown_category_ids": unknown},
        )

    lines = []
    for category in config.categories:
        count = counts.get(category.id, 0)
        if count <= 0:
            continue
        unit_price = discounted_unit_price(category.price, discount)
        lines.append(CategoryLine(
            category_id=category.id,
            label=category.label,
            count=count,
            original_unit_price=quantize_money(category.price),
            unit_price=unit_price,
            subtotal=quantize_money(unit_price * count),
            counts_toward_capacity=category.counts_toward_capacity,
        ))
    return lines


def _price_addons(addons: Sequence[Addon], addon_ids: Iterable[str], participants: int) -> list[AppliedAddon]:
    selected = set(addon_ids)
    catalog_ids = {addon.id for addon in addons}
    missing = sorted(selected - catalog_ids)
    if missing:
        logger.warning("Ignoring unknown add-on ids", extra={"addon_ids": missing})

    applied = []
    for addon in addons:
        if addon.id in selected or addon.required:
            unit_price = quantize_money(addon.price)
            applied.append(AppliedAddon(
                addon_id=addon.id,
                name=addon.name,
                unit_price=unit_price,
                quantity=participants,
                total=quantize_money(unit_price * participants),
            ))
    return applied


def calculate_price(
    config: PricingConfiguration,
    participants: int,
    currency: str,
    participants_by_category: Optional[dict[str, int]] = None,
    addon_ids: Iterable[str] = (),
) -> PriceBreakdown:
    """
    Price a booking.

    Raises:
        ValidationError: If the configuration or the participant breakdown is
            invalid, or no group tier covers the participant count
    """
    report = validate_pricing_configuration(config)
    violations = [
        {"path": f"pricing.{error['path']}", "message": error["message"]}
        for error in report.errors
    ]
    violations.extend(_check_participants(config, participants, participants_by_category))
    if violations:
        raise ValidationError(detail="The booking could not be priced", violations=violations)
    for warning in report.warnings:
        logger.warning("Pricing configuration warning", extra={"warning": warning, "kind": config.kind})

    category_lines: list[CategoryLine] = []
    applied_discount: Optional[GroupDiscountTier] = None
    applied_tier: Optional[GroupPricingTier] = None

    match config:
        case PerPersonPricing():
            applied_discount = find_range(config.group_discounts, participants)
            original_base = quantize_money(config.price_per_person * participants)
            base = quantize_money(discounted_unit_price(config.price_per_person, applied_discount) * participants)
        case ParticipantCategoryPricing():
            applied_discount = find_range(config.group_discounts, participants)
            counts = resolve_category_counts(config, participants, participants_by_category)
            category_lines = _price_categories(config, counts, applied_discount)
            original_base = quantize_money(
                sum((line.original_unit_price * line.count for line in category_lines), ZERO)
            )
            base = quantize_money(sum((line.subtotal for line in category_lines), ZERO))
        case GroupTierPricing():
            applied_tier = find_range(config.tiers, participants)
            if applied_tier is None:
                raise ValidationError(
                    detail=f"No pricing tier covers a group of {participants}",
                    violations=[{"path": "participants", "message": f"No pricing tier for {participants} participants"}],
                )
            original_base = base = quantize_money(applied_tier.price)
        case PrivateTourPricing():
            original_base = base = quantize_money(config.price)
        case _:
            assert_never(config)

    applied_addons = _price_addons(config.addons, addon_ids, participants)
    addons_total = quantize_money(sum((addon.total for addon in applied_addons), ZERO))
    subtotal = base + addons_total
    fee = calculate_processor_fee(subtotal, currency)

    return PriceBreakdown(
        currency=currency.upper(),
        participants=participants,
        counting_participants=counting_participants(config, participants, participants_by_category),
        original_base_price=original_base,
        group_discount=original_base - base,
        base_price=base,
        addons_total=addons_total,
        subtotal=subtotal,
        processor_fee=fee,
        total_amount=subtotal + fee,
        provider_amount=subtotal,
        category_lines=category_lines,
        applied_discount=applied_discount,
        applied_tier=applied_tier,
        addons=applied_addons,
    )
