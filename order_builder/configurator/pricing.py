"""
Pricing Strategies

Registry mapping a product type to a pure function of
(selections, product data, product config, catalog) that produces a
PriceBreakdown. Nothing here is stored; the configurator recomputes the
breakdown after every mutation.

Money is rounded half-up to the cent on every emitted line and on the total.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Optional

from order_builder.schemas import (
    Catalog,
    PriceBreakdown,
    PriceLine,
    PriceSource,
    ProductConfig,
    ProductData,
    ProductType,
    StepConfig,
    StepType,
)

logger = logging.getLogger(__name__)

# Platform markup on catalog base prices for addon items (35%)
CATALOG_MARKUP = 1.35

DEFAULT_ADDON_PRICE = 0.99

_CENT = Decimal("0.01")

PricingStrategy = Callable[..., PriceBreakdown]


def round2(value: float) -> float:
    """Round to the cent using half-up rounding."""
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def _variant_price(selections: dict[str, Any]) -> Optional[float]:
    variant = selections.get("variant")
    if isinstance(variant, dict) and variant.get("price") is not None:
        return float(variant["price"])
    return None


def addon_unit_price(
    step: StepConfig,
    item_id: str,
    catalog: Catalog,
    markup: float = CATALOG_MARKUP,
) -> float:
    """
    Resolve the unit price of one addon item.

    Catalog-priced steps use the item's base price times the markup; items
    missing from the catalog (or without a base price) and fixed-price steps
    use the step's pricePerItem.
    """
    if step.price_source == PriceSource.CATALOG:
        item = catalog.find(step.data_source, item_id)
        if item is not None and item.base_price:
            return round2(item.base_price * markup)
        logger.debug(f"No catalog price for {item_id} on step {step.id}, using fixed price")

    if step.price_per_item is not None:
        return step.price_per_item
    return DEFAULT_ADDON_PRICE


def configurable_entree_price(
    selections: dict[str, Any],
    product_data: ProductData,
    config: ProductConfig,
    catalog: Catalog,
    markup: float = CATALOG_MARKUP,
) -> PriceBreakdown:
    """Variant price plus one aggregated line per optional-addons step."""
    base = _variant_price(selections)
    if base is None:
        base = product_data.base_price

    addons = []
    for step in config.customization_flow:
        if step.type != StepType.OPTIONAL_ADDONS:
            continue

        selected = selections.get(step.id)
        if not isinstance(selected, dict):
            continue

        quantity = 0
        line_total = Decimal("0")
        for item_id, qty in selected.items():
            if not qty or qty <= 0:
                continue
            unit = addon_unit_price(step, item_id, catalog, markup)
            line_total += Decimal(str(unit)) * qty
            quantity += qty

        if quantity:
            addons.append(PriceLine(
                name=f"{quantity}x {step.label}",
                price=round2(line_total),
            ))

    addon_total = sum(Decimal(str(line.price)) for line in addons)
    return PriceBreakdown(
        base=round2(base),
        addons=addons,
        total=round2(Decimal(str(base)) + addon_total),
    )


def simple_product_price(
    selections: dict[str, Any],
    product_data: ProductData,
    config: ProductConfig,
    catalog: Catalog,
    markup: float = CATALOG_MARKUP,
) -> PriceBreakdown:
    """Variant price only, no addons."""
    price = _variant_price(selections) or 0.0
    return PriceBreakdown(base=round2(price), addons=[], total=round2(price))


PRICING_STRATEGIES: dict[str, PricingStrategy] = {
    ProductType.CONFIGURABLE_ENTREE: configurable_entree_price,
    ProductType.SIMPLE_PRODUCT: simple_product_price,
}


def calculate_price(
    selections: dict[str, Any],
    product_data: ProductData,
    config: ProductConfig,
    catalog: Catalog,
    markup: float = CATALOG_MARKUP,
) -> PriceBreakdown:
    """
    Price the current selections with the strategy for the config's product type.

    Unregistered product types produce a zeroed breakdown and a warning.
    """
    strategy = PRICING_STRATEGIES.get(config.product_type)
    if strategy is None:
        logger.warning(f"No pricing strategy for: {config.product_type}")
        return PriceBreakdown()
    return strategy(selections, product_data, config, catalog, markup=markup)
