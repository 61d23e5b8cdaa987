"""
Configurator Session - Flow State Machine

Owns one product customization: the step sequence, the current position,
the customer's selections and the derived price breakdown. Every mutation
runs to completion synchronously and ends with an explicit price recompute,
so the breakdown is always a pure function of the current inputs.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from order_builder.configurator.pricing import CATALOG_MARKUP, calculate_price
from order_builder.configurator.validators import quantity_total, validate_step
from order_builder.schemas import (
    NO_DIP,
    CartItem,
    Catalog,
    ConfiguratorView,
    NavigationResult,
    PriceBreakdown,
    ProductConfig,
    ProductData,
    StepConfig,
    StepType,
    StepValidation,
    Variant,
)

logger = logging.getLogger(__name__)

DEFAULT_INCLUDED_DIPS = 2


class ConfiguratorSession:
    """
    State for a single product customization interaction.

    A session is never shared between two concurrent edits; the
    ProductConfigurator facade creates one per open() call.

    Attributes:
        config: The product's customization flow
        product_data: Product record with its priced variants
        catalog: Read-only catalog snapshot (sauces, dips)
        current_step_index: Index into config.customization_flow
        selections: Step id -> selection value
        price_breakdown: Derived from the four inputs above
    """

    def __init__(
        self,
        config: ProductConfig,
        product_data: ProductData,
        catalog: Optional[Catalog] = None,
        markup: float = CATALOG_MARKUP,
    ):
        self.config = config
        self.product_data = product_data
        self.catalog = catalog or Catalog()
        self.markup = markup
        self.current_step_index = 0
        self.selections: dict[str, Any] = {}
        self.price_breakdown = PriceBreakdown()
        self.recalculate_price()

    # =========================================================================
    # STEP QUERIES
    # =========================================================================

    @property
    def steps(self) -> list[StepConfig]:
        return self.config.customization_flow

    @property
    def current_step(self) -> StepConfig:
        return self.steps[self.current_step_index]

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def get_step(self, step_id: str) -> Optional[StepConfig]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def should_skip(self, step: StepConfig) -> bool:
        """A step is skipped when its single skipIf condition holds."""
        if step.skip_if is None:
            return False
        return self.selections.get(step.skip_if.key) == step.skip_if.value

    def is_first_step(self) -> bool:
        return self.current_step_index == 0

    def is_last_step(self) -> bool:
        return self.current_step_index == self.total_steps - 1

    def validate_current_step(self) -> StepValidation:
        return validate_step(self.current_step, self.selections)

    def validate_all(self) -> StepValidation:
        """First validation failure among the steps the customer would visit."""
        for step in self.steps:
            if self.should_skip(step):
                continue
            result = validate_step(step, self.selections)
            if not result.valid:
                return result
        return StepValidation(valid=True)

    # =========================================================================
    # NAVIGATION
    # =========================================================================

    def _nearest_visible(self, start: int, direction: int) -> Optional[int]:
        index = start
        while 0 <= index < self.total_steps:
            if not self.should_skip(self.steps[index]):
                return index
            index += direction
        return None

    def navigate_next(self) -> NavigationResult:
        """
        Advance past the current step if it validates.

        Skipped steps are passed over. If no later step is visible the
        session stays where it is.
        """
        validation = self.validate_current_step()
        if not validation.valid:
            return NavigationResult(advanced=False, error=validation.error)

        target = self._nearest_visible(self.current_step_index + 1, 1)
        if target is None:
            return NavigationResult(advanced=False)

        self.current_step_index = target
        self.recalculate_price()
        return NavigationResult(advanced=True)

    def navigate_back(self) -> NavigationResult:
        target = self._nearest_visible(self.current_step_index - 1, -1)
        if target is None:
            return NavigationResult(advanced=False)

        self.current_step_index = target
        self.recalculate_price()
        return NavigationResult(advanced=True)

    def jump_to_step(self, step_id: str) -> bool:
        """Edit-mode re-entry: set the index directly, ignoring skipIf."""
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                self.current_step_index = index
                return True
        return False

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def select_option(self, step_id: str, option_id: str) -> bool:
        """
        Record a single-choice selection.

        Steps that dependOn this one are cleared when the choice changes,
        since their options were filtered by the previous value.
        """
        previous = self.selections.get(step_id)
        self.selections[step_id] = option_id

        if previous is not None and previous != option_id:
            for step in self.steps:
                if step.depends_on == step_id:
                    key = "variant" if step.type == StepType.VARIANT_SELECTOR else step.id
                    self.selections.pop(key, None)

        self.recalculate_price()
        return True

    def select_variant(self, variant: Variant | dict[str, Any]) -> bool:
        """Store a value copy of the variant so later catalog edits cannot reprice it."""
        if isinstance(variant, Variant):
            self.selections["variant"] = variant.model_dump()
        else:
            self.selections["variant"] = copy.deepcopy(dict(variant))
        self.recalculate_price()
        return True

    def toggle_multi_choice(self, step_id: str, option_id: str) -> bool:
        """
        Add or remove an option on a multi-choice step.

        Returns False when an addition is refused because maxSelections
        has been reached.
        """
        step = self.get_step(step_id)
        selected = list(self.selections.get(step_id) or [])

        if option_id in selected:
            selected.remove(option_id)
        else:
            if step is not None and step.max_selections is not None \
                    and len(selected) >= step.max_selections:
                logger.debug(f"Refused {option_id} on {step_id}: max {step.max_selections} reached")
                return False
            selected.append(option_id)

        self.selections[step_id] = selected
        self.recalculate_price()
        return True

    def select_no_dip(self, step_id: str) -> bool:
        """
        Choose the no-dip sentinel.

        Addon steps it hides lose their quantities, so the price only covers
        steps the customer can still see.
        """
        self.selections[step_id] = NO_DIP
        for step in self.steps:
            if step.type == StepType.OPTIONAL_ADDONS and self.should_skip(step):
                self.selections.pop(step.id, None)
        self.recalculate_price()
        return True

    def change_addon_quantity(self, step_id: str, item_id: str, delta: int) -> bool:
        """
        Adjust the quantity of one item on an included-dips or addon step.

        Quantities never go below zero and a zero quantity removes the item.
        Included dips are capped at maxSelections (default 2) in total;
        addon steps are capped only when they declare maxSelections.
        Returns False when the change is refused.
        """
        step = self.get_step(step_id)
        current = self.selections.get(step_id)
        quantities = dict(current) if isinstance(current, dict) else {}

        if step is not None and step.type == StepType.INCLUDED_DIPS:
            limit = step.max_selections or DEFAULT_INCLUDED_DIPS
        else:
            limit = step.max_selections if step is not None else None

        new_qty = quantities.get(item_id, 0) + delta
        if new_qty < 0:
            return False
        if delta > 0 and limit is not None and quantity_total(quantities) + delta > limit:
            logger.debug(f"Refused {item_id} on {step_id}: total would exceed {limit}")
            return False

        if new_qty == 0:
            quantities.pop(item_id, None)
        else:
            quantities[item_id] = new_qty

        self.selections[step_id] = quantities
        self.recalculate_price()
        return True

    def recalculate_price(self) -> PriceBreakdown:
        self.price_breakdown = calculate_price(
            self.selections,
            self.product_data,
            self.config,
            self.catalog,
            markup=self.markup,
        )
        return self.price_breakdown

    # =========================================================================
    # PROJECTIONS
    # =========================================================================

    def available_options(self, step: Optional[StepConfig] = None) -> list[dict[str, Any]]:
        """Options the presentation layer should offer for a step."""
        step = step or self.current_step

        if step.type == StepType.SINGLE_CHOICE:
            return [option.model_dump() for option in step.options]

        if step.type == StepType.VARIANT_SELECTOR:
            variants = [v.model_dump() for v in self.product_data.variants]
            if step.depends_on:
                chosen = self.selections.get(step.depends_on)
                variants = [
                    v for v in variants
                    if v.get(step.depends_on) in (None, chosen)
                ]
            return variants

        return [item.model_dump() for item in self.catalog.items_for(step.data_source)]

    def view(self, product_id: Optional[str] = None) -> ConfiguratorView:
        validation = self.validate_current_step()
        return ConfiguratorView(
            product_id=product_id or self.product_data.id,
            current_step=self.current_step,
            current_step_index=self.current_step_index,
            total_steps=self.total_steps,
            options=self.available_options(),
            selections=copy.deepcopy(self.selections),
            price_breakdown=self.price_breakdown.model_copy(deep=True),
            is_first_step=self.is_first_step(),
            is_last_step=self.is_last_step(),
            validation_error=validation.error,
        )

    def to_cart_item(self) -> CartItem:
        return CartItem(
            product_id=self.product_data.id,
            product_name=self.config.display_name or self.product_data.name,
            category=self.config.category,
            selections=copy.deepcopy(self.selections),
            pricing=self.price_breakdown.model_copy(deep=True),
            created_at=datetime.now(timezone.utc),
        )

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def serialize(self) -> dict[str, Any]:
        return {
            "product_config": self.config.model_dump(mode="json"),
            "product_data": self.product_data.model_dump(mode="json"),
            "current_step_index": self.current_step_index,
            "selections": copy.deepcopy(self.selections),
            "price_breakdown": self.price_breakdown.model_dump(),
        }

    @classmethod
    def deserialize(
        cls,
        data: dict[str, Any],
        catalog: Optional[Catalog] = None,
        markup: float = CATALOG_MARKUP,
    ) -> "ConfiguratorSession":
        """
        Rebuild a session from serialize() output.

        The price breakdown is recomputed rather than trusted from storage.
        """
        session = cls(
            ProductConfig.model_validate(data["product_config"]),
            ProductData.model_validate(data["product_data"]),
            catalog=catalog,
            markup=markup,
        )
        index = int(data.get("current_step_index", 0))
        session.current_step_index = min(max(index, 0), session.total_steps - 1)
        session.selections = copy.deepcopy(data.get("selections") or {})
        session.recalculate_price()
        return session
