"""
Product Configurator

Imperative facade the presentation layer drives. Each call mutates the open
ConfiguratorSession, then:
    1. persists the session into the "product-configurator" flow of the
       order-state service (local write now, remote write debounced)
    2. notifies subscribers with a fresh ConfiguratorView

Usage:
    configurator = ProductConfigurator(catalog=load_catalog(), state_service=service)
    unsubscribe = configurator.subscribe(render)

    configurator.open("boneInWings", product_data)
    configurator.select_variant(variant)
    configurator.toggle_multi_choice("sauces", "honey-bbq")
    result = configurator.next()
"""

import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from order_builder.configurator.pricing import CATALOG_MARKUP
from order_builder.configurator.products import PRODUCT_CONFIGS
from order_builder.configurator.session import ConfiguratorSession
from order_builder.exceptions import NoActiveSessionError, UnknownProductError
from order_builder.schemas import (
    CartItem,
    CartResult,
    Catalog,
    ConfiguratorView,
    NavigationResult,
    ProductConfig,
    ProductData,
    Variant,
)

if TYPE_CHECKING:
    from order_builder.state.service import OrderStateService

logger = logging.getLogger(__name__)

CONFIGURATOR_FLOW = "product-configurator"

ViewListener = Callable[[Optional[ConfiguratorView]], None]
CartSink = Callable[[CartItem], None]


class ProductConfigurator:
    """
    Drives one customer's product customization.

    Attributes:
        catalog: Catalog snapshot handed to every session
        state_service: Optional OrderStateService used to persist the session
        cart_sink: Callable receiving accepted cart items
        session: The open ConfiguratorSession, or None
    """

    def __init__(
        self,
        catalog: Optional[Catalog] = None,
        state_service: Optional["OrderStateService"] = None,
        cart_sink: Optional[CartSink] = None,
        product_configs: Optional[dict[str, ProductConfig]] = None,
        markup: float = CATALOG_MARKUP,
    ):
        self.catalog = catalog or Catalog()
        self.state_service = state_service
        self.cart_sink = cart_sink
        self.product_configs = product_configs if product_configs is not None else PRODUCT_CONFIGS
        self.markup = markup
        self.session: Optional[ConfiguratorSession] = None
        self.product_id: Optional[str] = None
        self._listeners: list[ViewListener] = []

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        view = self.view() if self.session else None
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:
                logger.exception("Configurator listener failed")

    def _commit(self) -> None:
        """Persist the session and notify listeners after a mutation."""
        if self.state_service is not None and self.session is not None:
            self.state_service.save_state(
                CONFIGURATOR_FLOW,
                {"product_id": self.product_id, "session": self.session.serialize()},
                replace=True,
            )
        self._notify()

    def _require_session(self) -> ConfiguratorSession:
        if self.session is None:
            raise NoActiveSessionError("No product is open in the configurator")
        return self.session

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def open(self, product_id: str, product_data: ProductData | dict[str, Any]) -> ConfiguratorView:
        """
        Start customizing a product.

        Raises:
            UnknownProductError: If no customization config exists for product_id
        """
        config = self.product_configs.get(product_id)
        if config is None:
            logger.error(f"Unknown product: {product_id}")
            raise UnknownProductError(product_id)

        if not isinstance(product_data, ProductData):
            product_data = ProductData.model_validate(product_data)

        self.session = ConfiguratorSession(config, product_data, self.catalog, markup=self.markup)
        self.product_id = product_id
        logger.info(f"Configurator opened {product_id} ({self.session.total_steps} steps)")

        self._commit()
        return self.view()

    def resume(self) -> Optional[ConfiguratorView]:
        """Restore the in-progress session from the order-state service, if any."""
        if self.state_service is None:
            return None

        state = self.state_service.get_state(CONFIGURATOR_FLOW)
        stored = state.get("session")
        if not stored:
            return None

        try:
            self.session = ConfiguratorSession.deserialize(stored, self.catalog, markup=self.markup)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Discarding unreadable configurator session: {e}")
            return None

        self.product_id = state.get("product_id") or self.session.product_data.id
        logger.info(f"Configurator resumed {self.product_id} at step {self.session.current_step_index}")
        self._notify()
        return self.view()

    def close(self) -> None:
        self.session = None
        self.product_id = None
        if self.state_service is not None:
            self.state_service.save_state(
                CONFIGURATOR_FLOW,
                {"product_id": None, "session": None},
                replace=True,
            )
        self._notify()

    def view(self) -> ConfiguratorView:
        return self._require_session().view(self.product_id)

    # =========================================================================
    # MUTATORS
    # =========================================================================

    def select_option(self, step_id: str, option_id: str) -> bool:
        accepted = self._require_session().select_option(step_id, option_id)
        self._commit()
        return accepted

    def select_variant(self, variant: Variant | dict[str, Any]) -> bool:
        accepted = self._require_session().select_variant(variant)
        self._commit()
        return accepted

    def toggle_multi_choice(self, step_id: str, option_id: str) -> bool:
        accepted = self._require_session().toggle_multi_choice(step_id, option_id)
        if accepted:
            self._commit()
        return accepted

    def change_addon_quantity(self, step_id: str, item_id: str, delta: int) -> bool:
        accepted = self._require_session().change_addon_quantity(step_id, item_id, delta)
        if accepted:
            self._commit()
        return accepted

    def select_no_dip(self, step_id: str) -> bool:
        accepted = self._require_session().select_no_dip(step_id)
        self._commit()
        return accepted

    def next(self) -> NavigationResult:
        result = self._require_session().navigate_next()
        if result.advanced:
            self._commit()
        return result

    def back(self) -> NavigationResult:
        result = self._require_session().navigate_back()
        if result.advanced:
            self._commit()
        return result

    def jump_to_step(self, step_id: str) -> bool:
        jumped = self._require_session().jump_to_step(step_id)
        if jumped:
            self._commit()
        return jumped

    def add_to_cart(self) -> CartResult:
        """
        Hand the configured product to the cart.

        Every step the customer would visit must validate. On success the
        persisted session is cleared and the configurator closes.
        """
        session = self._require_session()

        validation = session.validate_all()
        if not validation.valid:
            return CartResult(added=False, error=validation.error)

        item = session.to_cart_item()
        if self.cart_sink is not None:
            self.cart_sink(item)

        logger.info(f"Added {item.product_name} to cart (${item.pricing.total:.2f})")
        self.close()
        return CartResult(added=True, item=item)
