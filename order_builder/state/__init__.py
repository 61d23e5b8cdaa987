"""
Order state persistence: defaults, drafts, local cache, remote sync.

Usage:
    from order_builder.state import OrderStateService, Identity

    service = OrderStateService()
    state = await service.load_state("guided-planner")
    service.create_draft("guided-planner")
    service.update_draft("guided-planner", {"guestCount": 25, "eventType": "corporate"})
    result = service.apply_draft("guided-planner", section="event-details")
"""

from order_builder.state.defaults import (
    BOXED_MEALS,
    DEFAULT_STATES,
    GUIDED_PLANNER,
    PRODUCT_CONFIGURATOR,
    deep_clone,
    deep_merge,
    default_state,
)
from order_builder.state.identity import Identity
from order_builder.state.local_cache import LocalStateCache
from order_builder.state.sections import SECTION_VALIDATORS, register_section_validator
from order_builder.state.service import OrderStateService

__all__ = [
    "BOXED_MEALS",
    "DEFAULT_STATES",
    "GUIDED_PLANNER",
    "PRODUCT_CONFIGURATOR",
    "SECTION_VALIDATORS",
    "Identity",
    "LocalStateCache",
    "OrderStateService",
    "deep_clone",
    "deep_merge",
    "default_state",
    "register_section_validator",
]
