"""
Default order state for each flow, plus the copy/merge helpers every
state operation goes through.

Order state is plain JSON data. Deep copies go through a JSON round trip so
a state can never hold anything the persistence layer could not store.
"""

import json
from decimal import Decimal
from typing import Any

from order_builder.configurator.pricing import round2
from order_builder.exceptions import UnknownFlowError

BOXED_MEALS = "boxed-meals"
GUIDED_PLANNER = "guided-planner"
PRODUCT_CONFIGURATOR = "product-configurator"


def _contact() -> dict[str, Any]:
    return {
        "company": "",
        "name": "",
        "email": "",
        "phone": "",
        "deliveryAddress": {
            "street": "",
            "street2": "",
            "city": "",
            "state": "",
            "zip": "",
        },
        "billingAddress": {
            "sameAsDelivery": True,
            "street": "",
            "street2": "",
            "city": "",
            "state": "",
            "zip": "",
        },
        "deliveryDate": "",
        "deliveryTimeHour": "12",
        "deliveryTimeMinute": "00",
        "deliveryPeriod": "PM",
        "notes": "",
    }


DEFAULT_STATES: dict[str, dict[str, Any]] = {
    BOXED_MEALS: {
        "currentStep": "template-selection",
        "selectedTemplate": None,
        "boxCount": 10,
        "currentConfig": {
            "wingCount": 6,
            "wingType": None,
            "wingStyle": None,
            "sauces": [],
            "splitSauces": False,
            "sauceOnSide": False,
            "dips": [],
            "side": None,
            "dessert": None,
            "specialInstructions": "",
        },
        "individualOverrides": {},
        "extras": {
            "quickAdds": [],
            "beverages": [],
            "salads": [],
            "sides": [],
            "desserts": [],
            "saucesToGo": [],
            "dipsToGo": [],
        },
        "contact": _contact(),
        "pricing": {
            "subtotal": 0,
            "extrasTotal": 0,
            "estimatedTotal": 0,
            "taxRate": 0.08,
        },
    },
    GUIDED_PLANNER: {
        "currentStep": 1,
        "guestCount": None,
        "eventType": None,
        "selectedPackage": None,
        "sauceSelections": [],
        "addOns": {
            "desserts": [],
            "beverages": [],
            "salads": [],
            "sides": [],
        },
        "contact": _contact(),
        "pricing": {
            "packagePrice": 0,
            "addOnsTotal": 0,
            "subtotal": 0,
            "estimatedTotal": 0,
            "taxRate": 0.08,
        },
    },
    PRODUCT_CONFIGURATOR: {
        "product_id": None,
        "session": None,
    },
}


def deep_clone(obj: Any) -> Any:
    return json.loads(json.dumps(obj))


def deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """
    Merge source into a copy of target.

    Nested dicts merge recursively; lists and scalars from source replace
    the target value. Neither argument is modified.
    """
    output = deep_clone(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(output.get(key), dict):
            output[key] = deep_merge(output[key], value)
        else:
            output[key] = deep_clone(value)
    return output


def default_state(flow_type: str) -> dict[str, Any]:
    """
    Get a fresh default state for a flow.

    Raises:
        UnknownFlowError: If the flow has no registered defaults
    """
    if flow_type not in DEFAULT_STATES:
        raise UnknownFlowError(flow_type)
    return deep_clone(DEFAULT_STATES[flow_type])


def has_user_data(state: dict[str, Any]) -> bool:
    """True when the customer has typed any identity signal into the contact form."""
    contact = state.get("contact") or {}
    return bool(contact.get("name") or contact.get("email") or contact.get("phone"))


# =============================================================================
# DERIVED CATERING PRICING
# =============================================================================

def _money(value: Any) -> Decimal:
    try:
        return Decimal(str(value or 0))
    except ArithmeticError:
        return Decimal("0")


def _count(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _line_items_total(groups: dict[str, Any]) -> Decimal:
    total = Decimal("0")
    for items in groups.values():
        for item in items or []:
            if isinstance(item, dict):
                total += _money(item.get("price")) * _count(item.get("quantity"))
    return total


def derive_pricing(flow_type: str, state: dict[str, Any], tax_rate: float) -> dict[str, Any]:
    """
    Recompute the pricing block of a catering state from its inputs.

    Returns the state unchanged for flows without derived pricing.
    """
    pricing = state.get("pricing")
    if not isinstance(pricing, dict):
        return state

    if flow_type == GUIDED_PLANNER:
        package = state.get("selectedPackage") or {}
        package_price = _money(package.get("price") if isinstance(package, dict) else 0)
        add_ons = _line_items_total(state.get("addOns") or {})
        subtotal = package_price + add_ons
        pricing.update({
            "packagePrice": round2(package_price),
            "addOnsTotal": round2(add_ons),
        })
    elif flow_type == BOXED_MEALS:
        template = state.get("selectedTemplate") or {}
        box_price = _money(template.get("price") if isinstance(template, dict) else 0)
        extras = _line_items_total(state.get("extras") or {})
        subtotal = box_price * _count(state.get("boxCount")) + extras
        pricing["extrasTotal"] = round2(extras)
    else:
        return state

    pricing.update({
        "subtotal": round2(subtotal),
        "estimatedTotal": round2(subtotal * (1 + _money(tax_rate))),
        "taxRate": tax_rate,
    })
    return state
