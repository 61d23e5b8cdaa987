"""
Step Validators

Registry mapping a step type to a function that decides whether the current
selections let the customer move past that step. Validators never raise;
they return a StepValidation with a user-facing message on failure.
"""

import logging
from typing import Any, Callable

from order_builder.schemas import NO_DIP, StepConfig, StepType, StepValidation

logger = logging.getLogger(__name__)

Selections = dict[str, Any]
StepValidator = Callable[[StepConfig, Selections], StepValidation]

VALID = StepValidation(valid=True)


def quantity_total(selection: Any) -> int:
    """Sum a quantity map; anything else (including 'no-dip') counts as zero."""
    if not isinstance(selection, dict):
        return 0
    return sum(qty or 0 for qty in selection.values())


def validate_single_choice(step: StepConfig, selections: Selections) -> StepValidation:
    if step.required and not selections.get(step.id):
        return StepValidation(valid=False, error=f"Please select {step.label.lower()}")
    return VALID


def validate_variant(step: StepConfig, selections: Selections) -> StepValidation:
    if step.required and not selections.get("variant"):
        return StepValidation(valid=False, error="Please select a size")
    return VALID


def validate_multi_choice(step: StepConfig, selections: Selections) -> StepValidation:
    selected = selections.get(step.id) or []
    min_selections = step.min_selections if step.min_selections is not None else 1

    if step.required and len(selected) < min_selections:
        return StepValidation(
            valid=False,
            error=f"Please select at least {min_selections} option(s)",
        )
    if step.max_selections is not None and len(selected) > step.max_selections:
        return StepValidation(
            valid=False,
            error=f"Maximum {step.max_selections} selections allowed",
        )
    return VALID


def validate_included_dips(step: StepConfig, selections: Selections) -> StepValidation:
    selection = selections.get(step.id)
    if selection == NO_DIP:
        return VALID
    if step.required and quantity_total(selection) == 0:
        return StepValidation(
            valid=False,
            error='Please select at least one dipping sauce or choose "No Dipping Sauce"',
        )
    return VALID


def always_valid(step: StepConfig, selections: Selections) -> StepValidation:
    return VALID


STEP_VALIDATORS: dict[str, StepValidator] = {
    StepType.SINGLE_CHOICE: validate_single_choice,
    StepType.VARIANT_SELECTOR: validate_variant,
    StepType.MULTI_CHOICE: validate_multi_choice,
    StepType.INCLUDED_DIPS: validate_included_dips,
    StepType.OPTIONAL_ADDONS: always_valid,
    StepType.REVIEW: always_valid,
}


def validate_step(step: StepConfig, selections: Selections) -> StepValidation:
    """
    Run the registered validator for a step.

    Unregistered step types fail open: a warning is logged and the step
    is treated as valid so the customer is never stranded mid-flow.
    """
    validator = STEP_VALIDATORS.get(step.type)
    if validator is None:
        logger.warning(f"No validator registered for step type: {step.type}")
        return VALID
    return validator(step, selections)
