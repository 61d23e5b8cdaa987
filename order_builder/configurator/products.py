"""
Product Definitions

Customization flows for every orderable product, composed from the shared
step types, plus loaders for the catalog snapshot.

Flows:
    plantBasedWings:  Preparation → Size → Sauces → Extra Sauces → Included Dips → Extra Dips → Review
    bonelessWings:    Size → Sauces → Extra Sauces → Included Dips → Extra Dips → Review
    boneInWings:      Size → Sauces → Extra Sauces → Included Dips → Wing Style → Extra Dips → Review
    fountainDrink:    Size → Review
"""

import json
import logging
from pathlib import Path
from typing import Optional

from order_builder.schemas import Catalog, ProductConfig

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent.parent / "data" / "catalog.json"

_SAUCES_STEP = {
    "id": "sauces",
    "type": "multi-choice",
    "label": "Choose Sauces (Up to 3)",
    "required": True,
    "minSelections": 1,
    "maxSelections": 3,
    "dataSource": "sauces",
}

_EXTRA_SAUCES_STEP = {
    "id": "extra-sauces",
    "type": "optional-addons",
    "label": "Extra Sauces",
    "description": "Add extra 1.5oz sauce cups - choose any sauce!",
    "dataSource": "sauces",
    "priceSource": "catalog",
    "pricePerItem": 0.99,
}

_INCLUDED_DIPS_STEP = {
    "id": "includedDips",
    "type": "included-dips",
    "label": "Choose Included Dips",
    "description": "Select your complimentary dipping sauces",
    "maxSelections": 2,
    "dataSource": "dippingSauces",
}

_EXTRA_DIPS_STEP = {
    "id": "extraDips",
    "type": "optional-addons",
    "label": "Extra Dipping Sauces",
    "skipIf": {"includedDips": "no-dip"},
    "dataSource": "dippingSauces",
    "priceSource": "catalog",
    "pricePerItem": 0.99,
}

_REVIEW_STEP = {
    "id": "summary",
    "type": "review",
    "label": "Review Your Order",
}


PRODUCT_CONFIGS: dict[str, ProductConfig] = {
    "plantBasedWings": ProductConfig.model_validate({
        "productType": "configurable-entree",
        "displayName": "Plant-Based Cauliflower Wings",
        "category": "plant-based-wings",
        "customizationFlow": [
            {
                "id": "preparation",
                "type": "single-choice",
                "label": "Choose Preparation Method",
                "required": True,
                "options": [
                    {"id": "fried", "label": "Fried", "description": "Crispy & golden, classic texture"},
                    {"id": "baked", "label": "Baked", "description": "Lower fat, health-conscious"},
                ],
            },
            {
                "id": "size",
                "type": "variant-selector",
                "label": "Choose Size",
                "required": True,
                "dependsOn": "preparation",
            },
            _SAUCES_STEP,
            _EXTRA_SAUCES_STEP,
            _INCLUDED_DIPS_STEP,
            _EXTRA_DIPS_STEP,
            _REVIEW_STEP,
        ],
    }),
    "bonelessWings": ProductConfig.model_validate({
        "productType": "configurable-entree",
        "displayName": "Boneless Wings",
        "category": "wings",
        "customizationFlow": [
            {"id": "size", "type": "variant-selector", "label": "Choose Wing Size", "required": True},
            _SAUCES_STEP,
            _EXTRA_SAUCES_STEP,
            _INCLUDED_DIPS_STEP,
            _EXTRA_DIPS_STEP,
            _REVIEW_STEP,
        ],
    }),
    "boneInWings": ProductConfig.model_validate({
        "productType": "configurable-entree",
        "displayName": "Classic Bone-In Wings",
        "category": "wings",
        "customizationFlow": [
            {"id": "size", "type": "variant-selector", "label": "Choose Wing Size", "required": True},
            _SAUCES_STEP,
            _EXTRA_SAUCES_STEP,
            _INCLUDED_DIPS_STEP,
            {
                "id": "wingStyle",
                "type": "single-choice",
                "label": "Wing Style Preference",
                "description": "Choose your preferred wing parts",
                "required": True,
                "options": [
                    {"id": "regular", "label": "Regular Mix", "description": "Flats and drums mixed"},
                    {"id": "flats", "label": "All Flats", "description": "Flat wingettes only"},
                    {"id": "drums", "label": "All Drums", "description": "Drumettes only"},
                ],
            },
            _EXTRA_DIPS_STEP,
            _REVIEW_STEP,
        ],
    }),
    "fountainDrink": ProductConfig.model_validate({
        "productType": "simple-product",
        "displayName": "Fountain Drink",
        "category": "beverages",
        "customizationFlow": [
            {"id": "size", "type": "variant-selector", "label": "Choose Size", "required": True},
            _REVIEW_STEP,
        ],
    }),
}


def get_product_config(product_id: str) -> Optional[ProductConfig]:
    return PRODUCT_CONFIGS.get(product_id)


def load_catalog(path: Path | str | None = None) -> Catalog:
    """
    Load a catalog snapshot from JSON.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(path or DEFAULT_CATALOG_PATH)
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        catalog = Catalog.model_validate(json.load(f))
    logger.info(
        f"Catalog loaded from {path} "
        f"({len(catalog.sauces)} sauces, {len(catalog.dipping_sauces)} dips)"
    )
    return catalog
