"""
Product Configurator

Multi-step order builder: flow state machine, step validators and pricing
strategies, driven through the ProductConfigurator facade.
"""

from order_builder.configurator.controller import CONFIGURATOR_FLOW, ProductConfigurator
from order_builder.configurator.pricing import CATALOG_MARKUP, PRICING_STRATEGIES, calculate_price, round2
from order_builder.configurator.products import PRODUCT_CONFIGS, get_product_config, load_catalog
from order_builder.configurator.session import ConfiguratorSession
from order_builder.configurator.validators import STEP_VALIDATORS, validate_step

__all__ = [
    "CONFIGURATOR_FLOW",
    "ProductConfigurator",
    "ConfiguratorSession",
    "CATALOG_MARKUP",
    "PRICING_STRATEGIES",
    "calculate_price",
    "round2",
    "PRODUCT_CONFIGS",
    "get_product_config",
    "load_catalog",
    "STEP_VALIDATORS",
    "validate_step",
]
