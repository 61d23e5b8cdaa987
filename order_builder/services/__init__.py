"""
Services Module

Background-side services:
    - cart_export: process-safe Excel export of accepted cart items
"""

from order_builder.services.cart_export import CartExportManager

__all__ = ["CartExportManager"]
