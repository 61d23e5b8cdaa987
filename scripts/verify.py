"""
Cart Export Verification Script

Verifies the cart item workbook written by the export worker.
Run from project root: python scripts/verify.py
"""

import sys
from datetime import datetime

import pandas as pd

from order_builder.core.config import get_settings
from order_builder.services.cart_export import CartExportManager


def verify_export() -> bool:
    manager = CartExportManager()
    items_file = manager.items_file

    print("=" * 60)
    print("🔍 CART EXPORT VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {items_file}")
    print("=" * 60)

    if not items_file.exists():
        print("\n❌ Cart workbook not found!")
        print("   Run the simulation first: python scripts/simulate.py")
        return False

    try:
        df = pd.read_excel(items_file, engine="openpyxl")
        print("\n✅ File loaded successfully!")
    except (OSError, ValueError) as e:
        print(f"\n❌ Could not read workbook: {e}")
        return False

    print("\n📊 STATISTICS:")
    print(f"   Total Items: {len(df)}")
    print(f"   Columns: {len(df.columns)}")

    missing = [col for col in CartExportManager.COLUMNS if col not in df.columns]
    if missing:
        print(f"\n⚠️ Missing Columns: {missing}")
    else:
        print("\n✅ All required columns present")

    if "item_id" in df.columns:
        duplicates = df["item_id"].duplicated().sum()
        if duplicates > 0:
            print(f"\n⚠️ {duplicates} duplicate item IDs found!")
        else:
            print("✅ No duplicate item IDs")

    # Every row must satisfy total = base + addons
    if {"base_price", "addons_total", "total"} <= set(df.columns):
        mismatched = df[(df["base_price"] + df["addons_total"] - df["total"]).abs() > 0.005]
        if len(mismatched):
            print(f"\n⚠️ {len(mismatched)} rows where total ≠ base + addons")
        else:
            print("✅ Every total equals base + addons")

        print("\n💰 REVENUE:")
        print(f"   Total: ${df['total'].sum():.2f}")
        print(f"   Average: ${df['total'].mean():.2f}")
        print(f"   Markup applied at: {get_settings().catalog_markup}x catalog price")

    if "product_name" in df.columns and len(df) > 0:
        print("\n🍗 BY PRODUCT:")
        print(df.groupby("product_name")["total"].agg(["count", "sum"]).round(2).to_string())

        print("\n📋 RECENT ITEMS:")
        print("-" * 60)
        cols = [c for c in ["item_id", "product_name", "variant", "total"] if c in df.columns]
        print(df[cols].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE")
    print("=" * 60)

    return True


if __name__ == "__main__":
    sys.exit(0 if verify_export() else 1)
