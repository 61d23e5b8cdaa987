"""
Cart Export with Concurrency Control

Appends accepted cart items to an Excel workbook so the kitchen and the
reporting scripts can read them. Several Celery worker processes may export
at once, so every read-modify-write of the workbook happens under a file
lock.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from order_builder.core.config import get_settings

logger = logging.getLogger(__name__)

CART_ITEMS_FILENAME = "cart_items.xlsx"


class CartExportManager:
    """Process-safe cart item workbook."""

    COLUMNS = [
        "item_id",
        "product_id",
        "product_name",
        "category",
        "variant",
        "selections",
        "base_price",
        "addons",
        "addons_total",
        "total",
        "created_at",
        "exported_at",
    ]

    def __init__(self, data_dir: Optional[Path | str] = None, lock_timeout: Optional[int] = None):
        settings = get_settings()
        self.data_dir = Path(data_dir or settings.data_directory)
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.export_lock_timeout

    @property
    def items_file(self) -> Path:
        return self.data_dir / CART_ITEMS_FILENAME

    @property
    def lock_file(self) -> Path:
        return self.data_dir / f"{CART_ITEMS_FILENAME}.lock"

    def _ensure_data_dir(self) -> None:
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_or_create_df(self) -> pd.DataFrame:
        if self.items_file.exists():
            try:
                return pd.read_excel(self.items_file, engine="openpyxl")
            except (OSError, ValueError) as e:
                logger.warning(f"Error reading {self.items_file}: {e}")
        return pd.DataFrame(columns=self.COLUMNS)

    @staticmethod
    def _row(item: dict[str, Any], export_time: str) -> dict[str, Any]:
        selections = item.get("selections") or {}
        pricing = item.get("pricing") or {}
        addons = pricing.get("addons") or []
        variant = selections.get("variant") or {}

        return {
            "item_id": item.get("item_id"),
            "product_id": item.get("product_id"),
            "product_name": item.get("product_name"),
            "category": item.get("category"),
            "variant": variant.get("name") if isinstance(variant, dict) else variant,
            "selections": json.dumps(selections, sort_keys=True),
            "base_price": pricing.get("base", 0),
            "addons": "; ".join(f"{a['name']} ${a['price']:.2f}" for a in addons),
            "addons_total": round(sum(a["price"] for a in addons), 2),
            "total": pricing.get("total", 0),
            "created_at": item.get("created_at", export_time),
            "exported_at": export_time,
        }

    def export_item(self, item: dict[str, Any]) -> dict[str, Any]:
        """
        Append one cart item (CartItem.model_dump(mode="json")) to the workbook.

        Returns:
            dict: success flag, message and export time
        """
        self._ensure_data_dir()

        item_id = item.get("item_id") or item.get("product_id", "unknown")
        result = {
            "success": False,
            "message": "",
            "item_id": item_id,
            "exported_at": None,
        }

        try:
            with FileLock(str(self.lock_file), timeout=self.lock_timeout):
                logger.debug(f"Lock acquired for cart item {item_id}")

                df = self._load_or_create_df()
                export_time = datetime.now().isoformat()
                new_row = self._row({**item, "item_id": item_id}, export_time)

                if df.empty:
                    df = pd.DataFrame([new_row], columns=self.COLUMNS)
                else:
                    df = pd.concat([df, pd.DataFrame([new_row])], ignore_index=True)
                df.to_excel(str(self.items_file), index=False, engine="openpyxl")

                logger.info(f"Cart item {item_id} ({new_row['product_name']}) exported")

                result["success"] = True
                result["message"] = f"Cart item {item_id} exported"
                result["exported_at"] = export_time

            logger.debug(f"Lock released for cart item {item_id}")

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout for cart item {item_id}")

        except (OSError, ValueError) as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting cart item {item_id}")

        return result

    def get_all_items(self) -> list[dict[str, Any]]:
        if not self.items_file.exists():
            return []

        try:
            df = pd.read_excel(self.items_file, engine="openpyxl")
            return df.to_dict("records")
        except (OSError, ValueError) as e:
            logger.error(f"Error reading cart items: {e}")
            return []

    def clear_all(self) -> bool:
        try:
            for f in [self.items_file, self.lock_file]:
                if f.exists():
                    f.unlink()
            logger.info("Cart item workbook cleared")
            return True
        except OSError as e:
            logger.error(f"Error clearing files: {e}")
            return False
