"""
Celery Tasks
Background tasks for accepted cart items.
"""

import logging
import time
from datetime import datetime

from order_builder.celery_worker import celery_app
from order_builder.schemas import CartItem
from order_builder.services.cart_export import CartExportManager

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(OSError,),
    retry_backoff=True,
)
def export_cart_item(self, item: dict) -> dict:
    """
    Export an accepted cart item to the cart workbook.

    Args:
        item: CartItem.model_dump(mode="json")

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    product_id = item.get("product_id", "unknown")

    logger.info(f"Task {task_id}: exporting cart item {product_id}")
    start_time = time.time()

    result = CartExportManager().export_item({**item, "item_id": item.get("item_id") or task_id})

    elapsed = round(time.time() - start_time, 3)
    result["task_id"] = task_id
    result["processing_time_seconds"] = elapsed

    if result["success"]:
        logger.info(f"Task {task_id}: {product_id} exported in {elapsed}s")
    else:
        logger.warning(f"Task {task_id}: {product_id} failed - {result['message']}")

    return result


@celery_app.task
def health_check() -> dict:
    """Simple health check task to verify Celery is working."""
    return {
        "status": "healthy",
        "worker": "celery",
        "timestamp": datetime.now().isoformat(),
    }


def queue_cart_export(item: CartItem) -> None:
    """Cart sink for ProductConfigurator: hand the item to a worker."""
    export_cart_item.delay(item.model_dump(mode="json"))
