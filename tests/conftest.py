"""
Shared fixtures for order builder tests.
"""
import pytest

from order_builder.configurator import PRODUCT_CONFIGS, ConfiguratorSession, load_catalog
from order_builder.core.config import Settings
from order_builder.schemas import ProductData
from order_builder.state import LocalStateCache, OrderStateService
from order_builder.state.remote import InMemoryRemoteStore


@pytest.fixture
def catalog():
    """The packaged catalog snapshot."""
    return load_catalog()


@pytest.fixture
def wing_product():
    """Bone-in wings with two priced variants."""
    return ProductData.model_validate({
        "id": "boneInWings",
        "name": "Bone-In Wings",
        "basePrice": 12.14,
        "variants": [
            {"id": "6pc", "name": "6 Wings", "price": 12.14, "count": 6},
            {"id": "12pc", "name": "12 Wings", "price": 21.59, "count": 12},
        ],
    })


@pytest.fixture
def plant_product():
    """Plant-based wings whose variants depend on the preparation method."""
    return ProductData.model_validate({
        "id": "plantBasedWings",
        "name": "Cauliflower Wings",
        "basePrice": 10.99,
        "variants": [
            {"id": "fried-8", "name": "8 Fried", "price": 10.99, "preparation": "fried"},
            {"id": "baked-8", "name": "8 Baked", "price": 11.49, "preparation": "baked"},
        ],
    })


@pytest.fixture
def wing_session(wing_product, catalog):
    return ConfiguratorSession(PRODUCT_CONFIGS["boneInWings"], wing_product, catalog)


@pytest.fixture
def settings(tmp_path):
    """Settings isolated to a temporary directory with a short debounce window."""
    return Settings(
        local_cache_directory=str(tmp_path / "state"),
        data_directory=str(tmp_path / "data"),
        remote_write_debounce_seconds=0.05,
    )


@pytest.fixture
def clock():
    """Mutable fake clock: advance with clock.now += seconds."""
    class FakeClock:
        now = 1_760_000_000.0

        def __call__(self):
            return self.now

    return FakeClock()


@pytest.fixture
def local_cache(tmp_path, settings, clock):
    return LocalStateCache(
        tmp_path / "state",
        version=settings.state_version,
        ttl_seconds=settings.local_state_ttl_seconds,
        lock_timeout=2,
        clock=clock,
    )


@pytest.fixture
def remote_store():
    return InMemoryRemoteStore()


@pytest.fixture
def state_service(remote_store, local_cache, settings):
    return OrderStateService(
        remote_store=remote_store,
        local_cache=local_cache,
        settings=settings,
        client_id="device-a",
    )
