"""Tests for OrderStateService: persistence, drafts, identity handoff and sync."""
import asyncio

import pytest

from order_builder.exceptions import DraftNotFoundError, UnknownFlowError
from order_builder.state import (
    GUIDED_PLANNER,
    BOXED_MEALS,
    Identity,
    LocalStateCache,
    OrderStateService,
    default_state,
)
from order_builder.state.remote import InMemoryRemoteStore, RemoteRecord

PAT = Identity(uid="user-1")


@pytest.fixture
def second_device(remote_store, settings, tmp_path, clock):
    """Another client of the same remote store with its own local cache."""
    cache = LocalStateCache(tmp_path / "device-b", version=settings.state_version, clock=clock)
    return OrderStateService(
        remote_store=remote_store,
        local_cache=cache,
        settings=settings,
        client_id="device-b",
    )


class TestLoadAndSave:

    def test_defaults_when_nothing_stored(self, state_service):
        state = asyncio.run(state_service.load_state(GUIDED_PLANNER))
        assert state == default_state(GUIDED_PLANNER)

    def test_defaults_are_persisted_locally(self, state_service, local_cache):
        asyncio.run(state_service.load_state(BOXED_MEALS))
        assert local_cache.load(state_service.storage_key(BOXED_MEALS)) == default_state(BOXED_MEALS)

    def test_unknown_flow(self, state_service):
        with pytest.raises(UnknownFlowError):
            state_service.get_state("wedding-planner")

    def test_deep_merge_keeps_siblings(self, state_service):
        state_service.save_state(GUIDED_PLANNER, {"contact": {"name": "Pat"}})
        state_service.save_state(GUIDED_PLANNER, {"contact": {"deliveryAddress": {"city": "Philadelphia"}}})

        contact = state_service.get_state(GUIDED_PLANNER)["contact"]
        assert contact["name"] == "Pat"
        assert contact["deliveryAddress"]["city"] == "Philadelphia"
        assert contact["billingAddress"]["sameAsDelivery"] is True

    def test_lists_are_replaced(self, state_service):
        state_service.save_state(GUIDED_PLANNER, {"sauceSelections": ["honey-bbq", "buffalo-hot"]})
        state_service.save_state(GUIDED_PLANNER, {"sauceSelections": ["garlic-parm"]})
        assert state_service.get_state(GUIDED_PLANNER)["sauceSelections"] == ["garlic-parm"]

    def test_replace_drops_missing_keys(self, state_service):
        state_service.save_state("product-configurator", {"product_id": "x", "session": {"a": 1}})
        state_service.save_state("product-configurator", {"product_id": None, "session": None}, replace=True)
        assert state_service.get_state("product-configurator") == {"product_id": None, "session": None}

    def test_new_service_reads_local_copy(self, state_service, remote_store, local_cache, settings):
        state_service.save_state(GUIDED_PLANNER, {"guestCount": 40})
        reopened = OrderStateService(remote_store=remote_store, local_cache=local_cache, settings=settings)
        assert asyncio.run(reopened.load_state(GUIDED_PLANNER))["guestCount"] == 40

    def test_get_state_returns_copy(self, state_service):
        state = state_service.get_state(GUIDED_PLANNER)
        state["contact"]["name"] = "Mutated"
        assert state_service.get_state(GUIDED_PLANNER)["contact"]["name"] == ""


class TestDerivedPricing:

    def test_guided_planner_totals(self, state_service):
        state = state_service.save_state(GUIDED_PLANNER, {
            "selectedPackage": {"id": "party-pack", "price": 450},
            "addOns": {"desserts": [{"id": "brownie", "price": 2.5, "quantity": 10}]},
        })
        assert state["pricing"] == {
            "packagePrice": 450.0,
            "addOnsTotal": 25.0,
            "subtotal": 475.0,
            "estimatedTotal": 513.0,
            "taxRate": 0.08,
        }

    def test_boxed_meals_totals(self, state_service):
        state = state_service.save_state(BOXED_MEALS, {
            "selectedTemplate": {"id": "classic-box", "price": 15.99},
            "boxCount": 12,
        })
        assert state["pricing"]["subtotal"] == 191.88
        assert state["pricing"]["estimatedTotal"] == 207.23

    def test_unparseable_counts_price_as_zero(self, state_service):
        state = state_service.save_state(BOXED_MEALS, {
            "selectedTemplate": {"id": "classic-box", "price": 15.99},
            "boxCount": "ten",
            "extras": {"drinks": [{"id": "lemonade", "price": 3, "quantity": "a few"}]},
        })
        assert state["pricing"]["subtotal"] == 0.0
        assert state["pricing"]["extrasTotal"] == 0.0

    def test_numeric_strings_are_counted(self, state_service):
        state = state_service.save_state(BOXED_MEALS, {
            "selectedTemplate": {"id": "classic-box", "price": 15.99},
            "boxCount": "12",
        })
        assert state["pricing"]["subtotal"] == 191.88


class TestSubscriptions:

    def test_subscriber_sees_new_state(self, state_service):
        seen = []
        state_service.subscribe(GUIDED_PLANNER, seen.append)
        state_service.save_state(GUIDED_PLANNER, {"guestCount": 30})
        assert seen[-1]["guestCount"] == 30

    def test_notify_false_is_silent(self, state_service):
        seen = []
        state_service.subscribe(GUIDED_PLANNER, seen.append)
        state_service.save_state(GUIDED_PLANNER, {"guestCount": 30}, notify=False)
        assert seen == []

    def test_unsubscribe_and_failing_listener(self, state_service):
        seen = []

        def broken(state):
            raise ValueError("boom")

        state_service.subscribe(GUIDED_PLANNER, broken)
        unsubscribe = state_service.subscribe(GUIDED_PLANNER, seen.append)
        state_service.save_state(GUIDED_PLANNER, {"guestCount": 30})
        unsubscribe()
        state_service.save_state(GUIDED_PLANNER, {"guestCount": 31})
        assert [s["guestCount"] for s in seen] == [30]


class TestDrafts:

    def test_discarded_draft_leaves_state_untouched(self, state_service):
        before = state_service.get_state(GUIDED_PLANNER)
        state_service.create_draft(GUIDED_PLANNER)
        state_service.update_draft(GUIDED_PLANNER, {"guestCount": 50, "contact": {"name": "Pat"}})
        state_service.discard_draft(GUIDED_PLANNER)

        assert state_service.get_state(GUIDED_PLANNER) == before
        assert state_service.get_draft(GUIDED_PLANNER) is None

    def test_draft_is_isolated(self, state_service):
        state_service.create_draft(GUIDED_PLANNER)
        state_service.update_draft(GUIDED_PLANNER, {"guestCount": 50})
        assert state_service.get_state(GUIDED_PLANNER)["guestCount"] is None
        assert state_service.get_draft(GUIDED_PLANNER)["guestCount"] == 50

    def test_update_without_draft(self, state_service):
        with pytest.raises(DraftNotFoundError):
            state_service.update_draft(GUIDED_PLANNER, {"guestCount": 50})

    def test_apply_without_draft(self, state_service):
        with pytest.raises(DraftNotFoundError):
            state_service.apply_draft(GUIDED_PLANNER, "event-details")

    def test_discard_without_draft_is_noop(self, state_service):
        before = state_service.get_state(GUIDED_PLANNER)
        state_service.discard_draft(GUIDED_PLANNER)
        assert state_service.get_state(GUIDED_PLANNER) == before

    def test_invalid_section_is_all_or_nothing(self, state_service):
        before = state_service.get_state(GUIDED_PLANNER)
        state_service.create_draft(GUIDED_PLANNER)
        state_service.update_draft(GUIDED_PLANNER, {"guestCount": 5, "eventType": "birthday"})

        result = state_service.apply_draft(GUIDED_PLANNER, "event-details")
        assert not result.is_valid
        assert result.errors == ["Guest count must be at least 10"]
        assert state_service.get_state(GUIDED_PLANNER) == before
        assert state_service.get_draft(GUIDED_PLANNER)["guestCount"] == 5

    def test_valid_section_commits_and_clears_draft(self, state_service):
        seen = []
        state_service.subscribe(GUIDED_PLANNER, seen.append)
        state_service.create_draft(GUIDED_PLANNER)
        state_service.update_draft(GUIDED_PLANNER, {"guestCount": 25, "eventType": "corporate"})

        result = state_service.apply_draft(GUIDED_PLANNER, "event-details")
        assert result.is_valid
        assert result.errors == []
        assert state_service.get_state(GUIDED_PLANNER)["guestCount"] == 25
        assert state_service.get_draft(GUIDED_PLANNER) is None
        assert seen[-1]["eventType"] == "corporate"

    def test_guest_count_as_text(self, state_service):
        state_service.create_draft(GUIDED_PLANNER)
        state_service.update_draft(GUIDED_PLANNER, {"guestCount": "25", "eventType": "corporate"})
        assert state_service.apply_draft(GUIDED_PLANNER, "event-details").is_valid
        assert state_service.get_state(GUIDED_PLANNER)["guestCount"] == "25"

    def test_non_numeric_guest_count_is_a_validation_error(self, state_service):
        state_service.create_draft(GUIDED_PLANNER)
        state_service.update_draft(GUIDED_PLANNER, {"guestCount": "lots", "eventType": "corporate"})

        result = state_service.apply_draft(GUIDED_PLANNER, "event-details")
        assert not result.is_valid
        assert result.errors == ["Guest count must be at least 10"]

    def test_contact_section_errors(self, state_service):
        state_service.create_draft(BOXED_MEALS)
        state_service.update_draft(BOXED_MEALS, {"contact": {"name": "Pat", "email": "pat@", "phone": "555-12"}})
        result = state_service.apply_draft(BOXED_MEALS, "contact")
        assert result.errors == ["Valid email required", "Phone number must have at least 10 digits"]

    def test_unknown_section_passes(self, state_service):
        state_service.create_draft(BOXED_MEALS)
        state_service.update_draft(BOXED_MEALS, {"boxCount": 20})
        assert state_service.apply_draft(BOXED_MEALS, "dessert-upsell").is_valid
        assert state_service.get_state(BOXED_MEALS)["boxCount"] == 20

    def test_second_create_replaces_draft(self, state_service):
        state_service.create_draft(GUIDED_PLANNER)
        state_service.update_draft(GUIDED_PLANNER, {"guestCount": 50})
        state_service.create_draft(GUIDED_PLANNER)
        assert state_service.get_draft(GUIDED_PLANNER)["guestCount"] is None


class TestRemoteWrites:

    def test_signed_out_writes_stay_local(self, state_service, remote_store):
        async def scenario():
            state_service.save_state(GUIDED_PLANNER, {"guestCount": 30})
            await asyncio.sleep(0.1)

        asyncio.run(scenario())
        assert remote_store.write_count == 0

    def test_burst_of_saves_is_one_remote_write(self, state_service, remote_store):
        async def scenario():
            await state_service.sign_in(PAT)
            for count in (20, 30, 40):
                state_service.save_state(GUIDED_PLANNER, {"guestCount": count})
            await asyncio.sleep(0.2)
            return await remote_store.get(PAT.uid, GUIDED_PLANNER)

        record = asyncio.run(scenario())
        assert remote_store.write_count == 1
        assert record.state["guestCount"] == 40
        assert record.version == "2.0.0"
        assert record.origin == "device-a"

    def test_flush_performs_pending_write(self, state_service, remote_store):
        async def scenario():
            await state_service.sign_in(PAT)
            state_service.save_state(GUIDED_PLANNER, {"guestCount": 20})
            await state_service.flush()
            return remote_store.write_count

        assert asyncio.run(scenario()) == 1

    def test_write_without_event_loop_waits_for_flush(self, state_service, remote_store):
        asyncio.run(state_service.sign_in(PAT))
        state_service.save_state(GUIDED_PLANNER, {"guestCount": 20})
        assert remote_store.write_count == 0

        asyncio.run(state_service.flush())
        assert remote_store.write_count == 1

    def test_remote_failures_are_absorbed(self, local_cache, settings):
        service = OrderStateService(
            remote_store=InMemoryRemoteStore(failure_rate=1.0),
            local_cache=local_cache,
            settings=settings,
        )

        async def scenario():
            await service.sign_in(PAT)
            service.save_state(GUIDED_PLANNER, {"guestCount": 20})
            await service.flush()
            return await service.load_state(GUIDED_PLANNER)

        assert asyncio.run(scenario())["guestCount"] == 20


class TestIdentityHandoff:

    def test_local_customer_data_is_handed_off(self, state_service, remote_store):
        state_service.save_state(BOXED_MEALS, {"contact": {"name": "Pat"}, "boxCount": 15})

        async def scenario():
            await state_service.sign_in(PAT)
            return await remote_store.get(PAT.uid, BOXED_MEALS)

        record = asyncio.run(scenario())
        assert record.state["contact"]["name"] == "Pat"
        assert record.state["boxCount"] == 15

    def test_empty_local_adopts_remote_copy(self, state_service, remote_store):
        async def scenario():
            stored = default_state(GUIDED_PLANNER)
            stored["guestCount"] = 60
            await remote_store.put(RemoteRecord(GUIDED_PLANNER, PAT.uid, "2.0.0", stored, origin="laptop"))
            await state_service.sign_in(PAT)

        asyncio.run(scenario())
        assert state_service.get_state(GUIDED_PLANNER)["guestCount"] == 60

    def test_profile_prefills_only_empty_fields(self, state_service):
        state_service.save_state(GUIDED_PLANNER, {"contact": {"name": "Pat Q."}})
        profile = Identity(uid="user-1", display_name="Patricia", email="pat@example.com", phone_number="2155550100")

        asyncio.run(state_service.sign_in(profile))
        contact = state_service.get_state(GUIDED_PLANNER)["contact"]
        assert contact["name"] == "Pat Q."
        assert contact["email"] == "pat@example.com"
        assert contact["phone"] == "2155550100"

    def test_load_state_prefers_remote_of_same_version(self, state_service, remote_store):
        async def scenario():
            await state_service.sign_in(PAT)
            stored = default_state(GUIDED_PLANNER)
            stored["eventType"] = "wedding"
            await remote_store.put(RemoteRecord(GUIDED_PLANNER, PAT.uid, "2.0.0", stored, origin="laptop"))
            await remote_store.put(RemoteRecord(BOXED_MEALS, PAT.uid, "1.4.0", {"boxCount": 99}, origin="laptop"))
            return (
                await state_service.load_state(GUIDED_PLANNER),
                await state_service.load_state(BOXED_MEALS),
            )

        planner, boxed = asyncio.run(scenario())
        assert planner["eventType"] == "wedding"
        assert boxed["boxCount"] == 10

    def test_sign_out_flushes_and_unsubscribes(self, state_service, remote_store):
        async def scenario():
            await state_service.sign_in(PAT)
            assert remote_store.listener_count(PAT.uid, GUIDED_PLANNER) == 1
            state_service.save_state(GUIDED_PLANNER, {"guestCount": 20})
            await state_service.sign_out()
            flushed = remote_store.write_count

            state_service.save_state(GUIDED_PLANNER, {"guestCount": 30})
            await asyncio.sleep(0.1)
            return flushed

        flushed = asyncio.run(scenario())
        assert flushed == 1
        assert remote_store.write_count == 1
        assert remote_store.listener_count(PAT.uid, GUIDED_PLANNER) == 0
        assert state_service.identity is None


class TestRealTimeSync:

    def test_write_on_one_device_reaches_the_other(self, state_service, second_device):
        seen = []
        second_device.subscribe(GUIDED_PLANNER, seen.append)

        async def scenario():
            await state_service.sign_in(PAT)
            await second_device.sign_in(PAT)
            state_service.save_state(GUIDED_PLANNER, {"guestCount": 45})
            await state_service.flush()

        asyncio.run(scenario())
        assert second_device.get_state(GUIDED_PLANNER)["guestCount"] == 45
        assert seen[-1]["guestCount"] == 45

    def test_own_echo_is_ignored(self, state_service):
        seen = []
        state_service.subscribe(GUIDED_PLANNER, seen.append)

        async def scenario():
            await state_service.sign_in(PAT)
            state_service.save_state(GUIDED_PLANNER, {"guestCount": 45})
            await state_service.flush()

        asyncio.run(scenario())
        assert len(seen) == 1

    def test_other_version_is_dropped(self, state_service, remote_store):
        async def scenario():
            await state_service.sign_in(PAT)
            await remote_store.put(
                RemoteRecord(GUIDED_PLANNER, PAT.uid, "1.0.0", {"guestCount": 999}, origin="old-app")
            )

        asyncio.run(scenario())
        assert state_service.get_state(GUIDED_PLANNER)["guestCount"] is None

    def test_remote_update_leaves_draft_alone(self, state_service, second_device):
        async def scenario():
            await state_service.sign_in(PAT)
            await second_device.sign_in(PAT)
            second_device.create_draft(GUIDED_PLANNER)
            second_device.update_draft(GUIDED_PLANNER, {"guestCount": 12})
            state_service.save_state(GUIDED_PLANNER, {"guestCount": 45})
            await state_service.flush()

        asyncio.run(scenario())
        assert second_device.get_state(GUIDED_PLANNER)["guestCount"] == 45
        assert second_device.get_draft(GUIDED_PLANNER)["guestCount"] == 12

    def test_clear_state_resets_everywhere(self, state_service, remote_store):
        async def scenario():
            await state_service.sign_in(PAT)
            state_service.save_state(GUIDED_PLANNER, {"guestCount": 45})
            await state_service.flush()
            await state_service.clear_state(GUIDED_PLANNER)
            return await remote_store.get(PAT.uid, GUIDED_PLANNER)

        assert asyncio.run(scenario()) is None
        assert state_service.get_state(GUIDED_PLANNER) == default_state(GUIDED_PLANNER)
