"""Tests for the configurator flow state machine."""
import random

import pytest

from order_builder.configurator import PRODUCT_CONFIGS, ConfiguratorSession
from order_builder.schemas import NO_DIP

SIX_WINGS = {"id": "6pc", "name": "6 Wings", "price": 12.14, "count": 6}
TWELVE_WINGS = {"id": "12pc", "name": "12 Wings", "price": 21.59, "count": 12}


def _walk_to(session, step_id):
    assert session.jump_to_step(step_id)
    assert session.current_step.id == step_id


class TestStepQueries:

    def test_starts_on_first_step(self, wing_session):
        assert wing_session.current_step_index == 0
        assert wing_session.current_step.id == "size"
        assert wing_session.is_first_step()
        assert not wing_session.is_last_step()

    def test_last_step(self, wing_session):
        _walk_to(wing_session, "summary")
        assert wing_session.is_last_step()
        assert not wing_session.is_first_step()

    def test_single_step_flow_is_first_and_last(self, wing_product):
        config = PRODUCT_CONFIGS["fountainDrink"].model_copy(
            update={"customization_flow": PRODUCT_CONFIGS["fountainDrink"].customization_flow[-1:]}
        )
        session = ConfiguratorSession(config, wing_product)
        assert session.is_first_step() and session.is_last_step()

    def test_initial_price_uses_product_base(self, wing_session):
        assert wing_session.price_breakdown.total == 12.14


class TestNavigation:

    def test_invalid_step_blocks_next(self, wing_session):
        result = wing_session.navigate_next()
        assert not result.advanced
        assert result.error == "Please select a size"
        assert wing_session.current_step_index == 0

    def test_next_after_valid_selection(self, wing_session):
        wing_session.select_variant(SIX_WINGS)
        result = wing_session.navigate_next()
        assert result.advanced
        assert wing_session.current_step.id == "sauces"

    def test_back_on_first_step_is_noop(self, wing_session):
        result = wing_session.navigate_back()
        assert not result.advanced
        assert wing_session.current_step_index == 0

    def test_next_on_last_step_stays(self, wing_session):
        _walk_to(wing_session, "summary")
        result = wing_session.navigate_next()
        assert not result.advanced
        assert result.error is None
        assert wing_session.current_step.id == "summary"

    def test_back_does_not_validate(self, wing_session):
        _walk_to(wing_session, "sauces")
        assert wing_session.navigate_back().advanced
        assert wing_session.current_step.id == "size"

    def test_jump_ignores_skip_if(self, wing_session):
        wing_session.select_no_dip("includedDips")
        assert wing_session.jump_to_step("extraDips")
        assert wing_session.current_step.id == "extraDips"

    def test_jump_to_unknown_step(self, wing_session):
        assert not wing_session.jump_to_step("dessert")
        assert wing_session.current_step_index == 0


class TestSkipIf:

    def test_no_dip_skips_extra_dips_forward(self, wing_session):
        wing_session.select_no_dip("includedDips")
        wing_session.select_option("wingStyle", "flats")
        _walk_to(wing_session, "wingStyle")

        assert wing_session.navigate_next().advanced
        assert wing_session.current_step.id == "summary"

    def test_no_dip_skips_extra_dips_backward(self, wing_session):
        wing_session.select_no_dip("includedDips")
        _walk_to(wing_session, "summary")

        assert wing_session.navigate_back().advanced
        assert wing_session.current_step.id == "wingStyle"

    def test_extra_dips_visible_with_dips(self, wing_session):
        wing_session.change_addon_quantity("includedDips", "ranch", 1)
        wing_session.select_option("wingStyle", "regular")
        _walk_to(wing_session, "wingStyle")

        wing_session.navigate_next()
        assert wing_session.current_step.id == "extraDips"

    def test_validate_all_skips_skipped_steps(self, wing_session):
        wing_session.select_variant(SIX_WINGS)
        wing_session.toggle_multi_choice("sauces", "honey-bbq")
        wing_session.select_no_dip("includedDips")
        wing_session.select_option("wingStyle", "regular")
        assert wing_session.validate_all().valid

    def test_validate_all_reports_first_failure(self, wing_session):
        wing_session.select_variant(SIX_WINGS)
        result = wing_session.validate_all()
        assert not result.valid
        assert result.error == "Please select at least 1 option(s)"


class TestSauceSelection:
    """A customer chooses between one and three sauces."""

    def test_zero_sauces_blocks_next(self, wing_session):
        _walk_to(wing_session, "sauces")
        result = wing_session.navigate_next()
        assert not result.advanced
        assert result.error == "Please select at least 1 option(s)"

    def test_fourth_sauce_refused(self, wing_session):
        for sauce in ["honey-bbq", "buffalo-hot", "garlic-parm"]:
            assert wing_session.toggle_multi_choice("sauces", sauce)
        assert not wing_session.toggle_multi_choice("sauces", "mango-habanero")
        assert wing_session.selections["sauces"] == ["honey-bbq", "buffalo-hot", "garlic-parm"]

    def test_toggle_removes(self, wing_session):
        wing_session.toggle_multi_choice("sauces", "honey-bbq")
        wing_session.toggle_multi_choice("sauces", "honey-bbq")
        assert wing_session.selections["sauces"] == []

    def test_three_sauces_advance(self, wing_session):
        _walk_to(wing_session, "sauces")
        for sauce in ["honey-bbq", "buffalo-hot", "garlic-parm"]:
            wing_session.toggle_multi_choice("sauces", sauce)
        assert wing_session.navigate_next().advanced


class TestIncludedDips:
    """Two complimentary dips, or the no-dip sentinel."""

    def test_cap_at_two(self, wing_session):
        assert wing_session.change_addon_quantity("includedDips", "ranch", 1)
        assert wing_session.change_addon_quantity("includedDips", "blue-cheese", 1)
        assert not wing_session.change_addon_quantity("includedDips", "honey-mustard", 1)
        assert not wing_session.change_addon_quantity("includedDips", "ranch", 1)
        assert wing_session.selections["includedDips"] == {"ranch": 1, "blue-cheese": 1}

    def test_two_of_one_dip(self, wing_session):
        assert wing_session.change_addon_quantity("includedDips", "ranch", 2)
        assert wing_session.selections["includedDips"] == {"ranch": 2}

    def test_decrement_to_zero_removes(self, wing_session):
        wing_session.change_addon_quantity("includedDips", "ranch", 1)
        assert wing_session.change_addon_quantity("includedDips", "ranch", -1)
        assert wing_session.selections["includedDips"] == {}

    def test_quantity_never_negative(self, wing_session):
        assert not wing_session.change_addon_quantity("includedDips", "ranch", -1)

    def test_dip_replaces_no_dip(self, wing_session):
        wing_session.select_no_dip("includedDips")
        assert wing_session.change_addon_quantity("includedDips", "ranch", 1)
        assert wing_session.selections["includedDips"] == {"ranch": 1}

    def test_no_dip_replaces_quantities(self, wing_session):
        wing_session.change_addon_quantity("includedDips", "ranch", 1)
        wing_session.select_no_dip("includedDips")
        assert wing_session.selections["includedDips"] == NO_DIP


class TestAddonsAndPricing:

    def test_addon_changes_reprice(self, wing_session):
        wing_session.select_variant(SIX_WINGS)
        wing_session.change_addon_quantity("extra-sauces", "honey-bbq", 2)
        # 0.75 x 1.35 = 1.0125 -> 1.01 each
        assert wing_session.price_breakdown.total == 14.16

    def test_addons_uncapped_without_max(self, wing_session):
        assert wing_session.change_addon_quantity("extraDips", "ranch", 10)
        assert wing_session.selections["extraDips"] == {"ranch": 10}

    def test_variant_is_value_copy(self, wing_session):
        variant = dict(SIX_WINGS)
        wing_session.select_variant(variant)
        variant["price"] = 99.0
        wing_session.recalculate_price()
        assert wing_session.price_breakdown.base == 12.14


class TestDependsOn:

    @pytest.fixture
    def plant_session(self, plant_product, catalog):
        return ConfiguratorSession(PRODUCT_CONFIGS["plantBasedWings"], plant_product, catalog)

    def test_variants_filtered_by_parent(self, plant_session):
        plant_session.select_option("preparation", "baked")
        size_step = plant_session.get_step("size")
        options = plant_session.available_options(size_step)
        assert [v["id"] for v in options] == ["baked-8"]

    def test_changing_parent_clears_variant(self, plant_session):
        plant_session.select_option("preparation", "fried")
        plant_session.select_variant({"id": "fried-8", "price": 10.99, "preparation": "fried"})
        plant_session.select_option("preparation", "baked")
        assert "variant" not in plant_session.selections

    def test_reselecting_same_parent_keeps_variant(self, plant_session):
        plant_session.select_option("preparation", "fried")
        plant_session.select_variant({"id": "fried-8", "price": 10.99})
        plant_session.select_option("preparation", "fried")
        assert plant_session.selections["variant"]["id"] == "fried-8"


class TestProjections:

    def test_sauce_options_exclude_rubs_and_inactive(self, wing_session):
        _walk_to(wing_session, "sauces")
        ids = [item["id"] for item in wing_session.available_options()]
        assert "lemon-pepper" not in ids
        assert "old-recipe" not in ids
        assert "honey-bbq" in ids

    def test_view_is_a_snapshot(self, wing_session):
        view = wing_session.view()
        view.selections["variant"] = {"price": 1}
        assert "variant" not in wing_session.selections
        assert view.validation_error == "Please select a size"

    def test_serialize_round_trip(self, wing_session, catalog):
        wing_session.select_variant(SIX_WINGS)
        wing_session.toggle_multi_choice("sauces", "honey-bbq")
        wing_session.change_addon_quantity("extra-sauces", "garlic-parm", 1)
        wing_session.navigate_next()

        restored = ConfiguratorSession.deserialize(wing_session.serialize(), catalog)
        assert restored.current_step_index == wing_session.current_step_index
        assert restored.selections == wing_session.selections
        assert restored.price_breakdown == wing_session.price_breakdown

    def test_deserialize_clamps_index(self, wing_session, catalog):
        data = wing_session.serialize()
        data["current_step_index"] = 42
        restored = ConfiguratorSession.deserialize(data, catalog)
        assert restored.is_last_step()


class TestSkipIfAfterSelectionChange:
    """Navigation never lands on a step whose skipIf holds."""

    @pytest.fixture
    def on_extra_dips(self, wing_session):
        wing_session.change_addon_quantity("includedDips", "ranch", 1)
        wing_session.select_option("wingStyle", "regular")
        _walk_to(wing_session, "wingStyle")
        assert wing_session.navigate_next().advanced
        assert wing_session.current_step.id == "extraDips"
        return wing_session

    def test_back_then_no_dip_then_next(self, on_extra_dips):
        session = on_extra_dips
        assert session.navigate_back().advanced
        assert session.current_step.id == "wingStyle"

        session.select_no_dip("includedDips")
        assert session.navigate_next().advanced
        assert session.current_step.id == "summary"
        assert not session.should_skip(session.current_step)

    def test_no_dip_while_on_the_hidden_step(self, on_extra_dips):
        session = on_extra_dips
        session.select_no_dip("includedDips")
        assert session.should_skip(session.current_step)

        assert session.navigate_next().advanced
        assert session.current_step.id == "summary"
        assert session.navigate_back().advanced
        assert session.current_step.id == "wingStyle"

    def test_choosing_a_dip_again_restores_the_step(self, on_extra_dips):
        session = on_extra_dips
        session.select_no_dip("includedDips")
        session.navigate_next()
        session.change_addon_quantity("includedDips", "blue-cheese", 1)

        assert session.navigate_back().advanced
        assert session.current_step.id == "extraDips"


class TestSelectionSequences:

    def test_sauce_cap_then_swap(self, wing_session):
        for sauce in ["honey-bbq", "buffalo-hot", "garlic-parm"]:
            assert wing_session.toggle_multi_choice("sauces", sauce)
        assert not wing_session.toggle_multi_choice("sauces", "mango-habanero")

        assert wing_session.toggle_multi_choice("sauces", "buffalo-hot")
        assert wing_session.toggle_multi_choice("sauces", "mango-habanero")
        assert wing_session.selections["sauces"] == ["honey-bbq", "garlic-parm", "mango-habanero"]

    def test_included_dips_swap_within_cap(self, wing_session):
        assert wing_session.change_addon_quantity("includedDips", "ranch", 1)
        assert wing_session.change_addon_quantity("includedDips", "ranch", 1)
        assert not wing_session.change_addon_quantity("includedDips", "blue-cheese", 1)
        assert wing_session.selections["includedDips"] == {"ranch": 2}

        assert wing_session.change_addon_quantity("includedDips", "ranch", -1)
        assert wing_session.change_addon_quantity("includedDips", "blue-cheese", 1)
        assert wing_session.selections["includedDips"] == {"ranch": 1, "blue-cheese": 1}


class TestNoDipPrunesHiddenAddons:

    def test_extra_dips_dropped_from_price(self, wing_session):
        wing_session.select_variant(SIX_WINGS)
        wing_session.change_addon_quantity("includedDips", "ranch", 1)
        wing_session.change_addon_quantity("extraDips", "ranch", 2)
        # 0.55 x 1.35 = 0.7425 -> 0.74 each
        assert wing_session.price_breakdown.total == 13.62

        wing_session.select_no_dip("includedDips")
        assert "extraDips" not in wing_session.selections
        assert wing_session.price_breakdown.total == 12.14
        assert wing_session.price_breakdown.addons == []

    def test_visible_addons_are_kept(self, wing_session):
        wing_session.select_variant(SIX_WINGS)
        wing_session.change_addon_quantity("extra-sauces", "honey-bbq", 1)
        wing_session.select_no_dip("includedDips")
        assert wing_session.selections["extra-sauces"] == {"honey-bbq": 1}
        assert wing_session.price_breakdown.total == 13.15


class TestRandomWalk:
    """Invariants hold across long seeded sequences of customer actions."""

    ACTIONS = [
        lambda s, rng: s.select_variant(rng.choice([SIX_WINGS, TWELVE_WINGS])),
        lambda s, rng: s.toggle_multi_choice(
            "sauces", rng.choice(["honey-bbq", "buffalo-hot", "garlic-parm", "mango-habanero"])),
        lambda s, rng: s.change_addon_quantity(
            "includedDips", rng.choice(["ranch", "blue-cheese", "honey-mustard"]), rng.choice([1, -1])),
        lambda s, rng: s.select_no_dip("includedDips"),
        lambda s, rng: s.change_addon_quantity("extra-sauces", "honey-bbq", rng.choice([1, 2, -1])),
        lambda s, rng: s.select_option("wingStyle", rng.choice(["regular", "flats", "drums"])),
        lambda s, rng: s.navigate_next(),
        lambda s, rng: s.navigate_next(),
        lambda s, rng: s.navigate_back(),
    ]

    @pytest.mark.parametrize("seed", range(5))
    def test_invariants(self, wing_session, seed):
        rng = random.Random(seed)
        session = wing_session

        for _ in range(200):
            action = rng.choice(self.ACTIONS)
            result = action(session, rng)

            if action in self.ACTIONS[-3:] and result.advanced:
                assert not session.should_skip(session.current_step)
            assert not (session.is_first_step() and session.is_last_step())

            breakdown = session.price_breakdown
            expected = breakdown.base + sum(line.price for line in breakdown.addons)
            assert breakdown.total == pytest.approx(expected, abs=1e-9)

            sauces = session.selections.get("sauces") or []
            assert len(sauces) <= 3
            dips = session.selections.get("includedDips")
            if isinstance(dips, dict):
                assert sum(dips.values()) <= 2
                assert all(qty > 0 for qty in dips.values())
