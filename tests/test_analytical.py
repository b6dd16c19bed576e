"""
Unit tests for the analytical seeding formulas and the seeder.
"""

import pytest
import math
import random

from factory_optimizer.evolution.analytical import (
    AnalyticalSeeder,
    SeederInputs,
    economic_order_quantity,
    economic_production_quantity,
    mms_wait_time,
    net_present_value,
    optimal_price,
    reorder_point,
)
from factory_optimizer.evolution.actions import BuyMachine, HireWorkers
from factory_optimizer.evolution.constraints import ConstraintEngine, Constraints
from factory_optimizer.evolution.models import Strategy, OPTIMIZABLE_FIELDS


class TestFormulas:
    """Tests for the closed-form operations research formulas."""

    def test_economic_order_quantity(self):
        assert economic_order_quantity(1000, 50, 2) == pytest.approx(math.sqrt(50000))

    def test_eoq_requires_positive_holding_cost(self):
        with pytest.raises(ValueError):
            economic_order_quantity(1000, 50, 0)

    def test_reorder_point_at_median_service_level(self):
        # z = 0 at a 50% service level, so there is no safety stock
        assert reorder_point(20, 4, 0.5, 5) == pytest.approx(80)

    def test_reorder_point_adds_safety_stock(self):
        assert reorder_point(20, 4, 0.95, 5) > 80

    def test_reorder_point_rejects_invalid_service_level(self):
        with pytest.raises(ValueError):
            reorder_point(20, 4, 1.0, 5)

    def test_economic_production_quantity(self):
        expected = math.sqrt(2 * 3650 * 100 / (20 * (1 - 10 / 30)))
        assert economic_production_quantity(3650, 100, 20, 30, 10) == pytest.approx(expected)

    def test_epq_requires_production_above_demand(self):
        with pytest.raises(ValueError):
            economic_production_quantity(3650, 100, 20, 10, 10)

    def test_npv_without_discounting(self):
        assert net_present_value(1000, 10, 200, 0.0) == pytest.approx(1000)

    def test_npv_with_no_days_left(self):
        assert net_present_value(1000, 10, 0, 0.01) == -1000

    def test_npv_discounting_reduces_value(self):
        assert net_present_value(1000, 10, 200, 0.001) < net_present_value(1000, 10, 200, 0.0)

    def test_single_server_wait_time(self):
        # M/M/1: Wq = lambda / (mu * (mu - lambda))
        assert mms_wait_time(1.0, 2.0, 1) == pytest.approx(0.5)

    def test_wait_time_unstable_queue(self):
        assert mms_wait_time(6.0, 3.0, 2) == math.inf

    def test_wait_time_no_arrivals(self):
        assert mms_wait_time(0.0, 3.0, 2) == 0.0

    def test_more_servers_shorter_wait(self):
        assert mms_wait_time(12.0, 3.0, 6) < mms_wait_time(12.0, 3.0, 5)

    def test_optimal_price_linear_demand(self):
        assert optimal_price(500, -0.25, 100) == pytest.approx(1050)

    def test_optimal_price_rejects_flat_demand(self):
        with pytest.raises(ValueError):
            optimal_price(500, 0, 100)


class TestAnalyticalSeeder:
    """
    Seeded strategies SHALL only change mutable parameters and SHALL keep
    every value inside the narrowed bounds.
    """

    def test_seed_within_bounds(self):
        baseline = Strategy()
        engine = ConstraintEngine(baseline)
        seeder = AnalyticalSeeder()
        rng = random.Random(5)
        for _ in range(20):
            seeded = seeder.seed_strategy(baseline, engine, rng)
            for name in OPTIMIZABLE_FIELDS:
                assert engine.bounds_for(name).validate(getattr(seeded, name))

    def test_seed_respects_fixed_policies(self):
        baseline = Strategy(order_quantity=350)
        engine = ConstraintEngine(baseline, Constraints(fixed_policies={"order_quantity"}))
        seeded = AnalyticalSeeder().seed_strategy(baseline, engine, random.Random(2))
        assert seeded.order_quantity == 350

    def test_seed_actions_for_understaffed_factory(self):
        # 12 arrivals per day against 2 experts serving 3 each is unstable
        baseline = Strategy()
        engine = ConstraintEngine(baseline)
        actions = AnalyticalSeeder(SeederInputs(variation=0.0)).seed_actions(baseline, engine, random.Random(0))
        assert any(isinstance(a, HireWorkers) for a in actions)
        assert any(isinstance(a, BuyMachine) for a in actions)
        for action in actions:
            assert engine.window_start <= action.day <= engine.window_start + 30

    def test_unperturbed_values(self):
        values = AnalyticalSeeder(SeederInputs(variation=0.0)).analytical_values(Strategy())
        assert values["standard_price"] == pytest.approx(1050)
        assert values["order_quantity"] > 0

    def test_invalid_inputs(self):
        with pytest.raises(ValueError):
            AnalyticalSeeder(SeederInputs(service_level=1.5))
        with pytest.raises(ValueError):
            AnalyticalSeeder(SeederInputs(current_experts=0))
