"""
Property-based tests for the constraint engine.

Tests range narrowing, directional locks, projection idempotence and the
workforce / machine range enforcement.
"""

import pytest
import random
from hypothesis import given, strategies as st, settings

from factory_optimizer.evolution.actions import (
    AdjustPrice,
    BuyMachine,
    FireWorkers,
    HireWorkers,
    MachineType,
    OrderMaterials,
    ProductLine,
    SetReorderPoint,
    TakeLoan,
    WorkerRole,
    net_machine_change,
    net_workforce_change,
)
from factory_optimizer.evolution.constraints import (
    ConstraintEngine,
    Constraints,
    LockState,
    narrow_range,
)
from factory_optimizer.evolution.models import Strategy, OPTIMIZABLE_FIELDS, PARAMETER_BOUNDS
from factory_optimizer.evolution.population import PopulationGenerator


# =============================================================================
# Hypothesis Strategies
# =============================================================================

@st.composite
def constraints_strategy(draw):
    """Generate a random, internally consistent constraint set."""
    fields = st.sampled_from(OPTIMIZABLE_FIELDS)
    fixed = draw(st.sets(fields, max_size=2))
    lock_states = draw(st.dictionaries(fields, st.sampled_from(list(LockState)), max_size=3))
    formula = draw(st.sets(fields, max_size=1))
    workforce = None
    if draw(st.booleans()):
        low = draw(st.integers(-3, 0))
        workforce = (low, low + draw(st.integers(0, 6)))
    machine_ranges = {}
    if draw(st.booleans()):
        machine_ranges[MachineType.MCE] = (0, draw(st.integers(0, 2)))
    return Constraints(
        fixed_policies=fixed,
        policy_lock_states=lock_states,
        formula_driven=formula,
        workforce_range=workforce,
        machine_ranges=machine_ranges,
    )


# =============================================================================
# Range Narrowing
# =============================================================================

class TestNarrowRange:
    """
    For any global range and baseline, the narrowed range SHALL respect the
    lock direction relative to the baseline, not the global range.
    """

    @given(
        gmin=st.floats(0, 500, allow_nan=False),
        span=st.floats(0, 500, allow_nan=False),
        baseline=st.floats(-100, 1100, allow_nan=False),
    )
    @settings(max_examples=100)
    def test_minimum_never_below_baseline(self, gmin, span, baseline):
        low, high = narrow_range("x", gmin, gmin + span, baseline, LockState.MINIMUM)
        assert low >= baseline
        assert low <= high

    @given(
        gmin=st.floats(0, 500, allow_nan=False),
        span=st.floats(0, 500, allow_nan=False),
        baseline=st.floats(-100, 1100, allow_nan=False),
    )
    @settings(max_examples=100)
    def test_maximum_never_above_baseline(self, gmin, span, baseline):
        low, high = narrow_range("x", gmin, gmin + span, baseline, LockState.MAXIMUM)
        assert high <= baseline
        assert low <= high

    def test_locked_collapses_to_baseline(self):
        assert narrow_range("x", 0, 10, 4, LockState.LOCKED) == (4, 4)

    def test_unlocked_keeps_global_range(self):
        assert narrow_range("x", 0, 10, 4, LockState.UNLOCKED) == (0, 10)

    def test_minimum_with_baseline_above_global_max(self):
        low, high = narrow_range("x", 0, 10, 15, LockState.MINIMUM)
        assert (low, high) == (15, 15)


class TestEffectiveBounds:
    """Tests for the per-field bounds computed by the engine."""

    def test_policy_range_overrides_global(self):
        engine = ConstraintEngine(
            Strategy(),
            Constraints(policy_ranges={"standard_price": (400, 1200)}),
        )
        bounds = engine.bounds_for("standard_price")
        assert (bounds.min_value, bounds.max_value) == (400, 1200)
        assert bounds.is_integer

    def test_fixed_policy_collapses_range(self):
        engine = ConstraintEngine(Strategy(), Constraints(fixed_policies={"reorder_point"}))
        bounds = engine.bounds_for("reorder_point")
        assert bounds.min_value == bounds.max_value == Strategy().reorder_point
        assert not engine.is_mutable("reorder_point")

    def test_formula_driven_pinned_to_zero(self):
        engine = ConstraintEngine(Strategy(), Constraints(formula_driven={"daily_overtime_hours"}))
        assert engine.pinned_value("daily_overtime_hours") == 0
        assert "daily_overtime_hours" not in engine.mutable_fields()

    def test_minimum_lock_uses_baseline(self):
        baseline = Strategy(order_quantity=600)
        engine = ConstraintEngine(
            baseline,
            Constraints(policy_lock_states={"order_quantity": LockState.MINIMUM}),
        )
        bounds = engine.bounds_for("order_quantity")
        assert bounds.min_value == 600
        assert bounds.max_value == PARAMETER_BOUNDS["order_quantity"].max_value

    def test_policy_action_uses_narrowed_bounds(self):
        engine = ConstraintEngine(
            Strategy(),
            Constraints(policy_ranges={"standard_price": (700, 900)}),
        )
        bounds = engine.action_bounds(AdjustPrice(100, ProductLine.STANDARD, 1000))
        assert (bounds.min_value, bounds.max_value) == (700, 900)

    def test_disallows_action_on_fixed_field(self):
        engine = ConstraintEngine(Strategy(), Constraints(fixed_policies={"reorder_point"}))
        assert not engine.allows_action(SetReorderPoint(100, 300))
        assert engine.allows_action(AdjustPrice(100, ProductLine.CUSTOM, 110))


class TestConstraintValidation:
    """Invalid constraint sets SHALL be rejected before any search starts."""

    def test_unknown_policy_field(self):
        with pytest.raises(KeyError):
            ConstraintEngine(Strategy(), Constraints(fixed_policies={"not_a_field"}))

    def test_inverted_range(self):
        with pytest.raises(ValueError):
            ConstraintEngine(Strategy(), Constraints(policy_ranges={"reorder_point": (400, 100)}))

    def test_inverted_window(self):
        with pytest.raises(ValueError):
            ConstraintEngine(Strategy(), window_start=300, window_end=200)

    def test_dict_round_trip(self):
        constraints = Constraints(
            fixed_policies={"reorder_point"},
            fixed_actions={"100:TAKE_LOAN"},
            policy_ranges={"standard_price": (400, 1200)},
            workforce_range=(-2, 4),
            machine_ranges={MachineType.MCE: (0, 2)},
            policy_lock_states={"order_quantity": LockState.MAXIMUM},
            formula_driven={"daily_overtime_hours"},
        )
        assert Constraints.from_dict(constraints.to_dict()) == constraints


# =============================================================================
# Projection
# =============================================================================

class TestApplyFixedConstraints:
    """
    For any constraint set and any candidate, apply_fixed_constraints SHALL be
    idempotent and its output SHALL satisfy every constraint.
    """

    @given(constraints=constraints_strategy(), seed=st.integers(0, 10_000))
    @settings(max_examples=60, deadline=None)
    def test_projection_is_idempotent(self, constraints, seed):
        baseline = Strategy(timed_actions=(TakeLoan(120, 50000, is_locked=True),))
        engine = ConstraintEngine(baseline, constraints)
        generator = PopulationGenerator(engine, random.Random(seed))
        raw = baseline.with_actions(generator.random_actions())

        once = engine.apply_fixed_constraints(raw)
        assert engine.apply_fixed_constraints(once) == once

    @given(constraints=constraints_strategy(), seed=st.integers(0, 10_000))
    @settings(max_examples=60, deadline=None)
    def test_projection_satisfies_constraints(self, constraints, seed):
        baseline = Strategy(timed_actions=(TakeLoan(120, 50000, is_locked=True),))
        engine = ConstraintEngine(baseline, constraints)
        generator = PopulationGenerator(engine, random.Random(seed))
        projected = generator.random_strategy()

        for name in OPTIMIZABLE_FIELDS:
            value = getattr(projected, name)
            if name in constraints.formula_driven:
                assert value == 0
            elif name in constraints.fixed_policies:
                assert value == getattr(baseline, name)
            else:
                assert engine.bounds_for(name).validate(value)

        assert TakeLoan(120, 50000, is_locked=True) in projected.timed_actions
        unlocked = projected.unlocked_actions()
        if constraints.workforce_range is not None:
            low, high = constraints.workforce_range
            total = net_workforce_change(unlocked)
            hires = any(isinstance(a, HireWorkers) for a in unlocked)
            fires = any(isinstance(a, FireWorkers) for a in unlocked)
            assert total <= high or not hires
            assert total >= low or not fires
        if MachineType.MCE in constraints.machine_ranges:
            assert net_machine_change(unlocked, MachineType.MCE) <= constraints.machine_ranges[MachineType.MCE][1]
        for action in unlocked:
            assert engine.window_start <= action.day <= engine.window_end
            assert engine.allows_action(action)

    def test_fixed_policy_restored(self):
        baseline = Strategy(reorder_point=250)
        engine = ConstraintEngine(baseline, Constraints(fixed_policies={"reorder_point"}))
        projected = engine.apply_fixed_constraints(baseline.with_params(reorder_point=480))
        assert projected.reorder_point == 250

    def test_market_params_reset_to_baseline(self):
        baseline = Strategy()
        engine = ConstraintEngine(baseline)
        drifted = baseline.with_params(custom_base_price=999.0)
        assert engine.apply_fixed_constraints(drifted).custom_base_price == baseline.custom_base_price

    def test_fixed_action_reinserted_and_locked(self):
        loan = TakeLoan(100, 40000)
        baseline = Strategy(timed_actions=(loan,))
        engine = ConstraintEngine(baseline, Constraints(fixed_actions={loan.key()}))
        candidate = baseline.with_actions([TakeLoan(100, 90000), OrderMaterials(150, 300)])
        projected = engine.apply_fixed_constraints(candidate)
        assert loan.locked() in projected.timed_actions
        assert TakeLoan(100, 90000) not in projected.timed_actions
        assert OrderMaterials(150, 300) in projected.timed_actions

    def test_locked_action_never_clamped(self):
        locked = OrderMaterials(20, 5000, is_locked=True)
        baseline = Strategy(timed_actions=(locked,))
        projected = ConstraintEngine(baseline).apply_fixed_constraints(baseline)
        assert locked in projected.timed_actions

    def test_protected_actions_are_locked_baseline_actions(self):
        loan = TakeLoan(100, 40000)
        order = OrderMaterials(20, 5000, is_locked=True)
        free = OrderMaterials(200, 300)
        baseline = Strategy(timed_actions=(loan, order, free))
        engine = ConstraintEngine(baseline, Constraints(fixed_actions={loan.key()}))
        assert set(engine.protected_actions) == {loan.locked(), order}

    def test_unlocked_action_clamped_into_window(self):
        engine = ConstraintEngine(Strategy())
        projected = engine.apply_fixed_constraints(Strategy(timed_actions=(OrderMaterials(10, 5000),)))
        assert projected.timed_actions == (OrderMaterials(51, 1000),)

    def test_workforce_range_drops_latest_hires(self):
        engine = ConstraintEngine(Strategy(), Constraints(workforce_range=(0, 3)))
        candidate = Strategy(timed_actions=(
            HireWorkers(60, WorkerRole.EXPERT, 2),
            HireWorkers(90, WorkerRole.ROOKIE, 2),
            HireWorkers(120, WorkerRole.EXPERT, 1),
        ))
        projected = engine.apply_fixed_constraints(candidate)
        # 120 is dropped first, then 90
        assert projected.timed_actions == (HireWorkers(60, WorkerRole.EXPERT, 2),)

    def test_machine_range_drops_latest_purchases(self):
        engine = ConstraintEngine(Strategy(), Constraints(machine_ranges={MachineType.MCE: (0, 1)}))
        candidate = Strategy(timed_actions=(
            BuyMachine(60, MachineType.MCE, 1),
            BuyMachine(70, MachineType.WMA, 2),
            BuyMachine(80, MachineType.MCE, 1),
        ))
        projected = engine.apply_fixed_constraints(candidate)
        assert BuyMachine(80, MachineType.MCE, 1) not in projected.timed_actions
        assert BuyMachine(70, MachineType.WMA, 2) in projected.timed_actions
