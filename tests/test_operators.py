"""
Property-based tests for the genetic operators.

Tests crossover gene sources, mutation bounds, local variation and the
initial population mix.
"""

import pytest
import random
from hypothesis import given, strategies as st, settings

from factory_optimizer.evolution.actions import (
    AdjustBatchSize,
    BuyMachine,
    HireWorkers,
    MachineType,
    OrderMaterials,
    TakeLoan,
    WorkerRole,
)
from factory_optimizer.evolution.analytical import AnalyticalSeeder
from factory_optimizer.evolution.constraints import ConstraintEngine, Constraints
from factory_optimizer.evolution.crossover import CrossoverOperator
from factory_optimizer.evolution.models import Strategy, OPTIMIZABLE_FIELDS, MARKET_DEFAULTS
from factory_optimizer.evolution.mutation import MutationOperator
from factory_optimizer.evolution.population import PopulationGenerator


def make_parent(seed: int, locked: bool = False) -> Strategy:
    engine = ConstraintEngine(Strategy())
    parent = PopulationGenerator(engine, random.Random(seed)).random_strategy()
    if locked:
        parent = parent.with_actions(parent.timed_actions + (TakeLoan(99, 25000, is_locked=True),))
    return parent


# =============================================================================
# Crossover
# =============================================================================

class TestCrossover:
    """
    For any two parents, the child SHALL take every unlocked action from one
    of the parents, keep parent A's locked actions, and take market
    parameters from the standard values rather than from either parent.
    """

    @given(seed_a=st.integers(0, 5000), seed_b=st.integers(0, 5000), seed=st.integers(0, 5000))
    @settings(max_examples=100, deadline=None)
    def test_child_genes_come_from_parents(self, seed_a, seed_b, seed):
        parent_a = make_parent(seed_a, locked=True)
        parent_b = make_parent(seed_b)
        operator = CrossoverOperator(1.0, rng=random.Random(seed))

        child = operator.crossover(parent_a, parent_b)

        pool = set(parent_a.timed_actions) | set(parent_b.timed_actions)
        assert set(child.timed_actions) <= pool
        assert set(parent_a.locked_actions()) <= set(child.timed_actions)
        for name in OPTIMIZABLE_FIELDS:
            assert getattr(child, name) in (getattr(parent_a, name), getattr(parent_b, name))
        assert child.market_params() == MARKET_DEFAULTS

    def test_market_params_not_inherited(self):
        parent = Strategy().with_params(custom_base_price=150.0)
        standard = dict(MARKET_DEFAULTS, custom_base_price=110.0)
        operator = CrossoverOperator(1.0, market_params=standard, rng=random.Random(1))
        child = operator.crossover(parent, parent)
        assert child.custom_base_price == 110.0

    def test_zero_rate_copies_a_parent(self):
        parent_a = make_parent(1)
        parent_b = make_parent(2)
        operator = CrossoverOperator(0.0, rng=random.Random(3))
        for _ in range(10):
            assert operator.maybe_crossover(parent_a, parent_b) in (parent_a, parent_b)

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            CrossoverOperator(1.5)


# =============================================================================
# Mutation
# =============================================================================

class TestMutation:
    """
    For any strategy and rate, mutation SHALL draw from the narrowed ranges
    and SHALL never alter a locked action.
    """

    @given(seed=st.integers(0, 5000), rate=st.floats(0.0, 1.0))
    @settings(max_examples=100, deadline=None)
    def test_mutated_params_stay_in_narrowed_bounds(self, seed, rate):
        constraints = Constraints(policy_ranges={"standard_price": (600, 700)})
        engine = ConstraintEngine(Strategy(standard_price=650), constraints)
        operator = MutationOperator(engine, random.Random(seed))
        locked = TakeLoan(100, 30000, is_locked=True)
        strategy = Strategy(standard_price=650, timed_actions=(locked, OrderMaterials(80, 300)))

        mutated = operator.mutate(strategy, rate)

        for name in engine.mutable_fields():
            if getattr(mutated, name) != getattr(strategy, name):
                assert engine.bounds_for(name).validate(getattr(mutated, name))
        assert locked in mutated.timed_actions

    def test_zero_rate_is_identity(self):
        engine = ConstraintEngine(Strategy())
        operator = MutationOperator(engine, random.Random(0))
        strategy = make_parent(7)
        assert operator.mutate(strategy, 0.0) == strategy

    def test_original_unchanged(self):
        engine = ConstraintEngine(Strategy())
        operator = MutationOperator(engine, random.Random(0))
        strategy = make_parent(8)
        snapshot = strategy.to_dict()
        for _ in range(20):
            operator.mutate(strategy, 1.0)
        assert strategy.to_dict() == snapshot

    def test_invalid_step_fraction(self):
        with pytest.raises(ValueError):
            MutationOperator(ConstraintEngine(Strategy()), step_fraction=0)


class TestLocalVariation:
    """
    For any seed strategy, local variation with intensity i SHALL move each
    mutable parameter and each unlocked payload by at most i relative to its
    original value (or onto a domain bound), and SHALL keep action days.
    """

    @given(seed=st.integers(0, 5000), intensity=st.floats(0.05, 0.3))
    @settings(max_examples=100, deadline=None)
    def test_variation_within_relative_band(self, seed, intensity):
        engine = ConstraintEngine(Strategy())
        operator = MutationOperator(engine, random.Random(seed))
        strategy = Strategy(
            reorder_point=300,
            order_quantity=600,
            standard_batch_size=30,
            mce_allocation_custom=0.6,
            standard_price=900,
            daily_overtime_hours=2,
            timed_actions=(
                HireWorkers(60, WorkerRole.EXPERT, 3),
                BuyMachine(120, MachineType.MCE, 1),
                AdjustBatchSize(200, 25),
                TakeLoan(90, 50000, is_locked=True),
            ),
        )

        varied = operator.local_variation(strategy, intensity)

        for name in engine.mutable_fields():
            old = getattr(strategy, name)
            new = getattr(varied, name)
            bounds = engine.bounds_for(name)
            assert abs(new - old) <= intensity * abs(old) + 1e-9 or new in (bounds.min_value, bounds.max_value)

        assert [a.day for a in varied.timed_actions] == [a.day for a in strategy.timed_actions]
        for before, after in zip(strategy.timed_actions, varied.timed_actions):
            assert type(before) is type(after)
            if before.is_locked:
                assert after == before
            else:
                assert abs(after.payload() - before.payload()) <= intensity * abs(before.payload()) + 1e-9

    def test_small_integer_stays_put(self):
        engine = ConstraintEngine(Strategy())
        operator = MutationOperator(engine, random.Random(1))
        strategy = Strategy(timed_actions=(HireWorkers(60, WorkerRole.ROOKIE, 2),))
        for _ in range(20):
            assert operator.local_variation(strategy, 0.1).timed_actions[0].count == 2


# =============================================================================
# Initial Population
# =============================================================================

class TestInitialPopulation:
    """
    The initial population SHALL start with the projected baseline, contain
    exactly population_size members and satisfy all constraints.
    """

    @given(size=st.integers(1, 30), seed=st.integers(0, 1000))
    @settings(max_examples=50, deadline=None)
    def test_population_size_and_projection(self, size, seed):
        baseline = Strategy(reorder_point=250)
        engine = ConstraintEngine(baseline, Constraints(fixed_policies={"reorder_point"}))
        rng = random.Random(seed)
        generator = PopulationGenerator(engine, rng, AnalyticalSeeder())

        population = generator.generate_initial_population(size, MutationOperator(engine, rng))

        assert len(population) == size
        assert population[0] == engine.apply_fixed_constraints(baseline)
        for strategy in population:
            assert strategy.reorder_point == 250
            assert engine.apply_fixed_constraints(strategy) == strategy

    def test_random_actions_counts(self):
        engine = ConstraintEngine(Strategy())
        generator = PopulationGenerator(engine, random.Random(4))
        for _ in range(20):
            actions = generator.random_actions()
            policy = [a for a in actions if a.policy_field() is not None or a.action_type.value == "ADJUST_PRICE"]
            assert 3 <= len(actions) - len(policy) <= 12
            assert 2 <= len(policy) <= 5

    def test_rejects_empty_population(self):
        engine = ConstraintEngine(Strategy())
        generator = PopulationGenerator(engine, random.Random(0))
        with pytest.raises(ValueError):
            generator.generate_initial_population(0, MutationOperator(engine))
