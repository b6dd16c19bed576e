"""
Property-based and scenario tests for Phase 2 refinement.

Tests seeded population composition, growth-rate fitness and the final
top-N ordering.
"""

import pytest
import math
import random
from hypothesis import given, strategies as st, settings

from factory_optimizer.evolution.actions import (
    AdjustBatchSize,
    BuyMachine,
    HireWorkers,
    MachineType,
    OrderMaterials,
    WorkerRole,
)
from factory_optimizer.evolution.constraints import ConstraintEngine
from factory_optimizer.evolution.events import RecordingEventSink
from factory_optimizer.evolution.exceptions import ConfigurationError, InvalidRefinementIntensityError
from factory_optimizer.evolution.fitness import (
    DailyValue,
    FitnessResult,
    FunctionEvaluator,
    INVALID_FITNESS,
    growth_rate,
)
from factory_optimizer.evolution.models import OptimizationCandidate, Strategy
from factory_optimizer.evolution.mutation import MutationOperator
from factory_optimizer.evolution.refinement import Phase2Refiner, RefinementConfig


def linear_history(strategy: Strategy) -> FitnessResult:
    """Net worth grows linearly at a rate set by the standard price."""
    slope = strategy.standard_price / 100.0
    history = [DailyValue(day, 1000.0 + slope * (day - 51)) for day in range(51, 501)]
    return FitnessResult(
        fitness_score=history[-1].value,
        net_worth=history[-1].value,
        daily_history=history,
    )


def make_seeds():
    seeds = []
    for i, price in enumerate((900, 700, 1100)):
        strategy = Strategy(
            reorder_point=300 + i * 20,
            order_quantity=500,
            standard_batch_size=30,
            mce_allocation_custom=0.6,
            standard_price=price,
            daily_overtime_hours=2,
            timed_actions=(
                HireWorkers(60 + i, WorkerRole.EXPERT, 3),
                BuyMachine(150, MachineType.MCE, 1),
                AdjustBatchSize(220, 25),
                OrderMaterials(300, 400),
            ),
        )
        candidate = OptimizationCandidate.from_strategy(f"seed{i}", strategy)
        candidate.fitness = float(price)
        seeds.append(candidate)
    return seeds


# =============================================================================
# Seeded Population
# =============================================================================

class TestSeededPopulation:
    """
    The refined population SHALL carry the top seeds unchanged and fill the
    rest with local variations of the seeds in rank order, each staying
    within the refinement intensity of its seed.
    """

    @given(seed=st.integers(0, 10_000))
    @settings(max_examples=50, deadline=None)
    def test_carried_seeds_and_variations(self, seed):
        refiner = Phase2Refiner(FunctionEvaluator(linear_history), RefinementConfig(carried_seeds=3))
        baseline = Strategy()
        engine = ConstraintEngine(baseline)
        mutation = MutationOperator(engine, random.Random(seed))
        seeds = make_seeds()
        ranked = sorted(seeds, key=lambda c: c.fitness, reverse=True)

        population = refiner.generate_seeded_population(seeds, 9, 0.1, baseline, engine, mutation)

        assert len(population) == 9
        assert [c.id for c in population[:3]] == [c.id for c in ranked]
        for carried, source in zip(population[:3], ranked):
            assert carried.same_genes(source)

        for k, varied in enumerate(population[3:]):
            source = ranked[k % 3]
            before = source.to_strategy(baseline)
            after = varied.to_strategy(baseline)
            for name in engine.mutable_fields():
                old, new = getattr(before, name), getattr(after, name)
                bounds = engine.bounds_for(name)
                assert abs(new - old) <= 0.1 * abs(old) + 1e-9 or new in (bounds.min_value, bounds.max_value)
            assert len(after.timed_actions) == len(before.timed_actions)
            for a, b in zip(before.timed_actions, after.timed_actions):
                assert a.day == b.day
                assert type(a) is type(b)
                assert abs(b.payload() - a.payload()) <= 0.1 * abs(a.payload()) + 1e-9

    def test_max_seeds_limits_sources(self):
        config = RefinementConfig(max_seeds=1, carried_seeds=1)
        refiner = Phase2Refiner(FunctionEvaluator(linear_history), config)
        baseline = Strategy()
        engine = ConstraintEngine(baseline)
        seeds = make_seeds()
        population = refiner.generate_seeded_population(
            seeds, 4, 0.1, baseline, engine, MutationOperator(engine, random.Random(0))
        )
        best = max(seeds, key=lambda c: c.fitness)
        assert population[0].id == best.id
        for varied in population[1:]:
            assert [a.day for a in varied.actions] == [a.day for a in best.actions]

    def test_requires_seeds(self):
        refiner = Phase2Refiner(FunctionEvaluator(linear_history))
        engine = ConstraintEngine(Strategy())
        with pytest.raises(ValueError):
            refiner.generate_seeded_population([], 5, 0.1, Strategy(), engine, MutationOperator(engine))


# =============================================================================
# Refinement Run
# =============================================================================

class TestRefine:
    """
    The refinement SHALL score candidates by net worth growth over the
    evaluation window and return the top candidates by growth.
    """

    def test_returns_top_by_growth(self):
        config = RefinementConfig(population_size=9, generations=3, elite_count=2, top_n=4, random_seed=3)
        refiner = Phase2Refiner(FunctionEvaluator(linear_history), config)
        sink = RecordingEventSink()

        top = refiner.refine(make_seeds(), event_sink=sink)

        assert 1 <= len(top) <= 4
        rates = [c.growth_rate for c in top]
        assert None not in rates
        assert rates == sorted(rates, reverse=True)
        for candidate in top:
            assert candidate.fitness == candidate.growth_rate
            assert candidate.growth_rate == pytest.approx(candidate.to_strategy(Strategy()).standard_price / 100.0)
        assert len(refiner.convergence_history) == 3

    def test_overrides_are_validated(self):
        refiner = Phase2Refiner(FunctionEvaluator(linear_history))
        with pytest.raises(InvalidRefinementIntensityError):
            refiner.refine(make_seeds(), refinement_intensity=1.5)

    def test_missing_history_ranks_last(self):
        def no_history(strategy):
            if strategy.standard_price > 1000:
                return FitnessResult(fitness_score=1.0, net_worth=1.0)
            return linear_history(strategy)

        config = RefinementConfig(population_size=6, generations=1, elite_count=2, random_seed=1)
        sink = RecordingEventSink()
        Phase2Refiner(FunctionEvaluator(no_history), config).refine(make_seeds(), event_sink=sink)

        (_, ranked), = sink.of_kind("population_ranked")
        for candidate in ranked:
            if candidate.growth_rate is None:
                assert candidate.fitness == -math.inf

    def test_carried_seeds_rescored_by_growth(self):
        """Seeds carried from phase 1 SHALL be re-evaluated under the growth objective."""
        config = RefinementConfig(population_size=6, generations=1, elite_count=2, random_seed=5)
        sink = RecordingEventSink()
        Phase2Refiner(FunctionEvaluator(linear_history), config).refine(make_seeds(), event_sink=sink)

        (_, ranked), = sink.of_kind("population_ranked")
        scores = {c.id: c.fitness for c in ranked}
        assert scores["seed2"] == pytest.approx(11.0)
        assert scores["seed0"] == pytest.approx(9.0)

    def test_invalid_candidates_are_retried(self):
        """An invalid candidate SHALL be replaced by a local variation and evaluated again."""
        calls = []

        def first_three_invalid(strategy):
            calls.append(strategy)
            result = linear_history(strategy)
            result.valid = len(calls) > 3
            return result

        config = RefinementConfig(population_size=6, generations=1, elite_count=2, max_workers=1, random_seed=2)
        sink = RecordingEventSink()
        Phase2Refiner(FunctionEvaluator(first_three_invalid), config).refine(make_seeds(), event_sink=sink)

        assert len(calls) == 9
        (_, ranked), = sink.of_kind("population_ranked")
        assert all(c.evaluation.valid for c in ranked)
        assert INVALID_FITNESS not in [c.fitness for c in ranked]
        assert {c.id for c in ranked}.isdisjoint({"seed0", "seed1", "seed2"})

    def test_retries_disabled_keeps_sentinel(self):
        calls = []

        def first_three_invalid(strategy):
            calls.append(strategy)
            result = linear_history(strategy)
            result.valid = len(calls) > 3
            return result

        config = RefinementConfig(
            population_size=6, generations=1, elite_count=2, max_workers=1, max_invalid_retries=0, random_seed=2,
        )
        sink = RecordingEventSink()
        Phase2Refiner(FunctionEvaluator(first_three_invalid), config).refine(make_seeds(), event_sink=sink)

        assert len(calls) == 6
        (_, ranked), = sink.of_kind("population_ranked")
        assert [c.fitness for c in ranked].count(INVALID_FITNESS) == 3
        assert all(c.growth_rate is None for c in ranked[-3:])

    def test_carried_elites_keep_their_evaluation(self):
        # An evaluator that rejects any strategy it has already scored
        seen = []

        def repeat_is_invalid(strategy):
            result = linear_history(strategy)
            if strategy in seen:
                result.valid = False
            seen.append(strategy)
            return result

        config = RefinementConfig(population_size=6, generations=3, elite_count=2, max_workers=1, random_seed=4)
        sink = RecordingEventSink()
        Phase2Refiner(FunctionEvaluator(repeat_is_invalid), config).refine(make_seeds(), event_sink=sink)

        ranked = sink.of_kind("population_ranked")
        for (_, current), (_, following) in zip(ranked, ranked[1:]):
            carried = {c.id: c.fitness for c in following}
            for elite in current[:config.elite_count]:
                assert carried[elite.id] == elite.fitness

    def test_negative_retries_rejected(self):
        with pytest.raises(ConfigurationError):
            Phase2Refiner(FunctionEvaluator(linear_history), RefinementConfig(max_invalid_retries=-1))

    def test_invalid_config(self):
        with pytest.raises(ConfigurationError):
            Phase2Refiner(FunctionEvaluator(linear_history), RefinementConfig(evaluation_window=0))


class TestGrowthRate:
    """Tests for the window growth computation."""

    def test_growth_over_window(self):
        result = FitnessResult(
            fitness_score=0,
            net_worth=0,
            daily_history=[DailyValue(51, 100.0), DailyValue(81, 400.0)],
        )
        assert growth_rate(result, 51, 30) == pytest.approx(10.0)

    def test_window_not_covered(self):
        result = FitnessResult(fitness_score=0, net_worth=0, daily_history=[DailyValue(51, 100.0)])
        with pytest.raises(ValueError):
            growth_rate(result, 51, 30)

    def test_non_positive_window(self):
        with pytest.raises(ValueError):
            growth_rate(FitnessResult(fitness_score=0, net_worth=0), 51, 0)
