"""
Tests for the multi-run optimizer.

Tests per-run seeding, best-run selection, fitness statistics, progress
reporting, cancellation and failure propagation.
"""

import pytest
import numpy as np
from hypothesis import given, strategies as st, settings

from factory_optimizer.evolution.engine import OptimizerConfig
from factory_optimizer.evolution.exceptions import ConfigurationError, EvaluatorUnavailableError
from factory_optimizer.evolution.fitness import FitnessResult, FunctionEvaluator
from factory_optimizer.evolution.models import Strategy
from factory_optimizer.evolution.multi_run import (
    MultiRunConfig,
    MultiRunOptimizer,
    RunFitnessStats,
)


def score_strategy(strategy: Strategy) -> FitnessResult:
    score = 10000 - abs(strategy.standard_price - 1000) * 5 + strategy.mce_allocation_custom * 100
    return FitnessResult(fitness_score=score, net_worth=score)


def small_config(**overrides) -> OptimizerConfig:
    values = dict(population_size=6, generations=3, elite_count=1, max_workers=1)
    values.update(overrides)
    return OptimizerConfig(**values)


# =============================================================================
# Configuration
# =============================================================================

class TestMultiRunConfig:
    """多次執行配置測試"""

    def test_zero_runs_rejected(self):
        """num_runs < 1 SHALL raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            MultiRunOptimizer(FunctionEvaluator(score_strategy), MultiRunConfig(num_runs=0))

    def test_invalid_optimizer_config_rejected(self):
        """The shared genetic configuration SHALL be validated up front."""
        config = MultiRunConfig(num_runs=2, optimizer_config=OptimizerConfig(population_size=1))
        with pytest.raises(ConfigurationError):
            MultiRunOptimizer(FunctionEvaluator(score_strategy), config)

    @given(base_seed=st.integers(min_value=0, max_value=10_000), runs=st.integers(min_value=2, max_value=8))
    @settings(max_examples=50)
    def test_each_run_gets_its_own_seed(self, base_seed, runs):
        """Run i SHALL use base_seed + i, so every run has a distinct seed."""
        config = MultiRunConfig(num_runs=runs, optimizer_config=small_config(), base_seed=base_seed)
        seeds = [config.config_for_run(i).random_seed for i in range(runs)]
        assert seeds == list(range(base_seed, base_seed + runs))

    def test_unseeded_runs_stay_unseeded(self):
        config = MultiRunConfig(num_runs=3, optimizer_config=small_config(random_seed=5))
        assert config.config_for_run(2).random_seed is None

    def test_per_run_config_keeps_other_settings(self):
        config = MultiRunConfig(num_runs=2, optimizer_config=small_config(generations=7), base_seed=1)
        run_config = config.config_for_run(1)
        assert run_config.generations == 7
        assert run_config.population_size == 6
        assert config.optimizer_config.random_seed is None


# =============================================================================
# Fitness statistics
# =============================================================================

class TestRunFitnessStats:
    """各次執行統計測試"""

    @given(values=st.lists(st.floats(min_value=-1e6, max_value=1e6), min_size=1, max_size=10))
    @settings(max_examples=100)
    def test_stats_match_population_moments(self, values):
        """Mean and std-dev SHALL be the population moments of the run fitness values."""
        stats = RunFitnessStats.from_fitness(values)
        assert stats.mean == pytest.approx(float(np.mean(values)), abs=1e-6)
        assert stats.std_dev == pytest.approx(float(np.std(values)), abs=1e-6)
        assert stats.min == min(values)
        assert stats.max == max(values)
        assert stats.improvement >= 0

    def test_improvement_relative_to_mean(self):
        stats = RunFitnessStats.from_fitness([100.0, 200.0, 300.0])
        assert stats.mean == pytest.approx(200.0)
        assert stats.improvement == pytest.approx(50.0)

    def test_improvement_zero_when_mean_not_positive(self):
        """A non-positive mean SHALL report zero improvement."""
        assert RunFitnessStats.from_fitness([-300.0, 100.0]).improvement == 0.0
        assert RunFitnessStats.from_fitness([0.0, 0.0]).improvement == 0.0

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            RunFitnessStats.from_fitness([])


# =============================================================================
# Running
# =============================================================================

class TestMultiRunOptimizer:
    """多次執行優化器測試"""

    def test_best_run_selected(self):
        """The result SHALL carry the highest best fitness across runs and its strategy."""
        config = MultiRunConfig(num_runs=4, optimizer_config=small_config(), base_seed=10)
        result = MultiRunOptimizer(FunctionEvaluator(score_strategy), config).optimize()

        assert len(result.runs) == 4
        fitness = [run.best_fitness for run in result.runs]
        assert result.best_fitness == max(fitness)
        assert result.best_run_index == fitness.index(max(fitness))
        assert result.best_strategy == result.runs[result.best_run_index].best_strategy
        assert result.fitness_stats.max == result.best_fitness
        assert result.fitness_stats.mean == pytest.approx(float(np.mean(fitness)))
        assert not result.cancelled

    def test_seeded_runs_repeat(self):
        """The same base seed SHALL reproduce the same runs."""
        config = MultiRunConfig(num_runs=3, optimizer_config=small_config(), base_seed=42)
        first = MultiRunOptimizer(FunctionEvaluator(score_strategy), config).optimize()
        second = MultiRunOptimizer(FunctionEvaluator(score_strategy), config).optimize()
        assert [r.best_fitness for r in first.runs] == [r.best_fitness for r in second.runs]
        assert first.best_strategy == second.best_strategy

    def test_progress_once_per_run(self):
        events = []
        config = MultiRunConfig(num_runs=3, optimizer_config=small_config(), base_seed=3)
        result = MultiRunOptimizer(FunctionEvaluator(score_strategy), config).optimize(
            progress_callback=events.append,
        )
        assert [(e.current, e.total) for e in events] == [(1, 3), (2, 3), (3, 3)]
        assert events[-1].best_fitness_so_far == result.best_fitness
        best_so_far = [e.best_fitness_so_far for e in events]
        assert best_so_far == sorted(best_so_far)

    def test_cancel_stops_before_next_run(self):
        """Once cancellation is requested no further run SHALL start."""
        cancel = []
        config = MultiRunConfig(num_runs=5, optimizer_config=small_config(), base_seed=8)
        result = MultiRunOptimizer(FunctionEvaluator(score_strategy), config).optimize(
            progress_callback=lambda event: cancel.append(True),
            should_cancel=lambda: bool(cancel),
        )
        assert result.cancelled
        assert len(result.runs) == 1
        assert result.best_run_index == 0
        assert result.fitness_stats.std_dev == 0.0

    def test_evaluator_failure_propagates(self):
        """EvaluatorUnavailableError SHALL abort the whole multi-run."""
        def broken(strategy):
            raise ConnectionError("simulator down")

        config = MultiRunConfig(num_runs=3, optimizer_config=small_config(), base_seed=1)
        with pytest.raises(EvaluatorUnavailableError):
            MultiRunOptimizer(FunctionEvaluator(broken), config).optimize()
