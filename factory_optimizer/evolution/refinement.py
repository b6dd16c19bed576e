"""
第二階段精煉 (Phase 2 Refinement)

以第一階段的精英為種子，產生小幅度的局部變異種群，並以評估視窗內的
淨值成長率取代期末淨值作為適應度，執行較短的演化迴圈。
"""

from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence, Tuple
import itertools
import logging
import math
import random
import time

from .bounds import DECISION_WINDOW_START
from .constraints import ConstraintEngine, Constraints
from .crossover import CrossoverOperator
from .engine import evaluate_strategies, score_candidate, ProgressCallback
from .events import OptimizationEventSink, ProgressEvent
from .exceptions import (
    ConfigurationError,
    EvaluatorUnavailableError,
    validate_crossover_rate,
    validate_elite_count,
    validate_generation_count,
    validate_mutation_rate,
    validate_population_size,
    validate_refinement_intensity,
)
from .fitness import FitnessEvaluator, SafeEvaluator, StartingState, INVALID_FITNESS, growth_rate
from .generation import ConvergenceHistory, GenerationStats
from .models import OptimizationCandidate, Strategy
from .mutation import MutationOperator


logger = logging.getLogger(__name__)


@dataclass
class RefinementConfig:
    """第二階段精煉配置

    Attributes:
        population_size: 種群大小
        generations: 世代數
        elite_count: 每世代保留的精英數
        refinement_intensity: 局部變異強度（0.05-0.3 為常見值）
        mutation_rate: 子代套用局部變異的機率
        crossover_rate: 交叉率
        test_day: 評估視窗起始日
        evaluation_window: 評估視窗長度（天）
        max_seeds: 最多採用的種子數
        carried_seeds: 原樣保留的種子數
        top_n: 回傳的候選數
        max_invalid_retries: 無效候選以局部變異取代後重試的次數
        max_workers: 同一世代平行評估的執行緒數
        random_seed: 亂數種子（可選）
    """
    population_size: int = 25
    generations: int = 10
    elite_count: int = 3
    refinement_intensity: float = 0.10
    mutation_rate: float = 0.25
    crossover_rate: float = 0.7
    test_day: int = DECISION_WINDOW_START
    evaluation_window: int = 30
    max_seeds: int = 10
    carried_seeds: int = 3
    top_n: int = 5
    max_invalid_retries: int = 3
    max_workers: int = 1
    random_seed: Optional[int] = None

    def validate(self) -> None:
        """驗證配置

        Raises:
            ConfigurationError: 若任何參數無效
        """
        validate_generation_count(self.generations)
        validate_elite_count(self.elite_count)
        validate_population_size(self.population_size, self.elite_count)
        validate_refinement_intensity(self.refinement_intensity)
        validate_mutation_rate(self.mutation_rate)
        validate_crossover_rate(self.crossover_rate)
        if self.evaluation_window < 1:
            raise ConfigurationError(
                f"Invalid evaluation window: {self.evaluation_window}",
                "Use a window of at least one day",
            )
        if self.max_seeds < 1 or self.carried_seeds < 0 or self.top_n < 1:
            raise ConfigurationError(
                "Invalid seeding configuration",
                "max_seeds and top_n must be positive and carried_seeds non-negative",
            )
        if self.max_invalid_retries < 0:
            raise ConfigurationError(
                f"Invalid max_invalid_retries: {self.max_invalid_retries}",
                "Use 0 to disable retries",
            )
        if self.max_workers < 1:
            raise ConfigurationError(f"Invalid max_workers: {self.max_workers}")


class Phase2Refiner:
    """第二階段精煉器

    Attributes:
        evaluator: 適應度評估器
        config: 精煉配置
        convergence_history: 最近一次執行的世代統計
    """

    def __init__(
        self,
        evaluator: FitnessEvaluator,
        config: Optional[RefinementConfig] = None,
    ):
        self.config = config or RefinementConfig()
        self.config.validate()
        self.evaluator = evaluator
        self.convergence_history = ConvergenceHistory()
        self._ids = itertools.count()

    def _new_id(self, generation: int) -> str:
        return f"phase2-gen{generation}-{next(self._ids)}"

    def generate_seeded_population(
        self,
        seeds: Sequence[OptimizationCandidate],
        population_size: int,
        refinement_intensity: float,
        baseline: Strategy,
        engine: ConstraintEngine,
        mutation: MutationOperator,
    ) -> List[OptimizationCandidate]:
        """由種子產生精煉種群

        最多採用 max_seeds 個依適應度排序的種子；前 carried_seeds 個原樣保留，
        其餘位置依序輪流以 seeds[i % len(seeds)] 產生局部變異。

        Args:
            seeds: 第一階段的候選
            population_size: 種群大小
            refinement_intensity: 局部變異強度
            baseline: 基準策略
            engine: 約束引擎
            mutation: 突變算子

        Returns:
            精煉種群

        Raises:
            ValueError: 若沒有種子
        """
        if not seeds:
            raise ValueError("At least one seed candidate is required")

        ranked = sorted(seeds, key=lambda c: c.fitness, reverse=True)[:self.config.max_seeds]
        population = []
        for seed in ranked[:self.config.carried_seeds]:
            # 第一階段的評估以期末淨值計分，精煉時需重新評估
            carried = seed.copy()
            carried.evaluation = None
            population.append(carried)

        index = 0
        while len(population) < population_size:
            seed = ranked[index % len(ranked)]
            varied = mutation.local_variation(seed.to_strategy(baseline), refinement_intensity)
            varied = engine.apply_fixed_constraints(varied)
            population.append(OptimizationCandidate.from_strategy(self._new_id(0), varied, 0))
            index += 1

        return population[:population_size]

    def refine(
        self,
        elite_candidates: Sequence[OptimizationCandidate],
        population_size: Optional[int] = None,
        refinement_intensity: Optional[float] = None,
        generations: Optional[int] = None,
        elite_count: Optional[int] = None,
        base_strategy: Optional[Strategy] = None,
        constraints: Optional[Constraints] = None,
        starting_state: Optional[StartingState] = None,
        progress_callback: Optional[ProgressCallback] = None,
        event_sink: Optional[OptimizationEventSink] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> List[OptimizationCandidate]:
        """執行第二階段精煉

        未指定的參數使用 RefinementConfig 的值。

        Returns:
            依成長率排序的前 top_n 個候選

        Raises:
            ConfigurationError: 若覆寫後的參數無效
            EvaluatorUnavailableError: 若某世代的所有評估都失敗
        """
        overrides = {
            "population_size": population_size,
            "refinement_intensity": refinement_intensity,
            "generations": generations,
            "elite_count": elite_count,
        }
        config = replace(self.config, **{k: v for k, v in overrides.items() if v is not None})
        config.validate()

        sink = event_sink or OptimizationEventSink()
        baseline = base_strategy or Strategy()
        window_start = max(DECISION_WINDOW_START, config.test_day)
        if starting_state is not None:
            window_start = max(window_start, starting_state.day + 1)

        rng = random.Random(config.random_seed)
        engine = ConstraintEngine(baseline, constraints, window_start=window_start)
        mutation = MutationOperator(engine, rng)
        crossover = CrossoverOperator(config.crossover_rate, baseline.market_params(), rng)
        evaluator = SafeEvaluator(self.evaluator)

        population = self.generate_seeded_population(
            elite_candidates,
            config.population_size,
            config.refinement_intensity,
            baseline,
            engine,
            mutation,
        )

        self.convergence_history = ConvergenceHistory()
        best_fitness = -math.inf
        sink.on_run_started({
            "phase": 2,
            "population_size": config.population_size,
            "generations": config.generations,
            "seeds": len(elite_candidates),
        })
        logger.info(
            f"Starting phase 2 refinement: {len(elite_candidates)} seeds, "
            f"intensity={config.refinement_intensity}, population={config.population_size}"
        )

        for gen in range(config.generations):
            started = time.perf_counter()
            failed_count, evaluated = self._evaluate(
                population, gen, baseline, evaluator, mutation, engine, starting_state, config
            )
            elapsed = time.perf_counter() - started

            if evaluated and failed_count == evaluated:
                logger.error(f"All {failed_count} phase 2 evaluations failed in generation {gen}")
                raise EvaluatorUnavailableError(gen, self.convergence_history)

            population.sort(key=lambda c: c.fitness, reverse=True)
            if population[0].fitness > best_fitness:
                best_fitness = population[0].fitness
                sink.on_new_best(gen, best_fitness)

            stats = GenerationStats.from_fitness(
                generation=gen,
                fitness_values=[c.fitness for c in population],
                best_ever_fitness=best_fitness,
                mutation_rate=config.mutation_rate,
                evaluation_seconds=elapsed,
                failed_count=failed_count,
            )
            self.convergence_history.append(stats)
            sink.on_generation_completed(stats)
            sink.on_population_ranked(gen, [c.copy() for c in population])
            if progress_callback is not None:
                progress_callback(ProgressEvent(gen + 1, config.generations, best_fitness))

            if gen == config.generations - 1:
                break
            if should_cancel is not None and should_cancel():
                logger.info(f"Phase 2 refinement cancelled after {gen + 1} generations")
                break

            population = self._breed(population, gen + 1, baseline, engine, crossover, mutation, config)

        top = sorted(
            population,
            key=lambda c: c.growth_rate if c.growth_rate is not None else -math.inf,
            reverse=True,
        )[:config.top_n]
        sink.on_run_finished(top)
        logger.info(f"Phase 2 refinement finished, best growth rate {best_fitness:.2f}/day")
        return top

    def _evaluate(
        self,
        population: List[OptimizationCandidate],
        generation: int,
        baseline: Strategy,
        evaluator: FitnessEvaluator,
        mutation: MutationOperator,
        engine: ConstraintEngine,
        starting_state: Optional[StartingState],
        config: RefinementConfig,
    ) -> Tuple[int, int]:
        """評估尚未評估的候選，以視窗成長率作為適應度

        無效候選以自身的局部變異取代後重試，最多 max_invalid_retries 次；
        沿用上一世代的精英保留原評估結果。

        Returns:
            (評估器失敗數, 本世代評估數)
        """
        fresh = [i for i, c in enumerate(population) if c.evaluation is None]
        results = evaluate_strategies(
            evaluator,
            [population[i].to_strategy(baseline) for i in fresh],
            starting_state,
            config.max_workers,
        )
        for i, result in zip(fresh, results):
            score_candidate(population[i], result)

        pending = [i for i in fresh if self._is_invalid(population[i])]
        for _ in range(config.max_invalid_retries):
            if not pending:
                break
            for i in pending:
                varied = mutation.local_variation(population[i].to_strategy(baseline), config.refinement_intensity)
                varied = engine.apply_fixed_constraints(varied)
                population[i] = OptimizationCandidate.from_strategy(self._new_id(generation), varied, generation)
            results = evaluate_strategies(
                evaluator,
                [population[i].to_strategy(baseline) for i in pending],
                starting_state,
                config.max_workers,
            )
            for i, result in zip(pending, results):
                score_candidate(population[i], result)
            pending = [i for i in pending if self._is_invalid(population[i])]
        if pending:
            logger.warning(
                f"Phase 2 generation {generation}: {len(pending)} candidates still invalid after "
                f"{config.max_invalid_retries} retries"
            )

        failed_count = 0
        for i in fresh:
            candidate = population[i]
            result = candidate.evaluation
            if result.failed:
                failed_count += 1
                candidate.growth_rate = None
                continue
            if not result.valid:
                candidate.fitness = INVALID_FITNESS
                candidate.growth_rate = None
                candidate.error = f"invalid after {config.max_invalid_retries} retries"
                continue
            try:
                candidate.growth_rate = growth_rate(result, config.test_day, config.evaluation_window)
            except ValueError as e:
                logger.warning(f"Candidate {candidate.id}: {e}")
                candidate.growth_rate = None
                candidate.fitness = -math.inf
                candidate.error = str(e)
                continue
            candidate.fitness = candidate.growth_rate
        return failed_count, len(fresh)

    @staticmethod
    def _is_invalid(candidate: OptimizationCandidate) -> bool:
        return not candidate.evaluation.failed and not candidate.evaluation.valid

    def _breed(
        self,
        ranked: List[OptimizationCandidate],
        next_generation: int,
        baseline: Strategy,
        engine: ConstraintEngine,
        crossover: CrossoverOperator,
        mutation: MutationOperator,
        config: RefinementConfig,
    ) -> List[OptimizationCandidate]:
        elites = [c.copy() for c in ranked[:config.elite_count]]
        for elite in elites:
            elite.generation = next_generation
        parents = [elite.to_strategy(baseline) for elite in elites]

        offspring = []
        while len(elites) + len(offspring) < config.population_size:
            child = crossover.maybe_crossover(crossover.rng.choice(parents), crossover.rng.choice(parents))
            if crossover.rng.random() < config.mutation_rate:
                child = mutation.local_variation(child, config.refinement_intensity)
            child = engine.apply_fixed_constraints(child)
            offspring.append(
                OptimizationCandidate.from_strategy(self._new_id(next_generation), child, next_generation)
            )
        return elites + offspring
