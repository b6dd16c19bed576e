"""
策略優化引擎 (Strategy Optimization Engine)

整合所有演化組件的主引擎：初始種群生成、逐世代評估（無效候選重試）、
精英保留、僅從精英繁殖、自適應突變與提前停止。
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import itertools
import json
import logging
import math
import random
import time

from .analytical import AnalyticalSeeder, SeederInputs
from .bounds import DECISION_WINDOW_START
from .constraints import ConstraintEngine, Constraints
from .crossover import CrossoverOperator
from .events import OptimizationEventSink, ProgressEvent
from .exceptions import (
    ConfigurationError,
    EvaluatorUnavailableError,
    validate_crossover_rate,
    validate_early_stopping,
    validate_elite_count,
    validate_generation_count,
    validate_mutation_rate,
    validate_mutation_schedule,
    validate_population_size,
)
from .fitness import (
    FitnessEvaluator,
    FitnessResult,
    SafeEvaluator,
    StartingState,
    INVALID_FITNESS,
)
from .generation import (
    ConvergenceHistory,
    GenerationStats,
    MutationSchedule,
    should_stop_early,
)
from .models import OptimizationCandidate, Strategy
from .mutation import MutationOperator
from .population import PopulationGenerator


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class OptimizerConfig:
    """優化配置

    控制遺傳演算法的所有可配置參數。

    Attributes:
        population_size: 種群大小
        generations: 最大世代數
        elite_count: 每世代保留的精英數
        crossover_rate: 交叉率 (0-1)
        mutation_rate: 固定突變率（未啟用自適應時使用）
        enable_adaptive_mutation: 是否啟用自適應突變率
        initial_mutation_rate: 自適應起始突變率
        final_mutation_rate: 自適應最終突變率
        enable_early_stopping: 是否啟用提前停止
        early_stop_generations: 提前停止的觀察世代數
        min_improvement_threshold: 最低相對改善
        seed_with_analytical: 初始種群中解析式種子的比例
        max_invalid_retries: 無效候選的最大重試次數
        max_workers: 同一世代平行評估的執行緒數
        random_seed: 亂數種子（可選）
    """
    population_size: int = 50
    generations: int = 30
    elite_count: int = 5
    crossover_rate: float = 0.7
    mutation_rate: float = 0.05
    enable_adaptive_mutation: bool = False
    initial_mutation_rate: float = 0.3
    final_mutation_rate: float = 0.05
    enable_early_stopping: bool = False
    early_stop_generations: int = 10
    min_improvement_threshold: float = 0.001
    seed_with_analytical: float = 0.2
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
        validate_crossover_rate(self.crossover_rate)
        validate_mutation_rate(self.mutation_rate)
        if self.enable_adaptive_mutation:
            validate_mutation_schedule(self.initial_mutation_rate, self.final_mutation_rate)
        if self.enable_early_stopping:
            validate_early_stopping(self.early_stop_generations)
        if not 0.0 <= self.seed_with_analytical <= 1.0:
            raise ConfigurationError(
                f"Invalid seed_with_analytical: {self.seed_with_analytical}",
                "Use a fraction between 0 and 1",
            )
        if self.max_invalid_retries < 0:
            raise ConfigurationError(
                f"Invalid max_invalid_retries: {self.max_invalid_retries}",
                "Use 0 to disable retries",
            )
        if self.max_workers < 1:
            raise ConfigurationError(
                f"Invalid max_workers: {self.max_workers}",
                "Use 1 for sequential evaluation",
            )

    def mutation_schedule(self) -> MutationSchedule:
        return MutationSchedule(
            initial_rate=self.initial_mutation_rate,
            final_rate=self.final_mutation_rate,
            generations=self.generations,
            adaptive=self.enable_adaptive_mutation,
            fixed_rate=self.mutation_rate,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptimizerConfig":
        """從字典建立配置，忽略未知欄位"""
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown optimizer config keys: {', '.join(unknown)}")
        return cls(**{key: value for key, value in data.items() if key in known})

    @classmethod
    def from_json(cls, json_str: str) -> "OptimizerConfig":
        return cls.from_dict(json.loads(json_str))


@dataclass
class OptimizationResult:
    """優化結果

    Attributes:
        best_strategy: 歷史最佳策略
        best_fitness: 歷史最佳適應度
        convergence_history: 各世代的歷史最佳適應度（非遞減）
        generations_run: 實際執行的世代數
        final_evaluation: 最佳策略的評估結果
        history: 完整的世代統計
        stopped_early: 是否因提前停止而結束
        cancelled: 是否被呼叫端取消
        final_population: 最後一世代的排序後種群
    """
    best_strategy: Strategy
    best_fitness: float
    convergence_history: List[float]
    generations_run: int
    final_evaluation: Optional[FitnessResult]
    history: ConvergenceHistory
    stopped_early: bool = False
    cancelled: bool = False
    final_population: List[OptimizationCandidate] = field(default_factory=list)


def evaluate_strategies(
    evaluator: FitnessEvaluator,
    strategies: Sequence[Strategy],
    starting_state: Optional[StartingState] = None,
    max_workers: int = 1,
) -> List[FitnessResult]:
    """評估一批策略

    max_workers 大於 1 時使用執行緒池；無論哪種方式都等全部完成才回傳，
    結果順序與輸入相同。
    """
    if max_workers > 1 and len(strategies) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(lambda s: evaluator.evaluate(s, starting_state), strategies))
    return [evaluator.evaluate(strategy, starting_state) for strategy in strategies]


def score_candidate(candidate: OptimizationCandidate, result: FitnessResult) -> None:
    """將評估結果寫入候選個體"""
    candidate.evaluation = result
    candidate.fitness = result.fitness_score
    candidate.net_worth = result.net_worth
    candidate.error = result.error


class GeneticAlgorithmOptimizer:
    """遺傳演算法優化器

    每一世代：評估（無效候選以新隨機策略取代並重試）、依適應度降冪排序、
    更新歷史最佳（獨立複本）、檢查提前停止、保留精英、從精英中隨機挑選親代
    進行交叉或複製、依排程突變，最後重新套用約束。

    Attributes:
        evaluator: 適應度評估器
        config: 優化配置
        seeder_inputs: 解析式種子的營運常數
    """

    def __init__(
        self,
        evaluator: FitnessEvaluator,
        config: Optional[OptimizerConfig] = None,
        seeder_inputs: Optional[SeederInputs] = None,
    ):
        """初始化優化器

        Args:
            evaluator: 適應度評估器
            config: 優化配置，預設使用 OptimizerConfig()
            seeder_inputs: 解析式種子的營運常數（可選）

        Raises:
            ConfigurationError: 若配置無效
        """
        self.config = config or OptimizerConfig()
        self.config.validate()
        self.evaluator = evaluator
        self.seeder_inputs = seeder_inputs
        self._ids = itertools.count()

    def _new_id(self, generation: int) -> str:
        return f"gen{generation}-{next(self._ids)}"

    def optimize(
        self,
        base_strategy: Optional[Strategy] = None,
        constraints: Optional[Constraints] = None,
        progress_callback: Optional[ProgressCallback] = None,
        starting_state: Optional[StartingState] = None,
        event_sink: Optional[OptimizationEventSink] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> OptimizationResult:
        """執行遺傳演算法優化

        Args:
            base_strategy: 基準策略，預設使用 Strategy()
            constraints: 約束設定（可選）
            progress_callback: 每世代呼叫一次的進度回調（可選）
            starting_state: 中途重新優化的起始狀態（可選）
            event_sink: 結構化事件接收器（可選）
            should_cancel: 每世代之間詢問是否取消（可選）

        Returns:
            優化結果

        Raises:
            EvaluatorUnavailableError: 若某世代的所有評估都失敗
        """
        config = self.config
        sink = event_sink or OptimizationEventSink()
        baseline = base_strategy or Strategy()

        window_start = DECISION_WINDOW_START
        if starting_state is not None:
            window_start = max(DECISION_WINDOW_START, starting_state.day + 1)

        rng = random.Random(config.random_seed)
        engine = ConstraintEngine(baseline, constraints, window_start=window_start)
        mutation = MutationOperator(engine, rng)
        crossover = CrossoverOperator(config.crossover_rate, baseline.market_params(), rng)
        seeder = AnalyticalSeeder(self.seeder_inputs) if config.seed_with_analytical > 0 else None
        generator = PopulationGenerator(engine, rng, seeder)
        schedule = config.mutation_schedule()
        evaluator = SafeEvaluator(self.evaluator)

        sink.on_run_started({
            "population_size": config.population_size,
            "generations": config.generations,
            "window_start": window_start,
        })
        logger.info(
            f"Starting optimization: population={config.population_size}, "
            f"generations={config.generations}, elites={config.elite_count}"
        )

        strategies = generator.generate_initial_population(
            config.population_size, mutation, config.seed_with_analytical
        )
        population = [
            OptimizationCandidate.from_strategy(self._new_id(0), strategy, 0)
            for strategy in strategies
        ]

        history = ConvergenceHistory()
        best: Optional[OptimizationCandidate] = None
        best_fitness = -math.inf
        stopped_early = False
        cancelled = False

        for gen in range(config.generations):
            rate = schedule.rate_for(gen)

            # 1. 評估
            started = time.perf_counter()
            invalid_count, failed_count, evaluated = self._evaluate_population(
                population, gen, baseline, generator, evaluator, starting_state
            )
            elapsed = time.perf_counter() - started

            if evaluated and failed_count == evaluated:
                logger.error(f"All {failed_count} evaluations failed in generation {gen}")
                raise EvaluatorUnavailableError(gen, history)

            # 2. 排序（同分者不另排序）
            population.sort(key=lambda c: c.fitness, reverse=True)

            # 3. 歷史最佳
            if best is None or population[0].fitness > best_fitness:
                best = population[0].copy()
                best_fitness = best.fitness
                sink.on_new_best(gen, best_fitness)
                logger.info(f"Generation {gen}: new best fitness {best_fitness:.2f}")

            stats = GenerationStats.from_fitness(
                generation=gen,
                fitness_values=[c.fitness for c in population],
                best_ever_fitness=best_fitness,
                mutation_rate=rate,
                evaluation_seconds=elapsed,
                invalid_count=invalid_count,
                failed_count=failed_count,
            )
            history.append(stats)
            sink.on_generation_completed(stats)
            sink.on_population_ranked(gen, [c.copy() for c in population])
            logger.debug(
                f"Generation {gen}: best={stats.best_fitness:.2f} avg={stats.average_fitness:.2f} "
                f"invalid={invalid_count} failed={failed_count} time={elapsed:.2f}s"
            )
            if progress_callback is not None:
                progress_callback(ProgressEvent(gen + 1, config.generations, best_fitness))

            # 4. 提前停止
            if config.enable_early_stopping and should_stop_early(
                history.best_fitness_values(),
                config.early_stop_generations,
                config.min_improvement_threshold,
            ):
                stopped_early = True
                logger.info(f"Early stopping after {len(history)} generations")
                break

            if gen == config.generations - 1:
                break

            if should_cancel is not None and should_cancel():
                cancelled = True
                logger.info(f"Optimization cancelled after {len(history)} generations")
                break

            # 5-6. 精英保留與繁殖
            population = self._breed(population, gen + 1, baseline, engine, crossover, mutation, rate)

        result = OptimizationResult(
            best_strategy=best.to_strategy(baseline),
            best_fitness=best_fitness,
            convergence_history=history.best_fitness_values(),
            generations_run=len(history),
            final_evaluation=best.evaluation,
            history=history,
            stopped_early=stopped_early,
            cancelled=cancelled,
            final_population=population,
        )
        sink.on_run_finished(result)
        logger.info(
            f"Optimization finished: {result.generations_run} generations, "
            f"best fitness {best_fitness:.2f}"
        )
        return result

    def _evaluate_population(
        self,
        population: List[OptimizationCandidate],
        generation: int,
        baseline: Strategy,
        generator: PopulationGenerator,
        evaluator: FitnessEvaluator,
        starting_state: Optional[StartingState],
    ) -> Tuple[int, int, int]:
        """評估種群中尚未評估的候選，無效者以新隨機策略取代後重試

        沿用上一世代的精英保留原評估結果，不重新評估也不會被取代。

        Returns:
            (重試耗盡的無效數, 評估器失敗數, 本世代評估數)
        """
        fresh = [i for i, c in enumerate(population) if c.evaluation is None]
        results = evaluate_strategies(
            evaluator,
            [population[i].to_strategy(baseline) for i in fresh],
            starting_state,
            self.config.max_workers,
        )
        for i, result in zip(fresh, results):
            score_candidate(population[i], result)

        pending = [i for i in fresh if not population[i].evaluation.valid]
        for _ in range(self.config.max_invalid_retries):
            if not pending:
                break
            # 依序取代以維持亂數序列的決定性，再整批評估
            for i in pending:
                population[i] = OptimizationCandidate.from_strategy(
                    self._new_id(generation), generator.random_strategy(), generation
                )
            results = evaluate_strategies(
                evaluator,
                [population[i].to_strategy(baseline) for i in pending],
                starting_state,
                self.config.max_workers,
            )
            for i, result in zip(pending, results):
                score_candidate(population[i], result)
            pending = [i for i in pending if not population[i].evaluation.valid]

        for i in pending:
            population[i].fitness = INVALID_FITNESS
            population[i].error = f"invalid after {self.config.max_invalid_retries} retries"
        if pending:
            logger.warning(
                f"Generation {generation}: {len(pending)} candidates still invalid after "
                f"{self.config.max_invalid_retries} retries"
            )

        failed_count = sum(1 for i in fresh if population[i].evaluation.failed)
        if failed_count:
            logger.warning(f"Generation {generation}: {failed_count} evaluations failed")
        return len(pending), failed_count, len(fresh)

    def _breed(
        self,
        ranked: List[OptimizationCandidate],
        next_generation: int,
        baseline: Strategy,
        engine: ConstraintEngine,
        crossover: CrossoverOperator,
        mutation: MutationOperator,
        rate: float,
    ) -> List[OptimizationCandidate]:
        """產生下一世代：精英原樣保留，其餘由精英繁殖"""
        elites = [c.copy() for c in ranked[:self.config.elite_count]]
        for elite in elites:
            elite.generation = next_generation
        parents = [elite.to_strategy(baseline) for elite in elites]

        offspring = []
        while len(elites) + len(offspring) < self.config.population_size:
            parent_a = crossover.rng.choice(parents)
            parent_b = crossover.rng.choice(parents)
            child = crossover.maybe_crossover(parent_a, parent_b)
            child = mutation.mutate(child, rate)
            child = engine.apply_fixed_constraints(child)
            offspring.append(
                OptimizationCandidate.from_strategy(self._new_id(next_generation), child, next_generation)
            )

        return elites + offspring
