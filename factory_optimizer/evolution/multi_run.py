"""
多次執行優化器 (Multi-Run Optimizer)

以不同亂數種子重複執行遺傳演算法，降低初始種群帶來的結果變異，
回傳最佳的一次執行以及各次最佳適應度的統計。
"""

from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional
import logging
import math

import numpy as np

from .constraints import Constraints
from .engine import GeneticAlgorithmOptimizer, OptimizationResult, OptimizerConfig, ProgressCallback
from .events import OptimizationEventSink, ProgressEvent
from .exceptions import ConfigurationError
from .fitness import FitnessEvaluator, StartingState
from .models import Strategy


logger = logging.getLogger(__name__)


@dataclass
class MultiRunConfig:
    """多次執行配置

    Attributes:
        num_runs: 獨立執行次數
        optimizer_config: 每次執行共用的遺傳演算法配置
        base_seed: 第 i 次執行使用 base_seed + i；None 時每次不設種子
    """
    num_runs: int = 5
    optimizer_config: OptimizerConfig = field(default_factory=OptimizerConfig)
    base_seed: Optional[int] = None

    def validate(self) -> None:
        """驗證配置

        Raises:
            ConfigurationError: 若執行次數小於 1 或遺傳演算法配置無效
        """
        if self.num_runs < 1:
            raise ConfigurationError(
                f"Invalid num_runs: {self.num_runs}",
                "Use at least 1 run",
            )
        self.optimizer_config.validate()

    def config_for_run(self, run_index: int) -> OptimizerConfig:
        seed = None if self.base_seed is None else self.base_seed + run_index
        return replace(self.optimizer_config, random_seed=seed)


@dataclass
class RunFitnessStats:
    """各次執行最佳適應度的統計

    Attributes:
        mean: 平均值
        std_dev: 母體標準差
        min: 最小值
        max: 最大值
        improvement: 最佳值相對平均值的提升百分比（平均值不為正時為 0）
    """
    mean: float
    std_dev: float
    min: float
    max: float
    improvement: float

    @classmethod
    def from_fitness(cls, values: List[float]) -> "RunFitnessStats":
        """由各次最佳適應度計算統計

        Raises:
            ValueError: 若沒有任何數值
        """
        if not values:
            raise ValueError("At least one run is required")
        array = np.asarray(values, dtype=float)
        mean = float(array.mean())
        highest = float(array.max())
        improvement = (highest - mean) / abs(mean) * 100 if mean > 0 else 0.0
        return cls(
            mean=mean,
            std_dev=float(array.std()),
            min=float(array.min()),
            max=highest,
            improvement=improvement,
        )


@dataclass
class MultiRunResult:
    """多次執行結果

    Attributes:
        best_strategy: 所有執行中的最佳策略
        best_fitness: 最佳適應度
        best_run_index: 最佳執行的索引（從 0 開始）
        runs: 各次執行結果
        fitness_stats: 各次最佳適應度的統計
        cancelled: 是否被呼叫端取消
    """
    best_strategy: Strategy
    best_fitness: float
    best_run_index: int
    runs: List[OptimizationResult]
    fitness_stats: RunFitnessStats
    cancelled: bool = False


class MultiRunOptimizer:
    """多次執行優化器

    依序執行 num_runs 次獨立的 GeneticAlgorithmOptimizer，每次使用各自的
    種子。任一次執行拋出 EvaluatorUnavailableError 時整體中止。

    Attributes:
        evaluator: 適應度評估器
        config: 多次執行配置
    """

    def __init__(self, evaluator: FitnessEvaluator, config: Optional[MultiRunConfig] = None):
        self.config = config or MultiRunConfig()
        self.config.validate()
        self.evaluator = evaluator

    def optimize(
        self,
        base_strategy: Optional[Strategy] = None,
        constraints: Optional[Constraints] = None,
        progress_callback: Optional[ProgressCallback] = None,
        starting_state: Optional[StartingState] = None,
        event_sink: Optional[OptimizationEventSink] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> MultiRunResult:
        """執行多次優化

        Args:
            base_strategy: 基準策略
            constraints: 約束設定（可選）
            progress_callback: 每完成一次執行呼叫一次（可選）
            starting_state: 中途重新優化的起始狀態（可選）
            event_sink: 傳給每次執行的事件接收器（可選）
            should_cancel: 取消詢問；會傳給每次執行，取消後不再開始新的執行

        Returns:
            多次執行結果
        """
        config = self.config
        runs: List[OptimizationResult] = []
        best_index = 0
        best_fitness = -math.inf
        cancelled = False

        logger.info(f"Starting multi-run optimization: {config.num_runs} runs")
        for run_index in range(config.num_runs):
            optimizer = GeneticAlgorithmOptimizer(self.evaluator, config.config_for_run(run_index))
            result = optimizer.optimize(
                base_strategy=base_strategy,
                constraints=constraints,
                starting_state=starting_state,
                event_sink=event_sink,
                should_cancel=should_cancel,
            )
            runs.append(result)
            logger.info(f"Run {run_index + 1}/{config.num_runs}: best fitness {result.best_fitness:.2f}")

            if result.best_fitness > best_fitness:
                best_fitness = result.best_fitness
                best_index = run_index
            if progress_callback is not None:
                progress_callback(ProgressEvent(run_index + 1, config.num_runs, best_fitness))

            remaining = run_index < config.num_runs - 1
            if result.cancelled or (remaining and should_cancel is not None and should_cancel()):
                cancelled = True
                logger.info(f"Multi-run optimization cancelled after {len(runs)} runs")
                break

        stats = RunFitnessStats.from_fitness([run.best_fitness for run in runs])
        logger.info(
            f"Multi-run finished: best {best_fitness:.2f} (run {best_index + 1}), "
            f"mean {stats.mean:.2f}, std {stats.std_dev:.2f}"
        )
        return MultiRunResult(
            best_strategy=runs[best_index].best_strategy,
            best_fitness=best_fitness,
            best_run_index=best_index,
            runs=runs,
            fitness_stats=stats,
            cancelled=cancelled,
        )
