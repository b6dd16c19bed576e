"""
貝氏政策優化器 (Bayesian Policy Optimizer)

在 15 維連續政策空間上以 optuna 的 TPE 取樣器搜尋：前段為邊界內均勻隨機
探索，其後由代理模型導引。可選擇以記憶庫中相同需求情境的歷史最佳政策暖啟動。
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple
import logging
import math
import time

import optuna
from optuna.trial import Trial

from ..evolution.exceptions import ConfigurationError
from ..evolution.events import ProgressEvent
from ..evolution.fitness import INVALID_FITNESS
from .policy import POLICY_BOUNDS, DemandContext, PolicyParameters, StrategyPolicyEvaluator

if TYPE_CHECKING:
    from ..db.memory_store import EvaluationMemory


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]

# 暖啟動最多採用的歷史政策數
MAX_WARM_START = 10
# 暖啟動時隨機探索的下限
MIN_REDUCED_RANDOM = 10


@dataclass
class BayesianConfig:
    """貝氏優化配置

    Attributes:
        total_iterations: 總評估次數
        random_exploration: 隨機探索次數
        use_memory: 是否以記憶庫暖啟動
        demand_context: 需求情境（use_memory 時用於比對記憶）
        similarity_threshold: 記憶比對的相似度門檻
        random_seed: 亂數種子（可選）
    """
    total_iterations: int = 150
    random_exploration: int = 30
    use_memory: bool = False
    demand_context: Optional[DemandContext] = None
    similarity_threshold: float = 0.95
    random_seed: Optional[int] = None

    def validate(self) -> None:
        """驗證配置

        Raises:
            ConfigurationError: 若任何參數無效
        """
        if self.total_iterations < 1:
            raise ConfigurationError(
                f"Invalid total iterations: {self.total_iterations}",
                "Use at least one iteration",
            )
        if self.random_exploration < 0 or self.random_exploration > self.total_iterations:
            raise ConfigurationError(
                f"Invalid random exploration: {self.random_exploration}",
                f"Use a value between 0 and total_iterations ({self.total_iterations})",
            )
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ConfigurationError(
                f"Invalid similarity threshold: {self.similarity_threshold}",
                "Use a value between 0.0 and 1.0",
            )


@dataclass
class BayesianResult:
    """貝氏優化結果

    Attributes:
        best_policy: 最佳政策
        best_fitness: 最佳適應度
        best_net_worth: 最佳政策的淨值
        convergence_history: 各迭代的歷史最佳適應度（非遞減）
        fitness_history: 各迭代的原始適應度
        duration: 耗時（秒）
        iterations: 實際評估次數
        warm_started: 暖啟動採用的歷史政策數
    """
    best_policy: PolicyParameters
    best_fitness: float
    best_net_worth: float
    convergence_history: List[float] = field(default_factory=list)
    fitness_history: List[float] = field(default_factory=list)
    duration: float = 0.0
    iterations: int = 0
    warm_started: int = 0


def suggest_policy(trial: Trial) -> PolicyParameters:
    """由 optuna trial 在 POLICY_BOUNDS 內取樣政策"""
    values: Dict[str, float] = {}
    for name, bounds in POLICY_BOUNDS.items():
        if bounds.is_integer:
            values[name] = trial.suggest_int(name, int(bounds.min_value), int(bounds.max_value))
        else:
            values[name] = trial.suggest_float(name, bounds.min_value, bounds.max_value)
    return PolicyParameters(**values)


def plan_budget(config: BayesianConfig, warm_count: int) -> Tuple[int, int]:
    """分配迭代預算

    有暖啟動政策時，隨機探索減為 max(10, random_exploration // 3)，
    但不超過扣除暖啟動後的剩餘預算。

    Returns:
        (隨機探索次數, 模型導引次數)
    """
    random_count = config.random_exploration
    if warm_count > 0:
        random_count = max(MIN_REDUCED_RANDOM, config.random_exploration // 3)
    random_count = min(random_count, config.total_iterations - warm_count)
    return random_count, config.total_iterations - warm_count - random_count


class BayesianOptimizer:
    """貝氏政策優化器

    Attributes:
        evaluator: 政策評估器
        memory: 評估記憶庫（可選）
    """

    def __init__(
        self,
        evaluator: StrategyPolicyEvaluator,
        memory: Optional["EvaluationMemory"] = None,
    ):
        self.evaluator = evaluator
        self.memory = memory

    def _warm_start_policies(self, config: BayesianConfig) -> List[PolicyParameters]:
        if not config.use_memory:
            return []
        if self.memory is None or config.demand_context is None:
            logger.warning("use_memory is set but no memory store or demand context was provided")
            return []
        context_stats = self.memory.query_context(
            config.demand_context,
            top_n=MAX_WARM_START,
            similarity_threshold=config.similarity_threshold,
        )
        if context_stats.count:
            logger.info(
                f"Found {context_stats.count} matching runs in memory "
                f"(avg fitness {context_stats.average_fitness:.2f}, top {context_stats.top_fitness:.2f})"
            )
        return [policy.clamped() for policy in context_stats.top_policies[:MAX_WARM_START]]

    def optimize(
        self,
        config: Optional[BayesianConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BayesianResult:
        """執行貝氏優化

        Args:
            config: 優化配置
            progress_callback: 每次迭代後呼叫的進度回調

        Returns:
            BayesianResult

        Raises:
            ConfigurationError: 若配置無效
        """
        config = config or BayesianConfig()
        config.validate()

        warm_policies = self._warm_start_policies(config)[:config.total_iterations]
        random_count, guided_count = plan_budget(config, len(warm_policies))

        logger.info(
            f"Starting Bayesian optimization: {config.total_iterations} iterations, "
            f"{len(warm_policies)} warm start, {random_count} random, "
            f"{guided_count} guided"
        )

        optuna.logging.set_verbosity(optuna.logging.WARNING)
        sampler = optuna.samplers.TPESampler(
            seed=config.random_seed,
            n_startup_trials=len(warm_policies) + random_count,
        )
        study = optuna.create_study(direction="maximize", sampler=sampler)
        for policy in warm_policies:
            study.enqueue_trial(policy.to_dict())

        best: Dict[str, Any] = {"policy": PolicyParameters(), "fitness": -math.inf, "net_worth": -math.inf}
        convergence: List[float] = []
        raw_history: List[float] = []

        def objective(trial: Trial) -> float:
            policy = suggest_policy(trial)
            result = self.evaluator.evaluate_policy(policy)
            fitness = result.fitness_score
            if not result.valid or not math.isfinite(fitness):
                fitness = INVALID_FITNESS

            raw_history.append(fitness)
            if fitness > best["fitness"]:
                best.update(policy=policy, fitness=fitness, net_worth=result.net_worth)
                logger.info(f"Iteration {trial.number + 1}: new best fitness {fitness:.2f}")
            convergence.append(best["fitness"])

            if progress_callback is not None:
                progress_callback(ProgressEvent(trial.number + 1, config.total_iterations, best["fitness"]))
            return fitness

        started = time.perf_counter()
        study.optimize(objective, n_trials=config.total_iterations)
        duration = time.perf_counter() - started

        result = BayesianResult(
            best_policy=best["policy"],
            best_fitness=best["fitness"],
            best_net_worth=best["net_worth"],
            convergence_history=convergence,
            fitness_history=raw_history,
            duration=duration,
            iterations=len(raw_history),
            warm_started=len(warm_policies),
        )
        logger.info(f"Bayesian optimization finished in {duration:.1f}s, best fitness {result.best_fitness:.2f}")

        if self.memory is not None and config.demand_context is not None and result.best_fitness > INVALID_FITNESS:
            self.memory.add_evaluation(
                result.best_policy,
                result.best_fitness,
                result.best_net_worth,
                config.demand_context,
                config.total_iterations,
            )
        return result
