"""
世代統計與收斂歷史 (Generation Statistics & Convergence History)

記錄每一世代的適應度統計、自適應突變率排程，以及提前停止判斷。
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterator, List, Sequence
import math

import pandas as pd


@dataclass
class GenerationStats:
    """世代統計

    記錄單一世代的統計資訊。

    Attributes:
        generation: 世代編號
        best_fitness: 本世代最佳適應度
        average_fitness: 本世代平均適應度（僅計入有限值）
        worst_fitness: 本世代最差適應度
        best_ever_fitness: 截至本世代的歷史最佳適應度
        mutation_rate: 本世代使用的突變率
        evaluation_seconds: 評估耗時（秒）
        invalid_count: 重試耗盡仍無效的候選數
        failed_count: 評估器失敗的候選數
    """
    generation: int
    best_fitness: float
    average_fitness: float
    worst_fitness: float
    best_ever_fitness: float
    mutation_rate: float
    evaluation_seconds: float = 0.0
    invalid_count: int = 0
    failed_count: int = 0

    @classmethod
    def from_fitness(
        cls,
        generation: int,
        fitness_values: Sequence[float],
        best_ever_fitness: float,
        mutation_rate: float,
        **kwargs: Any,
    ) -> "GenerationStats":
        """由一世代的適應度值計算統計

        Raises:
            ValueError: 若適應度列表為空
        """
        if not fitness_values:
            raise ValueError("Fitness values cannot be empty")
        finite = [value for value in fitness_values if math.isfinite(value)]
        average = sum(finite) / len(finite) if finite else -math.inf
        return cls(
            generation=generation,
            best_fitness=max(fitness_values),
            average_fitness=average,
            worst_fitness=min(fitness_values),
            best_ever_fitness=best_ever_fitness,
            mutation_rate=mutation_rate,
            **kwargs,
        )


class ConvergenceHistory:
    """收斂歷史

    依世代順序累加的統計序列，只能附加，不能修改。
    """

    def __init__(self):
        self._stats: List[GenerationStats] = []

    def append(self, stats: GenerationStats) -> None:
        self._stats.append(stats)

    def __len__(self) -> int:
        return len(self._stats)

    def __iter__(self) -> Iterator[GenerationStats]:
        return iter(list(self._stats))

    def __getitem__(self, index: int) -> GenerationStats:
        return self._stats[index]

    @property
    def stats(self) -> List[GenerationStats]:
        return list(self._stats)

    def best_fitness_values(self) -> List[float]:
        """各世代的歷史最佳適應度（非遞減）"""
        return [stats.best_ever_fitness for stats in self._stats]

    def to_records(self) -> List[Dict[str, Any]]:
        return [asdict(stats) for stats in self._stats]

    def to_dataframe(self) -> pd.DataFrame:
        """轉換為 DataFrame，以世代編號為索引"""
        columns = list(GenerationStats.__dataclass_fields__)
        df = pd.DataFrame(self.to_records(), columns=columns)
        return df.set_index("generation")


class MutationSchedule:
    """突變率排程

    啟用自適應時由 initial_rate 線性遞減至 final_rate；否則固定為 fixed_rate。

    Attributes:
        initial_rate: 起始突變率
        final_rate: 最終突變率
        generations: 世代預算
        adaptive: 是否啟用自適應
        fixed_rate: 未啟用自適應時的突變率
    """

    def __init__(
        self,
        initial_rate: float,
        final_rate: float,
        generations: int,
        adaptive: bool = True,
        fixed_rate: float = 0.05,
    ):
        self.initial_rate = initial_rate
        self.final_rate = final_rate
        self.generations = generations
        self.adaptive = adaptive
        self.fixed_rate = fixed_rate

    def rate_for(self, generation: int) -> float:
        """獲取指定世代的突變率"""
        if not self.adaptive:
            return self.fixed_rate
        if self.generations <= 1:
            return self.initial_rate
        progress = min(max(generation, 0), self.generations - 1) / (self.generations - 1)
        return self.initial_rate - (self.initial_rate - self.final_rate) * progress


def relative_improvement(old: float, new: float) -> float:
    """由 old 到 new 的相對改善

    old 為 0 時使用絕對差；old 非有限值而 new 為有限值時視為無限大改善。
    """
    if not math.isfinite(old):
        if math.isfinite(new) or new > old:
            return math.inf
        return 0.0
    if not math.isfinite(new):
        return -math.inf if new < old else math.inf
    if old == 0:
        return new - old
    return (new - old) / abs(old)


def should_stop_early(
    best_fitness_values: Sequence[float],
    window: int,
    min_improvement: float,
) -> bool:
    """提前停止判斷

    比較最近 window 個歷史最佳值中最舊與最新者的相對改善；
    歷史不足 window 個世代時永不停止。

    Args:
        best_fitness_values: 各世代的歷史最佳適應度
        window: 觀察視窗
        min_improvement: 最低相對改善

    Returns:
        是否應停止
    """
    if window < 1 or len(best_fitness_values) < window:
        return False
    recent = best_fitness_values[-window:]
    return relative_improvement(recent[0], recent[-1]) < min_improvement
