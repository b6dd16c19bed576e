"""
優化事件 (Optimization Events)

結構化的進度回報介面：以事件接收器取代單純的日誌輸出，
測試可以同步訂閱事件而不必解析日誌。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import logging

from .generation import GenerationStats


logger = logging.getLogger(__name__)


@dataclass
class ProgressEvent:
    """進度事件

    Attributes:
        current: 已完成的世代或迭代數
        total: 總預算
        best_fitness_so_far: 目前的歷史最佳適應度
    """
    current: int
    total: int
    best_fitness_so_far: float


class OptimizationEventSink:
    """事件接收器基底類別

    預設實作不做任何事；子類別只需覆寫關心的事件。
    """

    def on_run_started(self, run_info: Dict[str, Any]) -> None:
        pass

    def on_generation_completed(self, stats: GenerationStats) -> None:
        pass

    def on_population_ranked(self, generation: int, candidates: List[Any]) -> None:
        pass

    def on_new_best(self, generation: int, fitness: float) -> None:
        pass

    def on_run_finished(self, result: Any) -> None:
        pass


class LoggingEventSink(OptimizationEventSink):
    """將事件轉送至 logging"""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def on_run_started(self, run_info: Dict[str, Any]) -> None:
        self.log.info(f"Optimization started: {run_info}")

    def on_generation_completed(self, stats: GenerationStats) -> None:
        self.log.debug(
            f"Generation {stats.generation}: best={stats.best_fitness:.2f} "
            f"avg={stats.average_fitness:.2f} worst={stats.worst_fitness:.2f} "
            f"rate={stats.mutation_rate:.3f} time={stats.evaluation_seconds:.2f}s"
        )

    def on_new_best(self, generation: int, fitness: float) -> None:
        self.log.info(f"New best fitness {fitness:.2f} in generation {generation}")

    def on_run_finished(self, result: Any) -> None:
        self.log.info(
            f"Optimization finished after {getattr(result, 'generations_run', '?')} generations, "
            f"best fitness {getattr(result, 'best_fitness', float('nan')):.2f}"
        )


class RecordingEventSink(OptimizationEventSink):
    """記錄所有事件，供測試檢查"""

    def __init__(self):
        self.events: List[Tuple[str, Any]] = []

    def on_run_started(self, run_info: Dict[str, Any]) -> None:
        self.events.append(("run_started", run_info))

    def on_generation_completed(self, stats: GenerationStats) -> None:
        self.events.append(("generation_completed", stats))

    def on_population_ranked(self, generation: int, candidates: List[Any]) -> None:
        self.events.append(("population_ranked", (generation, candidates)))

    def on_new_best(self, generation: int, fitness: float) -> None:
        self.events.append(("new_best", (generation, fitness)))

    def on_run_finished(self, result: Any) -> None:
        self.events.append(("run_finished", result))

    def of_kind(self, kind: str) -> List[Any]:
        return [payload for name, payload in self.events if name == kind]

    @property
    def generation_stats(self) -> List[GenerationStats]:
        return self.of_kind("generation_completed")
