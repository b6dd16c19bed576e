"""
適應度評估器 (Fitness Evaluator)

定義外部模擬器的評估介面與評估結果，並提供將傳輸失敗轉為
最差分數的安全包裝器，以及第二階段使用的視窗成長率計算。
"""

import abc
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .models import Strategy


logger = logging.getLogger(__name__)

# 重試耗盡後的無效候選適應度
INVALID_FITNESS = -1e9


class Severity(Enum):
    """違規嚴重程度"""
    ERROR = "error"
    WARNING = "warning"


@dataclass
class Violation:
    """商業規則違規

    Attributes:
        severity: 嚴重程度
        rule: 規則名稱
        message: 說明
    """
    severity: Severity
    rule: str
    message: str = ""


@dataclass
class DailyValue:
    """單日數值（例如淨值）"""
    day: int
    value: float


@dataclass
class FitnessResult:
    """適應度評估結果

    Attributes:
        fitness_score: 適應度分數（越大越好）
        net_worth: 期末淨值
        valid: 策略是否符合商業規則
        violations: 違規列表
        daily_history: 每日淨值（可選）
        failed: 是否為傳輸或執行失敗
        error: 失敗訊息（可選）
    """
    fitness_score: float
    net_worth: float
    valid: bool = True
    violations: List[Violation] = field(default_factory=list)
    daily_history: Optional[List[DailyValue]] = None
    failed: bool = False
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "FitnessResult":
        """傳輸失敗的結果：視為有效但分數為負無限大"""
        return cls(
            fitness_score=-math.inf,
            net_worth=-math.inf,
            valid=True,
            failed=True,
            error=error,
        )

    def value_on(self, day: int) -> Optional[float]:
        """獲取指定日期的數值，若無每日資料則回傳 None"""
        if not self.daily_history:
            return None
        for entry in self.daily_history:
            if entry.day == day:
                return entry.value
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fitness_score": self.fitness_score,
            "net_worth": self.net_worth,
            "valid": self.valid,
            "violations": [
                {"severity": v.severity.value, "rule": v.rule, "message": v.message}
                for v in self.violations
            ],
            "failed": self.failed,
            "error": self.error,
        }


@dataclass
class StartingState:
    """中途重新優化的起始狀態

    Attributes:
        day: 目前模擬日（決策視窗從下一天開始）
        state: 模擬器所需的其餘狀態（現金、庫存、人力等）
    """
    day: int
    state: Dict[str, Any] = field(default_factory=dict)


class FitnessEvaluator(abc.ABC):
    """適應度評估器介面

    外部模擬器的邊界：輸入完整策略，輸出 FitnessResult。
    實作可能很昂貴，也可能因網路失敗而拋出例外。
    """

    @abc.abstractmethod
    def evaluate(
        self,
        strategy: Strategy,
        starting_state: Optional[StartingState] = None,
    ) -> FitnessResult:
        """評估單一策略"""


class FunctionEvaluator(FitnessEvaluator):
    """以一般函式實作的評估器"""

    def __init__(self, func: Callable[[Strategy], FitnessResult]):
        self.func = func

    def evaluate(
        self,
        strategy: Strategy,
        starting_state: Optional[StartingState] = None,
    ) -> FitnessResult:
        return self.func(strategy)


class SafeEvaluator(FitnessEvaluator):
    """安全評估器

    包裝任意評估器：例外會被記錄並轉為 fitness = -inf、failed = True 的結果，
    不會中斷整個優化流程。
    """

    def __init__(self, evaluator: FitnessEvaluator):
        self.evaluator = evaluator

    def evaluate(
        self,
        strategy: Strategy,
        starting_state: Optional[StartingState] = None,
    ) -> FitnessResult:
        try:
            result = self.evaluator.evaluate(strategy, starting_state)
        except Exception as e:
            logger.warning(f"Evaluator failed: {e}")
            return FitnessResult.failure(str(e))

        if result.fitness_score is None or math.isnan(result.fitness_score):
            logger.warning("Evaluator returned a non-numeric fitness score")
            return FitnessResult.failure("non-numeric fitness score")
        return result


def growth_rate(result: FitnessResult, start_day: int, window: int) -> float:
    """計算評估視窗內的每日淨值成長

    growth = (value[start_day + window] - value[start_day]) / window

    Args:
        result: 評估結果（需包含 daily_history）
        start_day: 視窗起始日
        window: 視窗長度（天）

    Returns:
        每日平均成長

    Raises:
        ValueError: 若視窗長度不為正數或每日資料不涵蓋視窗
    """
    if window <= 0:
        raise ValueError(f"Evaluation window must be positive, got {window}")
    start_value = result.value_on(start_day)
    end_value = result.value_on(start_day + window)
    if start_value is None or end_value is None:
        raise ValueError(
            f"Daily history does not cover days {start_day} to {start_day + window}"
        )
    return (end_value - start_value) / window
