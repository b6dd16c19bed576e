"""
參數邊界 (Parameter Bounds)

策略參數與行動內容共用的數值範圍定義，以及決策視窗常數。
"""

from dataclasses import dataclass
from enum import Enum
import math
import random


# 決策視窗：第 1-50 天為歷史資料，不可更動
DECISION_WINDOW_START = 51
SIMULATION_END_DAY = 500


class ParameterType(Enum):
    """參數類型

    Attributes:
        FLOAT: 連續變量（浮點數）
        INTEGER: 離散變量（整數）
    """
    FLOAT = "float"
    INTEGER = "integer"


@dataclass(frozen=True)
class ParameterBounds:
    """參數邊界定義

    定義單一策略參數的數值範圍與類型約束。

    Attributes:
        min_value: 最小值
        max_value: 最大值
        param_type: 參數類型（FLOAT 或 INTEGER）
    """
    min_value: float
    max_value: float
    param_type: ParameterType = ParameterType.FLOAT

    @property
    def span(self) -> float:
        return self.max_value - self.min_value

    @property
    def is_integer(self) -> bool:
        return self.param_type == ParameterType.INTEGER

    def validate(self, value: float) -> bool:
        """驗證數值是否在邊界內

        Args:
            value: 要驗證的數值

        Returns:
            數值是否在 [min_value, max_value] 範圍內
        """
        return self.min_value <= value <= self.max_value

    def clamp(self, value: float) -> float:
        """將數值限制在邊界內

        Args:
            value: 要限制的數值

        Returns:
            限制後的數值，若為 INTEGER 類型則四捨五入
        """
        clamped = max(self.min_value, min(self.max_value, value))
        if self.is_integer:
            rounded = round(clamped)
            # 邊界本身不是整數時，四捨五入可能越界
            if rounded > self.max_value:
                rounded = math.floor(self.max_value)
            if rounded < self.min_value:
                rounded = math.ceil(self.min_value)
            return rounded
        return clamped

    def with_range(self, min_value: float, max_value: float) -> "ParameterBounds":
        """以相同類型建立新的範圍"""
        return ParameterBounds(min_value, max_value, self.param_type)

    def sample(self, rng: random.Random) -> float:
        """在邊界內均勻取樣

        Args:
            rng: 亂數來源

        Returns:
            取樣值，INTEGER 類型回傳整數
        """
        if self.is_integer:
            low = math.ceil(self.min_value)
            high = math.floor(self.max_value)
            if high < low:
                return self.clamp(self.min_value)
            return rng.randint(low, high)
        if self.span <= 0:
            return self.min_value
        return rng.uniform(self.min_value, self.max_value)
