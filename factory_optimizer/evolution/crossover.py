"""
交叉算子 (Crossover Operator)

負責執行策略交叉操作，透過行動序列與政策參數重組產生子代。
"""

import random
from typing import Dict, Optional

from .models import Strategy, OPTIMIZABLE_FIELDS, MARKET_DEFAULTS, sort_actions


class CrossoverOperator:
    """交叉算子

    行動序列採單點交叉：兩個親代各自獨立選擇切點（不超過較短序列的長度），
    子代取親代 A 的前段與親代 B 的後段。政策參數逐欄以公平硬幣決定來源；
    市場條件參數一律取自標準值，不從任一親代繼承。

    Attributes:
        crossover_rate: 交叉機率
        market_params: 市場條件標準值
    """

    def __init__(
        self,
        crossover_rate: float = 0.7,
        market_params: Optional[Dict[str, float]] = None,
        rng: Optional[random.Random] = None,
    ):
        """初始化交叉算子

        Args:
            crossover_rate: 交叉機率，預設為 0.7
            market_params: 市場條件標準值，預設使用 MARKET_DEFAULTS
            rng: 亂數來源，預設建立未設定種子的 random.Random

        Raises:
            ValueError: 若 crossover_rate 不在 [0, 1] 範圍內
        """
        if crossover_rate < 0.0 or crossover_rate > 1.0:
            raise ValueError(
                f"Crossover rate must be between 0 and 1, got {crossover_rate}"
            )

        self.crossover_rate = crossover_rate
        self.market_params = dict(market_params or MARKET_DEFAULTS)
        self.rng = rng or random.Random()

    def crossover(self, parent_a: Strategy, parent_b: Strategy) -> Strategy:
        """單點交叉

        Args:
            parent_a: 第一個親代（提供行動前段與鎖定行動）
            parent_b: 第二個親代（提供行動後段）

        Returns:
            子代策略（親代不變）
        """
        unlocked_a = parent_a.unlocked_actions()
        unlocked_b = parent_b.unlocked_actions()
        shorter = min(len(unlocked_a), len(unlocked_b))

        # 兩個切點互相獨立
        split_a = self.rng.randint(0, shorter)
        split_b = self.rng.randint(0, shorter)

        actions = (
            parent_a.locked_actions()
            + unlocked_a[:split_a]
            + unlocked_b[split_b:]
        )

        params = {}
        for name in OPTIMIZABLE_FIELDS:
            source = parent_a if self.rng.random() < 0.5 else parent_b
            params[name] = getattr(source, name)
        params.update(self.market_params)

        return parent_a.with_params(params).with_actions(sort_actions(actions))

    def maybe_crossover(self, parent_a: Strategy, parent_b: Strategy) -> Strategy:
        """以 crossover_rate 的機率交叉，否則複製其中一個親代"""
        if self.rng.random() < self.crossover_rate:
            return self.crossover(parent_a, parent_b)
        # Strategy 不可變，直接回傳即為獨立的複本
        return parent_a if self.rng.random() < 0.5 else parent_b
