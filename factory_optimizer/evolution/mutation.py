"""
突變算子 (Mutation Operator)

負責對策略引入隨機擾動：政策參數採有界均勻擾動，行動序列採雙模式
（溫和 / 劇烈）突變；另提供第二階段精煉使用的局部變異。
"""

import math
import random
from typing import List, Optional

from .actions import StrategyAction
from .bounds import ParameterBounds
from .constraints import ConstraintEngine
from .models import Strategy, sort_actions
from .population import sample_action, random_day


class MutationOperator:
    """突變算子

    所有取值都來自約束引擎收窄後的範圍；鎖定的行動永遠不會被改動。

    Attributes:
        engine: 約束引擎
        rng: 亂數來源
        step_fraction: 政策參數擾動幅度（相對於收窄範圍）
        gentle_probability: 溫和突變的機率
        delete_probability: 溫和突變中刪除行動的機率
        day_shift: 溫和突變的日期位移上限
        payload_perturbation: 溫和突變的內容擾動比例
        insert_probability: 劇烈突變中插入新行動的機率
    """

    def __init__(
        self,
        engine: ConstraintEngine,
        rng: Optional[random.Random] = None,
        step_fraction: float = 0.1,
        gentle_probability: float = 0.9,
        delete_probability: float = 0.3,
        day_shift: int = 20,
        payload_perturbation: float = 0.3,
        insert_probability: float = 0.5,
    ):
        """初始化突變算子

        Args:
            engine: 約束引擎
            rng: 亂數來源，預設建立未設定種子的 random.Random
            step_fraction: 政策參數擾動幅度，預設 0.1
            gentle_probability: 溫和突變的機率，預設 0.9
            delete_probability: 溫和突變中刪除行動的機率，預設 0.3
            day_shift: 日期位移上限（天），預設 20
            payload_perturbation: 內容擾動比例，預設 0.3
            insert_probability: 劇烈突變中插入新行動的機率，預設 0.5

        Raises:
            ValueError: 若 step_fraction 不為正數
        """
        if step_fraction <= 0:
            raise ValueError(f"Step fraction must be positive, got {step_fraction}")

        self.engine = engine
        self.rng = rng or random.Random()
        self.step_fraction = step_fraction
        self.gentle_probability = gentle_probability
        self.delete_probability = delete_probability
        self.day_shift = day_shift
        self.payload_perturbation = payload_perturbation
        self.insert_probability = insert_probability

    # ------------------------------------------------------------------
    # 全域突變
    # ------------------------------------------------------------------

    def mutate(self, strategy: Strategy, rate: float) -> Strategy:
        """突變策略

        每個可變政策參數以 rate 的機率加上均勻擾動（收窄範圍的 ±step_fraction）；
        行動序列以 rate 的機率執行一次溫和或劇烈突變。

        Args:
            strategy: 要突變的策略
            rate: 突變率

        Returns:
            突變後的新策略（原策略不變）
        """
        params = {}
        for name in self.engine.mutable_fields():
            if self.rng.random() < rate:
                bounds = self.engine.bounds_for(name)
                delta = self.rng.uniform(-1.0, 1.0) * self.step_fraction * bounds.span
                params[name] = bounds.clamp(getattr(strategy, name) + delta)

        mutated = strategy.with_params(params) if params else strategy

        if self.rng.random() < rate:
            if self.rng.random() < self.gentle_probability:
                actions = self._gentle(list(mutated.timed_actions))
            else:
                actions = self._wild(list(mutated.timed_actions))
            mutated = mutated.with_actions(actions)

        return mutated

    def _unlocked_indices(self, actions: List[StrategyAction]) -> List[int]:
        return [i for i, action in enumerate(actions) if not action.is_locked]

    def _gentle(self, actions: List[StrategyAction]) -> List[StrategyAction]:
        """溫和突變：位移日期並擾動內容，或刪除一個行動"""
        candidates = self._unlocked_indices(actions)
        if not candidates:
            actions.append(sample_action(self.rng, self.engine))
            return actions

        index = self.rng.choice(candidates)
        if self.rng.random() < self.delete_probability:
            del actions[index]
            return actions

        action = actions[index]
        shifted = action.with_day(
            self.engine.clamp_day(action.day + self.rng.randint(-self.day_shift, self.day_shift))
        )
        payload = shifted.payload()
        if payload is not None:
            factor = 1.0 + self.rng.uniform(-self.payload_perturbation, self.payload_perturbation)
            shifted = shifted.with_payload(payload * factor)
        actions[index] = self.engine.clamp_action(shifted)
        return actions

    def _wild(self, actions: List[StrategyAction]) -> List[StrategyAction]:
        """劇烈突變：插入新行動，或重新隨機化一個既有行動的日期與內容"""
        candidates = self._unlocked_indices(actions)
        if not candidates or self.rng.random() < self.insert_probability:
            actions.append(sample_action(self.rng, self.engine))
            return actions

        index = self.rng.choice(candidates)
        action = actions[index]
        replaced = action.with_day(random_day(self.rng, self.engine, action.policy_field() is not None))
        bounds = self.engine.action_bounds(replaced)
        if bounds is not None:
            replaced = replaced.with_payload(bounds.sample(self.rng))
        actions[index] = replaced
        return actions

    # ------------------------------------------------------------------
    # 局部變異（第二階段精煉）
    # ------------------------------------------------------------------

    def local_variation(self, strategy: Strategy, intensity: float) -> Strategy:
        """局部變異

        每個未鎖定行動的數值內容與每個可變政策參數，乘上 [1 - intensity, 1 + intensity]
        之間的隨機係數；整數取整後仍維持在該相對範圍內，並限制在定義域邊界內。
        行動日期與數量保持不變。

        Args:
            strategy: 種子策略
            intensity: 變異強度（例如 0.1 表示 ±10%）

        Returns:
            變異後的新策略（原策略不變）
        """
        params = {}
        for name in self.engine.mutable_fields():
            bounds = self.engine.bounds_for(name)
            params[name] = self._vary(getattr(strategy, name), intensity, bounds)

        actions = []
        for action in strategy.timed_actions:
            payload = action.payload()
            if action.is_locked or payload is None:
                actions.append(action)
                continue
            bounds = self.engine.action_bounds(action)
            actions.append(action.with_payload(self._vary(payload, intensity, bounds)))

        return strategy.with_params(params).with_actions(sort_actions(actions))

    def _vary(self, value: float, intensity: float, bounds: ParameterBounds) -> float:
        low = value * (1.0 - intensity)
        high = value * (1.0 + intensity)
        if low > high:
            low, high = high, low

        varied = value * self.rng.uniform(1.0 - intensity, 1.0 + intensity)
        if bounds.is_integer:
            band_low = math.ceil(low)
            band_high = math.floor(high)
            if band_low > band_high:
                varied = value
            else:
                varied = min(band_high, max(band_low, round(varied)))

        # 定義域邊界優先
        return bounds.clamp(varied)
