"""
種群生成器 (Population Generator)

負責生成初始種群：基準策略、解析式種子、突變後的基準策略，
以及在約束範圍內隨機生成的策略。
"""

import random
from typing import List, Optional, Tuple, TYPE_CHECKING

from .actions import (
    ActionType,
    StrategyAction,
    POLICY_ACTION_TYPES,
    build_action,
)
from .constraints import ConstraintEngine
from .models import Strategy, OPTIMIZABLE_FIELDS

if TYPE_CHECKING:
    from .analytical import AnalyticalSeeder
    from .mutation import MutationOperator


# 政策調整偏好的時段 (起始日, 結束日, 機率)
POLICY_PERIODS: List[Tuple[int, int, float]] = [
    (160, 185, 0.35),
    (450, 465, 0.30),
]

RESOURCE_ACTION_TYPES: List[ActionType] = [
    action_type for action_type in ActionType if action_type not in POLICY_ACTION_TYPES
]

# 隨機策略的行動數量範圍
RESOURCE_ACTION_COUNT = (3, 12)
POLICY_ACTION_COUNT = (2, 5)


def random_day(
    rng: random.Random,
    engine: ConstraintEngine,
    policy: bool = False,
) -> int:
    """在決策視窗內隨機選擇行動日期

    政策行動偏好集中於需求轉換前後的時段；時段若不在視窗內則改為均勻取樣。

    Args:
        rng: 亂數來源
        engine: 約束引擎（提供決策視窗）
        policy: 是否為政策行動

    Returns:
        行動日期
    """
    if policy:
        roll = rng.random()
        cumulative = 0.0
        for start, end, probability in POLICY_PERIODS:
            cumulative += probability
            if roll < cumulative:
                low = max(start, engine.window_start)
                high = min(end, engine.window_end)
                if low <= high:
                    return rng.randint(low, high)
                break
    return rng.randint(engine.window_start, engine.window_end)


def sample_action(
    rng: random.Random,
    engine: ConstraintEngine,
    day: Optional[int] = None,
    action_type: Optional[ActionType] = None,
    max_attempts: int = 10,
) -> StrategyAction:
    """生成一個符合約束的隨機行動

    內容從約束引擎收窄後的範圍取樣；被約束禁止的政策行動會重新抽樣，
    多次失敗後退回訂購原料行動。

    Args:
        rng: 亂數來源
        engine: 約束引擎
        day: 行動日期（可選，預設隨機）
        action_type: 行動類型（可選，預設隨機）
        max_attempts: 最大重抽次數

    Returns:
        新建立的行動
    """
    for _ in range(max_attempts):
        chosen = action_type or rng.choice(list(ActionType))
        action_day = day if day is not None else random_day(
            rng, engine, policy=chosen in POLICY_ACTION_TYPES
        )
        action = build_action(chosen, action_day, rng, bounds_for=engine.action_bounds)
        if engine.allows_action(action):
            return action
    fallback_day = day if day is not None else random_day(rng, engine)
    return build_action(ActionType.ORDER_MATERIALS, fallback_day, rng, bounds_for=engine.action_bounds)


class PopulationGenerator:
    """種群生成器

    Attributes:
        engine: 約束引擎
        rng: 亂數來源
        seeder: 解析式種子生成器（可選）
    """

    def __init__(
        self,
        engine: ConstraintEngine,
        rng: Optional[random.Random] = None,
        seeder: Optional["AnalyticalSeeder"] = None,
    ):
        self.engine = engine
        self.rng = rng or random.Random()
        self.seeder = seeder

    def random_actions(self) -> List[StrategyAction]:
        """生成隨機行動序列：資源行動 3-12 個，政策行動 2-5 個"""
        actions = []
        for _ in range(self.rng.randint(*RESOURCE_ACTION_COUNT)):
            action_type = self.rng.choice(RESOURCE_ACTION_TYPES)
            actions.append(sample_action(self.rng, self.engine, action_type=action_type))

        policy_types = [
            action_type for action_type in POLICY_ACTION_TYPES
            if action_type == ActionType.ADJUST_PRICE
            or self.engine.is_mutable(_policy_field_for(action_type))
        ]
        if policy_types:
            for _ in range(self.rng.randint(*POLICY_ACTION_COUNT)):
                action_type = self.rng.choice(sorted(policy_types, key=lambda t: t.value))
                actions.append(sample_action(self.rng, self.engine, action_type=action_type))
        return actions

    def random_strategy(self) -> Strategy:
        """在約束範圍內生成隨機策略

        可變參數從收窄後的範圍均勻取樣，不可變參數取固定值，
        並保留受保護的基準行動。
        """
        params = {}
        for name in OPTIMIZABLE_FIELDS:
            if self.engine.is_mutable(name):
                params[name] = self.engine.bounds_for(name).sample(self.rng)
            else:
                params[name] = self.engine.pinned_value(name)

        strategy = self.engine.baseline.with_params(params).with_actions(
            list(self.engine.protected_actions) + self.random_actions()
        )
        return self.engine.apply_fixed_constraints(strategy)

    def generate_initial_population(
        self,
        population_size: int,
        mutation_operator: "MutationOperator",
        seed_fraction: float = 0.2,
        baseline_mutation_rate: float = 0.1,
    ) -> List[Strategy]:
        """生成初始種群

        組成：基準策略本身、seed_fraction 比例的解析式種子、
        其餘的一半為突變後的基準策略、剩下為隨機策略。
        所有策略都經過 apply_fixed_constraints。

        Args:
            population_size: 種群大小
            mutation_operator: 用於產生突變基準策略的突變算子
            seed_fraction: 解析式種子比例，預設 0.2
            baseline_mutation_rate: 基準策略的突變率，預設 0.1

        Returns:
            初始種群（策略列表）

        Raises:
            ValueError: 若 population_size 小於 1
        """
        if population_size < 1:
            raise ValueError(f"Population size must be positive, got {population_size}")

        baseline = self.engine.apply_fixed_constraints(self.engine.baseline)
        population = [baseline]

        num_seeded = 0
        if self.seeder is not None:
            num_seeded = min(int(population_size * seed_fraction), population_size - 1)
        for _ in range(num_seeded):
            seeded = self.seeder.seed_strategy(baseline, self.engine, self.rng)
            population.append(self.engine.apply_fixed_constraints(seeded))

        remaining = population_size - len(population)
        num_mutated = remaining // 2
        for _ in range(num_mutated):
            mutated = mutation_operator.mutate(baseline, baseline_mutation_rate)
            population.append(self.engine.apply_fixed_constraints(mutated))

        while len(population) < population_size:
            population.append(self.random_strategy())

        return population[:population_size]


def _policy_field_for(action_type: ActionType) -> str:
    return {
        ActionType.ADJUST_BATCH_SIZE: "standard_batch_size",
        ActionType.ADJUST_MCE_ALLOCATION: "mce_allocation_custom",
        ActionType.SET_REORDER_POINT: "reorder_point",
        ActionType.SET_ORDER_QUANTITY: "order_quantity",
    }[action_type]
