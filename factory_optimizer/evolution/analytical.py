"""
解析式種子生成器 (Analytical Seeder)

以作業研究的封閉式公式（EOQ、ROP、EPQ、NPV、M/M/s 等候模型、線性需求最適價格）
產生具領域知識的候選策略，使初始種群偏向合理的最佳解附近。
"""

from dataclasses import dataclass
from statistics import NormalDist
from typing import Dict, List, Optional
import math
import random

import numpy as np

from .actions import (
    StrategyAction,
    BuyMachine,
    HireWorkers,
    MachineType,
    WorkerRole,
    ACTION_PAYLOAD_BOUNDS,
    ActionType,
)
from .constraints import ConstraintEngine
from .models import Strategy


# =============================================================================
# 公式
# =============================================================================

def economic_order_quantity(
    annual_demand: float,
    ordering_cost: float,
    holding_cost_per_unit: float,
) -> float:
    """經濟訂購量 (Economic Order Quantity)

    EOQ = sqrt(2 * D * K / h)

    Raises:
        ValueError: 若持有成本不為正數
    """
    if holding_cost_per_unit <= 0:
        raise ValueError("Holding cost must be positive")
    return math.sqrt(2 * annual_demand * ordering_cost / holding_cost_per_unit)


def reorder_point(
    avg_daily_demand: float,
    lead_time_days: float,
    service_level: float,
    demand_std_dev: float,
) -> float:
    """再訂購點 (Reorder Point)

    ROP = d * L + z * sigma * sqrt(L)，z 取自服務水準的常態分布反函數。

    Raises:
        ValueError: 若服務水準不在 (0, 1) 範圍內
    """
    if not 0.0 < service_level < 1.0:
        raise ValueError(f"Service level must be in (0, 1), got {service_level}")
    z_score = NormalDist().inv_cdf(service_level)
    safety_stock = z_score * math.sqrt(lead_time_days) * demand_std_dev
    return avg_daily_demand * lead_time_days + safety_stock


def economic_production_quantity(
    annual_demand: float,
    setup_cost: float,
    holding_cost: float,
    production_rate: float,
    demand_rate: float,
) -> float:
    """經濟生產批量 (Economic Production Quantity)

    EPQ = sqrt(2 * D * K / (h * (1 - d / p)))

    Raises:
        ValueError: 若生產速率不大於需求速率，或持有成本不為正數
    """
    if production_rate <= demand_rate:
        raise ValueError("Production rate must exceed demand rate")
    if holding_cost <= 0:
        raise ValueError("Holding cost must be positive")
    adjustment = 1 - demand_rate / production_rate
    return math.sqrt(2 * annual_demand * setup_cost / (holding_cost * adjustment))


def net_present_value(
    initial_investment: float,
    daily_cash_flow: float,
    days_remaining: int,
    daily_discount_rate: float,
) -> float:
    """淨現值 (Net Present Value)

    NPV = -C0 + sum(CF / (1 + r)^t, t = 1..n)
    """
    if days_remaining <= 0:
        return -initial_investment
    periods = np.arange(1, days_remaining + 1)
    discounted = daily_cash_flow / np.power(1 + daily_discount_rate, periods)
    return float(discounted.sum() - initial_investment)


def mms_wait_time(arrival_rate: float, service_rate: float, servers: int) -> float:
    """M/M/s 佇列的平均等候時間 (Erlang C)

    Returns:
        平均等候時間；使用率大於等於 1 時為無限大

    Raises:
        ValueError: 若服務速率或服務台數不為正數
    """
    if service_rate <= 0 or servers < 1:
        raise ValueError("Service rate and server count must be positive")
    if arrival_rate <= 0:
        return 0.0

    offered_load = arrival_rate / service_rate
    utilization = offered_load / servers
    if utilization >= 1.0:
        return math.inf

    partial = sum(offered_load ** k / math.factorial(k) for k in range(servers))
    tail = offered_load ** servers / (math.factorial(servers) * (1 - utilization))
    erlang_c = tail / (partial + tail)
    return erlang_c / (servers * service_rate - arrival_rate)


def optimal_price(demand_intercept: float, price_slope: float, unit_cost: float) -> float:
    """線性需求 Q = a + b * P 下的利潤最大化價格

    P* = (b * c - a) / (2 * b)

    Raises:
        ValueError: 若價格斜率為 0
    """
    if price_slope == 0:
        raise ValueError("Price slope cannot be zero")
    return (price_slope * unit_cost - demand_intercept) / (2 * price_slope)


# =============================================================================
# 種子生成器
# =============================================================================

@dataclass
class SeederInputs:
    """解析式種子的營運常數

    Attributes:
        mce_units_per_machine: 每台 MCE 每日產能
        standard_allocation: 標準品分配比例（估算用）
        standard_material_per_unit: 標準品每單位原料數
        custom_material_per_unit: 客製品每單位原料數
        raw_material_cost: 原料單價
        order_fee: 每次訂購固定成本
        holding_rate: 年持有成本率
        lead_time_days: 原料前置時間（天）
        service_level: 目標服務水準
        demand_variation: 每日需求的變異係數
        setup_cost: 每批生產的設定成本
        machine_cost: 機台購置成本
        unit_cost: 標準品單位成本
        extra_units_per_day: 新機台帶來的每日額外產量（保守估計）
        daily_discount_rate: 每日折現率
        custom_units_per_day: 客製品每日到達量
        expert_service_rate: 每位專家每日處理量
        current_experts: 目前專家人數
        target_wait_days: 可接受的平均等候時間（天）
        variation: 公式輸出的隨機擾動幅度
    """
    mce_units_per_machine: float = 30.0
    standard_allocation: float = 0.5
    standard_material_per_unit: float = 2.0
    custom_material_per_unit: float = 1.0
    raw_material_cost: float = 50.0
    order_fee: float = 1000.0
    holding_rate: float = 0.2
    lead_time_days: float = 4.0
    service_level: float = 0.95
    demand_variation: float = 0.25
    setup_cost: float = 100.0
    machine_cost: float = 20000.0
    unit_cost: float = 200.0
    extra_units_per_day: float = 3.0
    daily_discount_rate: float = 0.001
    custom_units_per_day: float = 12.0
    expert_service_rate: float = 3.0
    current_experts: int = 2
    target_wait_days: float = 1.0
    variation: float = 0.2

    def validate(self) -> None:
        """驗證常數

        Raises:
            ValueError: 若常數不合理
        """
        if not 0.0 < self.service_level < 1.0:
            raise ValueError(f"service_level must be in (0, 1), got {self.service_level}")
        if not 0.0 < self.standard_allocation < 1.0:
            raise ValueError(f"standard_allocation must be in (0, 1), got {self.standard_allocation}")
        if not 0.0 <= self.variation < 1.0:
            raise ValueError(f"variation must be in [0, 1), got {self.variation}")
        for name in ("mce_units_per_machine", "raw_material_cost", "holding_rate", "expert_service_rate"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.current_experts < 1:
            raise ValueError("current_experts must be at least 1")


class AnalyticalSeeder:
    """解析式種子生成器

    每個公式的輸出都乘上 ±variation 的隨機係數，以避免種群重複複製同一個解析解；
    所有數值都經過約束引擎的邊界限制。

    Attributes:
        inputs: 營運常數
    """

    def __init__(self, inputs: Optional[SeederInputs] = None):
        self.inputs = inputs or SeederInputs()
        self.inputs.validate()

    def analytical_values(self, base: Strategy) -> Dict[str, float]:
        """計算未擾動的解析式參數值"""
        inputs = self.inputs
        standard_units = inputs.mce_units_per_machine * inputs.standard_allocation
        custom_units = inputs.mce_units_per_machine * (1 - inputs.standard_allocation)
        material_per_day = (
            standard_units * inputs.standard_material_per_unit
            + custom_units * inputs.custom_material_per_unit
        )
        holding_cost = inputs.raw_material_cost * inputs.holding_rate

        values = {
            "order_quantity": economic_order_quantity(
                annual_demand=material_per_day * 365,
                ordering_cost=inputs.order_fee,
                holding_cost_per_unit=holding_cost,
            ),
            "reorder_point": reorder_point(
                avg_daily_demand=material_per_day,
                lead_time_days=inputs.lead_time_days,
                service_level=inputs.service_level,
                demand_std_dev=material_per_day * inputs.demand_variation,
            ),
            "standard_batch_size": economic_production_quantity(
                annual_demand=standard_units * 365,
                setup_cost=inputs.setup_cost,
                holding_cost=inputs.standard_material_per_unit * holding_cost,
                production_rate=inputs.mce_units_per_machine,
                demand_rate=standard_units,
            ),
        }
        if base.standard_demand_slope != 0:
            values["standard_price"] = optimal_price(
                demand_intercept=base.standard_demand_intercept,
                price_slope=base.standard_demand_slope,
                unit_cost=inputs.standard_material_per_unit * inputs.raw_material_cost,
            )
        return values

    def _perturb(self, value: float, rng: random.Random) -> float:
        return value * rng.uniform(1 - self.inputs.variation, 1 + self.inputs.variation)

    def seed_actions(
        self,
        base: Strategy,
        engine: ConstraintEngine,
        rng: random.Random,
    ) -> List[StrategyAction]:
        """依 NPV 與等候模型產生機台購置與雇用行動"""
        inputs = self.inputs
        actions: List[StrategyAction] = []
        day = engine.clamp_day(engine.window_start + rng.randint(0, 30))
        days_remaining = engine.window_end - day

        daily_cash_flow = self._perturb(
            (base.standard_price - inputs.unit_cost) * inputs.extra_units_per_day, rng
        )
        npv = net_present_value(
            inputs.machine_cost, daily_cash_flow, days_remaining, inputs.daily_discount_rate
        )
        if npv > 0:
            actions.append(BuyMachine(day, MachineType.MCE, 1))

        wait = mms_wait_time(inputs.custom_units_per_day, inputs.expert_service_rate, inputs.current_experts)
        if wait > inputs.target_wait_days:
            hire_bounds = ACTION_PAYLOAD_BOUNDS[ActionType.HIRE]
            servers = inputs.current_experts
            while servers - inputs.current_experts < hire_bounds.max_value:
                servers += 1
                if mms_wait_time(inputs.custom_units_per_day, inputs.expert_service_rate, servers) <= inputs.target_wait_days:
                    break
            count = hire_bounds.clamp(self._perturb(servers - inputs.current_experts, rng))
            actions.append(HireWorkers(day, WorkerRole.ROOKIE, int(count)))

        return [engine.clamp_action(action) for action in actions if engine.allows_action(action)]

    def seed_strategy(
        self,
        base: Strategy,
        engine: ConstraintEngine,
        rng: random.Random,
    ) -> Strategy:
        """產生一個解析式種子策略

        Args:
            base: 基準策略
            engine: 約束引擎
            rng: 亂數來源

        Returns:
            套用擾動後解析值的策略
        """
        params = {}
        for name, value in self.analytical_values(base).items():
            if engine.is_mutable(name):
                params[name] = engine.bounds_for(name).clamp(self._perturb(value, rng))

        actions = list(base.timed_actions) + self.seed_actions(base, engine, rng)
        return base.with_params(params).with_actions(actions)
