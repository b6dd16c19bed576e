"""
代理工廠模擬器 (Surrogate Factory Simulator)

以封閉式的每日現金流模型近似工廠模擬：價格決定標準品需求、機台與人力
決定產能、再訂購點決定缺料程度，行動在其生效日之後改變對應的每日排程。
速度快且可重現，適合示範執行與測試；正式優化應連接完整模擬器。
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
import logging

import numpy as np

from ..evolution.actions import (
    AdjustAllocation,
    AdjustBatchSize,
    AdjustPrice,
    BuyMachine,
    FireWorkers,
    HireWorkers,
    MachineType,
    OrderMaterials,
    PayDebt,
    ProductLine,
    SellMachine,
    SetOrderQuantity,
    SetReorderPoint,
    StopMaterialOrders,
    StrategyAction,
    TakeLoan,
    WorkerRole,
)
from ..evolution.bounds import DECISION_WINDOW_START, SIMULATION_END_DAY
from ..evolution.fitness import (
    DailyValue,
    FitnessEvaluator,
    FitnessResult,
    Severity,
    StartingState,
    Violation,
)
from ..evolution.models import Strategy


logger = logging.getLogger(__name__)

# 客製品需求由第一期切換至第二期的日期
CUSTOM_PHASE_CHANGE_DAY = 173


def _default_machines() -> Dict[MachineType, int]:
    return {MachineType.MCE: 1, MachineType.WMA: 1, MachineType.PUC: 1}


def _default_machine_prices() -> Dict[MachineType, float]:
    return {MachineType.MCE: 20000.0, MachineType.WMA: 15000.0, MachineType.PUC: 12000.0}


@dataclass
class FactorySettings:
    """代理模型的工廠常數

    Attributes:
        initial_cash: 起始現金
        initial_debt: 起始負債
        experts: 起始專家人數
        rookies: 起始新手人數
        machines: 起始機台數
        mce_units_per_day: 每台 MCE 每日產能
        wma_units_per_day: 每台 WMA 每日產能（標準品）
        puc_units_per_day: 每台 PUC 每日產能（標準品）
        expert_units_per_day: 每位專家每日的客製品產能
        rookie_efficiency: 新手相對專家的效率
        expert_salary: 專家日薪
        rookie_salary: 新手日薪
        shift_hours: 每班工時
        overtime_premium: 加班費倍率
        material_cost: 原料單價
        standard_material_per_unit: 標準品每單位原料用量
        custom_material_per_unit: 客製品每單位原料用量
        order_fee: 每次訂購固定費用
        daily_holding_rate: 每日持有成本率
        lead_time_days: 原料前置時間
        stopped_supply_factor: 停止訂購後的供料比例
        setup_cost: 每批次整備成本
        machine_prices: 機台購價
        salvage_ratio: 出售機台的回收比例
        hiring_cost: 每人招募成本
        severance_cost: 每人資遣成本
        daily_interest_rate: 負債日利率
        demand_noise: 需求的乘法雜訊標準差（0 為確定性）
        noise_seed: 雜訊亂數種子
    """
    initial_cash: float = 100000.0
    initial_debt: float = 0.0
    experts: int = 2
    rookies: int = 2
    machines: Dict[MachineType, int] = field(default_factory=_default_machines)
    mce_units_per_day: float = 30.0
    wma_units_per_day: float = 40.0
    puc_units_per_day: float = 40.0
    expert_units_per_day: float = 3.0
    rookie_efficiency: float = 0.4
    expert_salary: float = 150.0
    rookie_salary: float = 85.0
    shift_hours: float = 8.0
    overtime_premium: float = 1.5
    material_cost: float = 50.0
    standard_material_per_unit: float = 2.0
    custom_material_per_unit: float = 1.0
    order_fee: float = 1000.0
    daily_holding_rate: float = 0.2 / 365
    lead_time_days: float = 4.0
    stopped_supply_factor: float = 0.5
    setup_cost: float = 100.0
    machine_prices: Dict[MachineType, float] = field(default_factory=_default_machine_prices)
    salvage_ratio: float = 0.5
    hiring_cost: float = 500.0
    severance_cost: float = 1000.0
    daily_interest_rate: float = 0.0005
    demand_noise: float = 0.0
    noise_seed: Optional[int] = None


def _step_schedule(
    days: np.ndarray,
    initial: float,
    changes: Iterable[Tuple[int, float]],
) -> np.ndarray:
    """由 (生效日, 新值) 建立每日排程；後生效者覆寫先生效者"""
    schedule = np.full(len(days), float(initial))
    for day, value in sorted(changes, key=lambda change: change[0]):
        schedule[days >= day] = value
    return schedule


def _count_schedule(
    days: np.ndarray,
    initial: int,
    deltas: Iterable[Tuple[int, int]],
) -> np.ndarray:
    """由 (生效日, 增減數) 建立每日數量排程"""
    changes = np.zeros(len(days))
    for day, delta in deltas:
        index = int(np.clip(day - days[0], 0, len(days) - 1))
        changes[index] += delta
    return initial + np.cumsum(changes)


class SurrogateFactoryEvaluator(FitnessEvaluator):
    """代理工廠評估器

    適應度為期末淨值（現金 - 負債）。每日淨值寫入 daily_history，
    供第二階段計算視窗成長率。現金曾為負或人力、機台數降到零以下時
    回報 ERROR 等級違規，策略視為無效。

    Attributes:
        settings: 工廠常數
        end_day: 模擬結束日
    """

    def __init__(self, settings: Optional[FactorySettings] = None, end_day: int = SIMULATION_END_DAY):
        self.settings = settings or FactorySettings()
        self.end_day = end_day

    def evaluate(
        self,
        strategy: Strategy,
        starting_state: Optional[StartingState] = None,
    ) -> FitnessResult:
        s = self.settings
        state = starting_state.state if starting_state is not None else {}
        first_day = starting_state.day if starting_state is not None else DECISION_WINDOW_START
        days = np.arange(first_day, self.end_day + 1)
        actions = [a for a in strategy.timed_actions if first_day <= a.day <= self.end_day]
        violations: List[Violation] = []

        # 政策排程
        std_price = _step_schedule(days, strategy.standard_price, [
            (a.day, a.new_price) for a in actions
            if isinstance(a, AdjustPrice) and a.product_line is ProductLine.STANDARD
        ])
        custom_price = _step_schedule(days, strategy.custom_base_price, [
            (a.day, a.new_price) for a in actions
            if isinstance(a, AdjustPrice) and a.product_line is ProductLine.CUSTOM
        ])
        batch = _step_schedule(days, strategy.standard_batch_size, [
            (a.day, a.new_size) for a in actions if isinstance(a, AdjustBatchSize)
        ])
        allocation = _step_schedule(days, strategy.mce_allocation_custom, [
            (a.day, a.new_allocation) for a in actions if isinstance(a, AdjustAllocation)
        ])
        reorder = _step_schedule(days, strategy.reorder_point, [
            (a.day, a.new_reorder_point) for a in actions if isinstance(a, SetReorderPoint)
        ])
        order_quantity = _step_schedule(days, strategy.order_quantity, [
            (a.day, a.new_order_quantity) for a in actions if isinstance(a, SetOrderQuantity)
        ])
        supply = _step_schedule(days, 1.0, [
            (a.day, s.stopped_supply_factor if isinstance(a, StopMaterialOrders) else 1.0)
            for a in actions if isinstance(a, (StopMaterialOrders, OrderMaterials))
        ])

        # 人力與機台
        workforce: Dict[WorkerRole, np.ndarray] = {}
        for role, initial in ((WorkerRole.EXPERT, state.get("experts", s.experts)),
                              (WorkerRole.ROOKIE, state.get("rookies", s.rookies))):
            counts = _count_schedule(days, initial, [
                (a.day, a.count if isinstance(a, HireWorkers) else -a.count)
                for a in actions
                if isinstance(a, (HireWorkers, FireWorkers)) and a.role is role
            ])
            if counts.min() < 0:
                violations.append(Violation(
                    Severity.ERROR, "workforce_negative", f"Fired more {role.value} workers than employed",
                ))
            workforce[role] = np.clip(counts, 0, None)

        machines: Dict[MachineType, np.ndarray] = {}
        initial_machines = state.get("machines", {})
        for machine_type in MachineType:
            initial = initial_machines.get(machine_type.value, s.machines.get(machine_type, 0))
            counts = _count_schedule(days, initial, [
                (a.day, a.count if isinstance(a, BuyMachine) else -a.count)
                for a in actions
                if isinstance(a, (BuyMachine, SellMachine)) and a.machine_type is machine_type
            ])
            if counts.min() < 0:
                violations.append(Violation(
                    Severity.ERROR, "machines_negative", f"Sold more {machine_type.value} machines than owned",
                ))
            machines[machine_type] = np.clip(counts, 0, None)
        if machines[MachineType.MCE].min() == 0:
            violations.append(Violation(Severity.WARNING, "no_mce", "Production stops while no MCE is owned"))

        # 加班與離職：連續加班超過門檻後，每日依離職機率流失人力
        overtime = float(strategy.daily_overtime_hours)
        overtime_factor = 1.0 + overtime / s.shift_hours
        overworked = (np.arange(len(days)) >= strategy.overtime_trigger_days) & (overtime > 0)
        retention = np.cumprod(1.0 - strategy.daily_quit_probability * overworked)
        experts = workforce[WorkerRole.EXPERT] * retention
        rookies = workforce[WorkerRole.ROOKIE] * retention

        # 產能
        mce_capacity = machines[MachineType.MCE] * s.mce_units_per_day * overtime_factor
        labor_capacity = (experts + s.rookie_efficiency * rookies) * s.expert_units_per_day * overtime_factor
        custom_capacity = np.minimum(mce_capacity * allocation, labor_capacity)
        standard_capacity = np.minimum.reduce([
            mce_capacity * (1.0 - allocation),
            machines[MachineType.WMA] * s.wma_units_per_day * overtime_factor,
            machines[MachineType.PUC] * s.puc_units_per_day * overtime_factor,
        ])

        # 需求
        noise = np.ones(len(days))
        if s.demand_noise > 0:
            rng = np.random.default_rng(s.noise_seed)
            noise = np.clip(rng.normal(1.0, s.demand_noise, len(days)), 0.0, None)
        standard_demand = np.clip(
            strategy.standard_demand_intercept + strategy.standard_demand_slope * std_price, 0.0, None
        ) * noise
        custom_demand = np.where(
            days < CUSTOM_PHASE_CHANGE_DAY,
            strategy.custom_demand_mean_1,
            strategy.custom_demand_mean_2,
        ) * noise

        # 缺料：再訂購點低於前置時間用量時，產出依比例下降
        standard_units = np.minimum(standard_demand, standard_capacity)
        custom_units = np.minimum(custom_demand, custom_capacity)
        material_use = (
            standard_units * s.standard_material_per_unit
            + custom_units * s.custom_material_per_unit
        )
        lead_time_use = material_use * s.lead_time_days
        stock_factor = np.ones(len(days))
        np.divide(reorder, lead_time_use, out=stock_factor, where=lead_time_use > 0)
        stock_factor = np.clip(stock_factor, 0.0, 1.0) * supply
        standard_units = standard_units * stock_factor
        custom_units = custom_units * stock_factor
        material_use = material_use * stock_factor

        # 每日損益
        revenue = standard_units * std_price + custom_units * custom_price
        late_penalty = (custom_demand - custom_units) * custom_price * strategy.custom_penalty_per_day
        material_cost = material_use * s.material_cost
        ordering_cost = material_use / order_quantity * s.order_fee
        holding_cost = s.daily_holding_rate * s.material_cost * (order_quantity / 2 + reorder)
        setup_cost = standard_units / batch * s.setup_cost
        salaries = experts * s.expert_salary + rookies * s.rookie_salary
        overtime_pay = overtime * (
            experts * s.expert_salary + rookies * s.rookie_salary
        ) / s.shift_hours * s.overtime_premium

        one_off, debt = self._cash_events(days, actions, state.get("debt", s.initial_debt))
        interest = debt * s.daily_interest_rate

        profit = (
            revenue - late_penalty - material_cost - ordering_cost - holding_cost
            - setup_cost - salaries - overtime_pay - interest
        )
        cash = state.get("cash", s.initial_cash) + np.cumsum(profit + one_off)
        net_worth = cash - debt

        if cash.min() < 0:
            first_negative = int(days[np.argmax(cash < 0)])
            violations.append(Violation(
                Severity.ERROR, "negative_cash", f"Cash balance negative on day {first_negative}",
            ))

        final_net_worth = float(net_worth[-1])
        logger.debug(f"Surrogate evaluation: net worth {final_net_worth:.2f}, {len(violations)} violations")
        return FitnessResult(
            fitness_score=final_net_worth,
            net_worth=final_net_worth,
            valid=not any(v.severity is Severity.ERROR for v in violations),
            violations=violations,
            daily_history=[DailyValue(int(day), float(value)) for day, value in zip(days, net_worth)],
        )

    def _cash_events(
        self,
        days: np.ndarray,
        actions: List[StrategyAction],
        initial_debt: float,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """一次性現金流與每日負債

        還款金額不超過當時的負債餘額。

        Returns:
            (每日一次性現金流, 每日負債餘額)
        """
        s = self.settings
        one_off = np.zeros(len(days))
        debt_changes = np.zeros(len(days))
        debt = float(initial_debt)

        for action in actions:
            index = int(np.clip(action.day - days[0], 0, len(days) - 1))
            if isinstance(action, TakeLoan):
                one_off[index] += action.amount
                debt_changes[index] += action.amount
                debt += action.amount
            elif isinstance(action, PayDebt):
                paid = min(action.amount, debt)
                one_off[index] -= paid
                debt_changes[index] -= paid
                debt -= paid
            elif isinstance(action, HireWorkers):
                one_off[index] -= action.count * s.hiring_cost
            elif isinstance(action, FireWorkers):
                one_off[index] -= action.count * s.severance_cost
            elif isinstance(action, BuyMachine):
                one_off[index] -= action.count * s.machine_prices[action.machine_type]
            elif isinstance(action, SellMachine):
                one_off[index] += action.count * s.machine_prices[action.machine_type] * s.salvage_ratio
            elif isinstance(action, OrderMaterials):
                one_off[index] -= s.order_fee

        return one_off, initial_debt + np.cumsum(debt_changes)
