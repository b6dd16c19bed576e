"""
營運政策參數 (Operating Policy Parameters)

貝氏優化搜尋的 15 維政策空間，以及將政策套用到基準策略後
交給適應度評估器的轉接器。
"""

from dataclasses import dataclass, asdict, fields, replace
from typing import Any, Dict, List, Optional
import math

from ..evolution.actions import (
    ACTION_PAYLOAD_BOUNDS,
    ActionType,
    AdjustBatchSize,
    HireWorkers,
    OrderMaterials,
    PayDebt,
    StrategyAction,
    TakeLoan,
    WorkerRole,
)
from ..evolution.bounds import (
    ParameterBounds,
    ParameterType,
    DECISION_WINDOW_START,
    SIMULATION_END_DAY,
)
from ..evolution.fitness import FitnessEvaluator, FitnessResult, SafeEvaluator, StartingState
from ..evolution.models import Strategy, PARAMETER_BOUNDS


# 政策參數搜尋範圍；直接對應策略欄位者與 PARAMETER_BOUNDS 對齊
POLICY_BOUNDS: Dict[str, ParameterBounds] = {
    # 庫存
    "reorder_point": ParameterBounds(200, 500, ParameterType.INTEGER),
    "order_quantity": ParameterBounds(300, 800, ParameterType.INTEGER),
    "safety_stock": ParameterBounds(100, 300, ParameterType.INTEGER),
    # 生產
    "mce_custom_allocation": ParameterBounds(0.4, 0.7, ParameterType.FLOAT),
    "standard_batch_size": ParameterBounds(10, 50, ParameterType.INTEGER),
    "batch_interval": ParameterBounds(6, 12, ParameterType.INTEGER),
    # 人力
    "target_experts": ParameterBounds(1, 50, ParameterType.INTEGER),
    "hire_threshold": ParameterBounds(0.3, 1.0, ParameterType.FLOAT),
    "max_overtime_hours": ParameterBounds(0, 4, ParameterType.FLOAT),
    "overtime_threshold": ParameterBounds(0.5, 1.0, ParameterType.FLOAT),
    # 財務
    "cash_reserve_target": ParameterBounds(15000, 35000, ParameterType.INTEGER),
    "loan_amount": ParameterBounds(20000, 50000, ParameterType.INTEGER),
    "repay_threshold": ParameterBounds(70000, 120000, ParameterType.INTEGER),
    # 定價
    "standard_price_multiplier": ParameterBounds(0.9, 1.1, ParameterType.FLOAT),
    "custom_base_price": ParameterBounds(105, 115, ParameterType.FLOAT),
}


@dataclass(frozen=True)
class PolicyParameters:
    """營運政策參數

    Attributes:
        reorder_point: 原料再訂購點
        order_quantity: 原料訂購量
        safety_stock: 安全庫存
        mce_custom_allocation: MCE 產能分配給客製品的比例
        standard_batch_size: 標準品批量
        batch_interval: 批次間隔（天）
        target_experts: 目標專家人數
        hire_threshold: 專家比例低於此值時招募
        max_overtime_hours: 最大加班時數
        overtime_threshold: 使用率超過此值時加班
        cash_reserve_target: 現金保留目標
        loan_amount: 單次貸款金額
        repay_threshold: 現金超過此值時還款
        standard_price_multiplier: 標準品價格乘數
        custom_base_price: 客製品基準價
    """
    reorder_point: float = 400
    order_quantity: float = 500
    safety_stock: float = 200
    mce_custom_allocation: float = 0.55
    standard_batch_size: float = 20
    batch_interval: float = 8
    target_experts: float = 12
    hire_threshold: float = 0.8
    max_overtime_hours: float = 2
    overtime_threshold: float = 0.85
    cash_reserve_target: float = 25000
    loan_amount: float = 30000
    repay_threshold: float = 90000
    standard_price_multiplier: float = 1.0
    custom_base_price: float = 110

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyParameters":
        """從字典建立政策，忽略未知欄位，缺少的欄位使用預設值"""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def clamped(self) -> "PolicyParameters":
        """回傳所有欄位夾回 POLICY_BOUNDS 的新政策"""
        return replace(self, **{
            name: bounds.clamp(getattr(self, name)) for name, bounds in POLICY_BOUNDS.items()
        })


@dataclass(frozen=True)
class DemandContext:
    """需求情境

    記憶庫以此判斷歷史評估是否來自相同的市場條件。
    """
    custom_demand_mean_1: float
    custom_demand_std_dev_1: float
    custom_demand_mean_2: float
    custom_demand_std_dev_2: float
    standard_demand_intercept: float
    standard_demand_slope: float

    @classmethod
    def from_strategy(cls, strategy: Strategy) -> "DemandContext":
        return cls(**{f.name: getattr(strategy, f.name) for f in fields(cls)})

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    def similarity(self, other: "DemandContext") -> float:
        """需求情境相似度

        各欄位相對差 |a - b| / 平均絕對值 的平均，相似度 = max(0, 1 - 平均相對差)。
        完全相同時為 1.0。
        """
        differences = []
        for f in fields(self):
            a = getattr(self, f.name)
            b = getattr(other, f.name)
            scale = (abs(a) + abs(b)) / 2
            differences.append(abs(a - b) / scale if scale > 0 else 0.0)
        return max(0.0, 1.0 - sum(differences) / len(differences))


@dataclass(frozen=True)
class PlanningAssumptions:
    """政策展開時的粗略財務假設

    展開只需要大致的現金與負債走勢來決定借款、還款與批量，
    實際損益仍由適應度評估器計算。起始狀態提供 cash / debt 時優先使用。

    Attributes:
        initial_cash: 起始現金
        initial_debt: 起始負債
        daily_cash_flow: 每日營運淨現金流估計
        material_cost: 原料單價
        order_fee: 每次訂購固定費用
        max_debt: 負債達此值後不再借款
        min_repayment: 低於此金額不還款
    """
    initial_cash: float = 100000.0
    initial_debt: float = 0.0
    daily_cash_flow: float = 6000.0
    material_cost: float = 50.0
    order_fee: float = 1000.0
    max_debt: float = 200000.0
    min_repayment: float = 5000.0


DEFAULT_ASSUMPTIONS = PlanningAssumptions()

# 負債狀態門檻與批量乘數：負債低時放大批量，負債高時縮小
DEBT_LOW = 50000.0
DEBT_HIGH = 150000.0
DEBT_BATCH_MULTIPLIERS = {"low": 1.1, "medium": 1.0, "high": 0.8}

MAX_HIRE_PER_ACTION = 5


def debt_state(debt: float) -> str:
    if debt < DEBT_LOW:
        return "low"
    if debt >= DEBT_HIGH:
        return "high"
    return "medium"


def plan_policy_actions(
    policy: PolicyParameters,
    window_start: int = DECISION_WINDOW_START,
    cash: Optional[float] = None,
    debt: Optional[float] = None,
    current_experts: int = 2,
    assumptions: PlanningAssumptions = DEFAULT_ASSUMPTIONS,
) -> List[StrategyAction]:
    """以粗略的現金與負債推估，將政策展開為整個決策視窗的行動

    - 視窗首日訂購 safety_stock 單位作為安全庫存
    - 目標專家人數 × 招募門檻高於目前人數時，首日招募（每次最多 5 人）
    - 每 batch_interval 天依負債狀態調整一次標準品批量
    - 現金低於保留目標且負債未達上限時借入 loan_amount
    - 現金高於還款門檻且有負債時，將超出保留目標的部分用於還款
      （單次不超過還款行動上限，也不低於 min_repayment）

    Args:
        policy: 政策參數
        window_start: 決策視窗首日
        cash: 起始現金，None 時使用假設值
        debt: 起始負債，None 時使用假設值
        current_experts: 目前專家人數
        assumptions: 財務假設

    Returns:
        依日期排序的行動列表
    """
    cash = assumptions.initial_cash if cash is None else float(cash)
    debt = assumptions.initial_debt if debt is None else float(debt)
    actions: List[StrategyAction] = []

    buffer = round(policy.safety_stock)
    if buffer > 0:
        actions.append(OrderMaterials(window_start, buffer))
        cash -= buffer * assumptions.material_cost + assumptions.order_fee

    needed = math.ceil(policy.target_experts * policy.hire_threshold) - current_experts
    if needed > 0:
        actions.append(HireWorkers(window_start, WorkerRole.EXPERT, min(needed, MAX_HIRE_PER_ACTION)))

    interval = max(1, round(policy.batch_interval))
    batch_bounds = PARAMETER_BOUNDS["standard_batch_size"]
    max_repayment = ACTION_PAYLOAD_BOUNDS[ActionType.PAY_DEBT].max_value
    for day in range(window_start, SIMULATION_END_DAY + 1):
        if (day - window_start) % interval == 0:
            size = batch_bounds.clamp(policy.standard_batch_size * DEBT_BATCH_MULTIPLIERS[debt_state(debt)])
            actions.append(AdjustBatchSize(day, int(size)))

        if cash < policy.cash_reserve_target and debt < assumptions.max_debt:
            loan = round(policy.loan_amount)
            actions.append(TakeLoan(day, loan))
            cash += loan
            debt += loan
        elif cash > policy.repay_threshold and debt > 0:
            repayment = math.floor(min(cash - policy.cash_reserve_target, debt, max_repayment))
            if repayment >= assumptions.min_repayment:
                actions.append(PayDebt(day, repayment))
                cash -= repayment
                debt -= repayment

        cash += assumptions.daily_cash_flow

    return actions


def policy_to_strategy(
    policy: PolicyParameters,
    base: Strategy,
    current_experts: int = 2,
    starting_state: Optional[StartingState] = None,
    assumptions: PlanningAssumptions = DEFAULT_ASSUMPTIONS,
) -> Strategy:
    """將政策套用到基準策略

    對應方式：
    - 再訂購點、訂購量、批量、MCE 分配直接對應（夾回策略邊界）
    - 標準品價格 = 基準價格 × 價格乘數
    - 專家人數低於目標 × 加班門檻時，每日加班時數 = 最大加班時數，否則為 0
    - 客製品基準價覆寫市場參數
    - 安全庫存、批次間隔、招募與財務欄位由 plan_policy_actions 展開為行動，
      附加在基準策略的行動之後

    Args:
        policy: 政策參數
        base: 基準策略
        current_experts: 目前專家人數
        starting_state: 起始狀態（可選），決定決策視窗首日與起始現金、負債
        assumptions: 展開行動時的財務假設

    Returns:
        新策略
    """
    overtime = 0.0
    if current_experts < policy.target_experts * policy.overtime_threshold:
        overtime = policy.max_overtime_hours

    params = {
        "reorder_point": policy.reorder_point,
        "order_quantity": policy.order_quantity,
        "standard_batch_size": policy.standard_batch_size,
        "mce_allocation_custom": policy.mce_custom_allocation,
        "standard_price": base.standard_price * policy.standard_price_multiplier,
        "daily_overtime_hours": overtime,
    }
    params = {name: PARAMETER_BOUNDS[name].clamp(value) for name, value in params.items()}
    params["custom_base_price"] = policy.custom_base_price
    strategy = base.with_params(params)

    window_start = DECISION_WINDOW_START
    state: Dict[str, Any] = {}
    if starting_state is not None:
        window_start = max(DECISION_WINDOW_START, starting_state.day + 1)
        state = starting_state.state
    planned = plan_policy_actions(
        policy,
        window_start,
        cash=state.get("cash"),
        debt=state.get("debt"),
        current_experts=current_experts,
        assumptions=assumptions,
    )
    return strategy.with_actions(strategy.timed_actions + tuple(planned))


class StrategyPolicyEvaluator:
    """政策評估器

    將政策轉為策略後交給 FitnessEvaluator 評估；評估器的例外與非數值分數
    由 SafeEvaluator 轉為失敗結果。

    Attributes:
        evaluator: 策略適應度評估器
        base_strategy: 基準策略
        starting_state: 起始狀態（可選）
        current_experts: 目前專家人數
        assumptions: 展開行動時的財務假設
    """

    def __init__(
        self,
        evaluator: FitnessEvaluator,
        base_strategy: Optional[Strategy] = None,
        starting_state: Optional[StartingState] = None,
        current_experts: int = 2,
        assumptions: PlanningAssumptions = DEFAULT_ASSUMPTIONS,
    ):
        self.evaluator = evaluator
        self._safe = SafeEvaluator(evaluator)
        self.base_strategy = base_strategy or Strategy()
        self.starting_state = starting_state
        self.current_experts = current_experts
        self.assumptions = assumptions

    def to_strategy(self, policy: PolicyParameters) -> Strategy:
        return policy_to_strategy(
            policy,
            self.base_strategy,
            self.current_experts,
            self.starting_state,
            self.assumptions,
        )

    def evaluate_policy(self, policy: PolicyParameters) -> FitnessResult:
        return self._safe.evaluate(self.to_strategy(policy), self.starting_state)
