"""
策略基因資料模型 (Strategy Genome Data Models)

定義策略優化引擎的核心資料結構，包含策略基因組、參數邊界與候選個體。
"""

from dataclasses import dataclass, fields, replace
from typing import Dict, List, Tuple, Any, Optional, Iterable
import json

from .bounds import (
    ParameterType,
    ParameterBounds,
    DECISION_WINDOW_START,
    SIMULATION_END_DAY,
)
from .actions import StrategyAction, action_from_dict


# 可優化的策略參數（營運政策）
OPTIMIZABLE_FIELDS: List[str] = [
    "reorder_point",
    "order_quantity",
    "standard_batch_size",
    "mce_allocation_custom",
    "standard_price",
    "daily_overtime_hours",
]

# 市場條件參數（由歷史資料回歸得出，不參與優化）
MARKET_FIELDS: List[str] = [
    "custom_base_price",
    "custom_penalty_per_day",
    "custom_target_delivery_days",
    "custom_demand_mean_1",
    "custom_demand_std_dev_1",
    "custom_demand_mean_2",
    "custom_demand_std_dev_2",
    "standard_demand_intercept",
    "standard_demand_slope",
    "overtime_trigger_days",
    "daily_quit_probability",
]

MARKET_DEFAULTS: Dict[str, float] = {
    "custom_base_price": 106.56,
    "custom_penalty_per_day": 0.27,
    "custom_target_delivery_days": 5,
    "custom_demand_mean_1": 25.0,
    "custom_demand_std_dev_1": 5.0,
    "custom_demand_mean_2": 32.5,
    "custom_demand_std_dev_2": 6.5,
    "standard_demand_intercept": 500.0,
    "standard_demand_slope": -0.25,
    "overtime_trigger_days": 5,
    "daily_quit_probability": 0.10,
}

# 預設參數邊界定義
PARAMETER_BOUNDS: Dict[str, ParameterBounds] = {
    "reorder_point": ParameterBounds(50, 500, ParameterType.INTEGER),
    "order_quantity": ParameterBounds(100, 1000, ParameterType.INTEGER),
    "standard_batch_size": ParameterBounds(5, 50, ParameterType.INTEGER),
    "mce_allocation_custom": ParameterBounds(0.3, 1.0, ParameterType.FLOAT),
    "standard_price": ParameterBounds(500, 1200, ParameterType.INTEGER),
    "daily_overtime_hours": ParameterBounds(0, 4, ParameterType.INTEGER),
}


def sort_actions(actions: Iterable[StrategyAction]) -> Tuple[StrategyAction, ...]:
    """依日期排序行動（穩定排序，同日行動維持原順序）"""
    return tuple(sorted(actions, key=lambda action: action.day))


@dataclass(frozen=True)
class Strategy:
    """完整策略基因組

    單次模擬所需的全部輸入：營運政策參數、市場條件參數，
    以及依日期排序的行動序列。實例不可變，所有修改皆回傳新物件。

    Attributes:
        reorder_point: 再訂購點
        order_quantity: 每次訂購量
        standard_batch_size: 標準品生產批量
        mce_allocation_custom: MCE 產能分配給客製品的比例
        standard_price: 標準品單價
        daily_overtime_hours: 每日加班時數
        timed_actions: 依日期排序的行動序列
    """
    reorder_point: float = 200
    order_quantity: float = 500
    standard_batch_size: float = 20
    mce_allocation_custom: float = 0.5
    standard_price: float = 800
    daily_overtime_hours: float = 0

    custom_base_price: float = MARKET_DEFAULTS["custom_base_price"]
    custom_penalty_per_day: float = MARKET_DEFAULTS["custom_penalty_per_day"]
    custom_target_delivery_days: float = MARKET_DEFAULTS["custom_target_delivery_days"]
    custom_demand_mean_1: float = MARKET_DEFAULTS["custom_demand_mean_1"]
    custom_demand_std_dev_1: float = MARKET_DEFAULTS["custom_demand_std_dev_1"]
    custom_demand_mean_2: float = MARKET_DEFAULTS["custom_demand_mean_2"]
    custom_demand_std_dev_2: float = MARKET_DEFAULTS["custom_demand_std_dev_2"]
    standard_demand_intercept: float = MARKET_DEFAULTS["standard_demand_intercept"]
    standard_demand_slope: float = MARKET_DEFAULTS["standard_demand_slope"]
    overtime_trigger_days: float = MARKET_DEFAULTS["overtime_trigger_days"]
    daily_quit_probability: float = MARKET_DEFAULTS["daily_quit_probability"]

    timed_actions: Tuple[StrategyAction, ...] = ()

    def __post_init__(self):
        # 維持不變式：行動序列永遠依日期排序
        object.__setattr__(self, "timed_actions", sort_actions(self.timed_actions))

    def optimizable_params(self) -> Dict[str, float]:
        """獲取所有可優化參數"""
        return {name: getattr(self, name) for name in OPTIMIZABLE_FIELDS}

    def market_params(self) -> Dict[str, float]:
        """獲取所有市場條件參數"""
        return {name: getattr(self, name) for name in MARKET_FIELDS}

    def with_params(self, params: Optional[Dict[str, float]] = None, **kwargs: float) -> "Strategy":
        """回傳套用參數覆寫後的新策略

        Raises:
            KeyError: 若參數名稱不存在
        """
        updates = dict(params or {})
        updates.update(kwargs)
        for name in updates:
            if name not in OPTIMIZABLE_FIELDS and name not in MARKET_FIELDS:
                raise KeyError(f"Unknown strategy parameter: {name}")
        return replace(self, **updates)

    def with_actions(self, actions: Iterable[StrategyAction]) -> "Strategy":
        """回傳替換行動序列後的新策略"""
        return replace(self, timed_actions=tuple(actions))

    def unlocked_actions(self) -> List[StrategyAction]:
        return [action for action in self.timed_actions if not action.is_locked]

    def locked_actions(self) -> List[StrategyAction]:
        return [action for action in self.timed_actions if action.is_locked]

    def to_dict(self) -> Dict[str, Any]:
        """轉換為字典格式"""
        data: Dict[str, Any] = {}
        for f in fields(self):
            if f.name == "timed_actions":
                continue
            data[f.name] = getattr(self, f.name)
        data["timed_actions"] = [action.to_dict() for action in self.timed_actions]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Strategy":
        """從字典建立策略，缺少的欄位使用預設值"""
        known = {f.name for f in fields(cls)}
        kwargs = {
            key: value for key, value in data.items()
            if key in known and key != "timed_actions"
        }
        actions = tuple(action_from_dict(item) for item in data.get("timed_actions", []))
        return cls(timed_actions=actions, **kwargs)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> "Strategy":
        return cls.from_dict(json.loads(json_str))


@dataclass
class OptimizationCandidate:
    """優化候選個體

    代表種群中的一個個體。基因包含行動序列與可選的參數覆寫，
    評估後填入適應度與淨值等結果。

    Attributes:
        id: 個體識別碼
        actions: 行動序列
        strategy_params: 覆寫基準策略的參數（可選）
        fitness: 適應度分數（越大越好）
        net_worth: 淨值
        growth_rate: 評估視窗內的每日淨值成長（可選）
        error: 評估錯誤訊息（可選）
        evaluation: 評估器的完整輸出（可選）
        generation: 所屬世代
    """
    id: str
    actions: Tuple[StrategyAction, ...] = ()
    strategy_params: Optional[Dict[str, float]] = None
    fitness: float = 0.0
    net_worth: float = 0.0
    growth_rate: Optional[float] = None
    error: Optional[str] = None
    evaluation: Optional[Any] = None
    generation: int = 0

    def __post_init__(self):
        self.actions = sort_actions(self.actions)
        if self.strategy_params is not None:
            self.strategy_params = dict(self.strategy_params)

    def __lt__(self, other: "OptimizationCandidate") -> bool:
        return self.fitness < other.fitness

    def to_strategy(self, base: Strategy) -> Strategy:
        """將候選個體套用到基準策略上，得到完整策略"""
        strategy = base
        if self.strategy_params:
            strategy = strategy.with_params(self.strategy_params)
        return strategy.with_actions(self.actions)

    @classmethod
    def from_strategy(
        cls,
        candidate_id: str,
        strategy: Strategy,
        generation: int = 0,
    ) -> "OptimizationCandidate":
        """從完整策略建立候選個體（覆寫全部可優化參數）"""
        return cls(
            id=candidate_id,
            actions=strategy.timed_actions,
            strategy_params=strategy.optimizable_params(),
            generation=generation,
        )

    def reset_scores(self) -> None:
        self.fitness = 0.0
        self.net_worth = 0.0
        self.growth_rate = None
        self.error = None
        self.evaluation = None

    def copy(self) -> "OptimizationCandidate":
        """建立個體的獨立拷貝

        行動本身不可變，因此只需複製容器。
        """
        return OptimizationCandidate(
            id=self.id,
            actions=tuple(self.actions),
            strategy_params=dict(self.strategy_params) if self.strategy_params is not None else None,
            fitness=self.fitness,
            net_worth=self.net_worth,
            growth_rate=self.growth_rate,
            error=self.error,
            evaluation=self.evaluation,
            generation=self.generation,
        )

    def same_genes(self, other: "OptimizationCandidate") -> bool:
        """比較兩個個體的基因是否完全相同（不比較適應度）"""
        return (
            self.actions == other.actions
            and (self.strategy_params or {}) == (other.strategy_params or {})
        )


def validate_strategy_bounds(
    strategy: Strategy,
    bounds: Optional[Dict[str, ParameterBounds]] = None,
) -> bool:
    """驗證策略參數與行動日期是否在邊界內

    Args:
        strategy: 要驗證的策略
        bounds: 參數邊界定義，預設使用 PARAMETER_BOUNDS

    Returns:
        所有參數與行動是否都在邊界內
    """
    bounds = bounds or PARAMETER_BOUNDS

    for name, value in strategy.optimizable_params().items():
        if name in bounds and not bounds[name].validate(value):
            return False

    for action in strategy.timed_actions:
        if not DECISION_WINDOW_START <= action.day <= SIMULATION_END_DAY:
            return False

    return True
