"""
約束引擎 (Constraint Engine)

根據基準策略與約束設定，收窄每個策略參數的有效範圍，
並將候選策略投影回可行區域。所有生成器與突變算子都必須
從收窄後的範圍取值，而非全域範圍。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple, Any
import logging

from .bounds import ParameterBounds, DECISION_WINDOW_START, SIMULATION_END_DAY
from .actions import (
    StrategyAction,
    MachineType,
    HireWorkers,
    FireWorkers,
    BuyMachine,
    SellMachine,
    net_workforce_change,
    net_machine_change,
)
from .models import Strategy, OPTIMIZABLE_FIELDS, PARAMETER_BOUNDS, sort_actions


logger = logging.getLogger(__name__)


class LockState(Enum):
    """參數方向鎖定狀態

    Attributes:
        UNLOCKED: 不限制
        MINIMUM: 只能由基準值往上調整
        MAXIMUM: 只能由基準值往下調整
        LOCKED: 完全鎖定於基準值
    """
    UNLOCKED = "unlocked"
    MINIMUM = "minimum"
    MAXIMUM = "maximum"
    LOCKED = "locked"


@dataclass
class Constraints:
    """優化約束設定

    Attributes:
        fixed_policies: 不可變更的參數名稱
        fixed_actions: 不可變更的行動識別字串（見 StrategyAction.key）
        policy_ranges: 各參數自訂範圍 (min, max)
        workforce_range: 人力淨變化範圍 (min, max)
        machine_ranges: 各機台淨變化範圍 (min, max)
        policy_lock_states: 各參數方向鎖定狀態
        formula_driven: 由模擬動態計算的參數，編碼為 0 且不突變
    """
    fixed_policies: Set[str] = field(default_factory=set)
    fixed_actions: Set[str] = field(default_factory=set)
    policy_ranges: Dict[str, Tuple[float, float]] = field(default_factory=dict)
    workforce_range: Optional[Tuple[int, int]] = None
    machine_ranges: Dict[MachineType, Tuple[int, int]] = field(default_factory=dict)
    policy_lock_states: Dict[str, LockState] = field(default_factory=dict)
    formula_driven: Set[str] = field(default_factory=set)

    def validate(self) -> None:
        """驗證約束設定

        Raises:
            KeyError: 若參照了不存在的參數
            ValueError: 若範圍下限大於上限
        """
        named = (
            set(self.fixed_policies)
            | set(self.policy_ranges)
            | set(self.policy_lock_states)
            | set(self.formula_driven)
        )
        unknown = sorted(name for name in named if name not in OPTIMIZABLE_FIELDS)
        if unknown:
            raise KeyError(f"Unknown policy fields in constraints: {', '.join(unknown)}")

        ranges: List[Tuple[str, Tuple[float, float]]] = list(self.policy_ranges.items())
        if self.workforce_range is not None:
            ranges.append(("workforce", self.workforce_range))
        ranges.extend((m.value, r) for m, r in self.machine_ranges.items())
        for name, (low, high) in ranges:
            if low > high:
                raise ValueError(f"Range for {name} has min {low} greater than max {high}")

    def to_dict(self) -> Dict[str, Any]:
        """轉換為字典格式"""
        return {
            "fixed_policies": sorted(self.fixed_policies),
            "fixed_actions": sorted(self.fixed_actions),
            "policy_ranges": {k: list(v) for k, v in self.policy_ranges.items()},
            "workforce_range": list(self.workforce_range) if self.workforce_range else None,
            "machine_ranges": {m.value: list(r) for m, r in self.machine_ranges.items()},
            "policy_lock_states": {k: v.value for k, v in self.policy_lock_states.items()},
            "formula_driven": sorted(self.formula_driven),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Constraints":
        """從字典建立約束設定"""
        workforce = data.get("workforce_range")
        return cls(
            fixed_policies=set(data.get("fixed_policies", [])),
            fixed_actions=set(data.get("fixed_actions", [])),
            policy_ranges={k: (v[0], v[1]) for k, v in data.get("policy_ranges", {}).items()},
            workforce_range=(workforce[0], workforce[1]) if workforce else None,
            machine_ranges={
                MachineType(k): (v[0], v[1])
                for k, v in data.get("machine_ranges", {}).items()
            },
            policy_lock_states={
                k: LockState(v) for k, v in data.get("policy_lock_states", {}).items()
            },
            formula_driven=set(data.get("formula_driven", [])),
        )


def narrow_range(
    field_name: str,
    global_min: float,
    global_max: float,
    baseline: float,
    lock_state: LockState,
) -> Tuple[float, float]:
    """依方向鎖定收窄參數範圍

    鎖定狀態相對於基準值而非全域範圍。若基準值落在全域範圍之外，
    鎖定側會延伸至基準值，使「不低於 / 不高於基準」永遠成立。

    Args:
        field_name: 參數名稱
        global_min: 全域下限
        global_max: 全域上限
        baseline: 基準值
        lock_state: 鎖定狀態

    Returns:
        收窄後的 (min, max)
    """
    if lock_state == LockState.MINIMUM:
        low = max(global_min, baseline)
        return low, max(global_max, low)
    if lock_state == LockState.MAXIMUM:
        high = min(global_max, baseline)
        return min(global_min, high), high
    if lock_state == LockState.LOCKED:
        return baseline, baseline
    return global_min, global_max


class ConstraintEngine:
    """約束引擎

    以基準策略為參照，提供各參數的收窄邊界、行動是否允許的判斷，
    以及將任意候選策略投影回可行區域的 apply_fixed_constraints。

    Attributes:
        baseline: 基準策略
        constraints: 約束設定
        window_start: 決策視窗起始日
        window_end: 決策視窗結束日
    """

    def __init__(
        self,
        baseline: Strategy,
        constraints: Optional[Constraints] = None,
        bounds: Optional[Dict[str, ParameterBounds]] = None,
        window_start: int = DECISION_WINDOW_START,
        window_end: int = SIMULATION_END_DAY,
    ):
        """初始化約束引擎

        Args:
            baseline: 基準策略
            constraints: 約束設定，預設為無約束
            bounds: 全域參數邊界，預設使用 PARAMETER_BOUNDS
            window_start: 決策視窗起始日
            window_end: 決策視窗結束日

        Raises:
            KeyError: 若約束參照了不存在的參數
            ValueError: 若約束範圍或決策視窗無效
        """
        if window_start > window_end:
            raise ValueError(
                f"Decision window start {window_start} is after end {window_end}"
            )
        self.baseline = baseline
        self.constraints = constraints or Constraints()
        self.constraints.validate()
        self.window_start = window_start
        self.window_end = window_end
        self._global_bounds = dict(bounds or PARAMETER_BOUNDS)

        self._bounds: Dict[str, ParameterBounds] = {
            name: self._compute_bounds(name) for name in OPTIMIZABLE_FIELDS
        }
        self._protected = self._compute_protected_actions()

    # ------------------------------------------------------------------
    # 參數邊界
    # ------------------------------------------------------------------

    def lock_state(self, field_name: str) -> LockState:
        return self.constraints.policy_lock_states.get(field_name, LockState.UNLOCKED)

    def _compute_bounds(self, field_name: str) -> ParameterBounds:
        global_bounds = self._global_bounds[field_name]
        if field_name in self.constraints.formula_driven:
            return global_bounds.with_range(0, 0)

        baseline_value = getattr(self.baseline, field_name)
        if field_name in self.constraints.fixed_policies:
            return global_bounds.with_range(baseline_value, baseline_value)

        low, high = global_bounds.min_value, global_bounds.max_value
        if field_name in self.constraints.policy_ranges:
            low, high = self.constraints.policy_ranges[field_name]

        low, high = narrow_range(field_name, low, high, baseline_value, self.lock_state(field_name))
        return global_bounds.with_range(low, high)

    def bounds_for(self, field_name: str) -> ParameterBounds:
        """獲取參數的有效邊界（已套用自訂範圍與方向鎖定）"""
        return self._bounds[field_name]

    def is_mutable(self, field_name: str) -> bool:
        """參數是否可被搜尋改變"""
        if field_name in self.constraints.formula_driven:
            return False
        if field_name in self.constraints.fixed_policies:
            return False
        return self.lock_state(field_name) != LockState.LOCKED

    def mutable_fields(self) -> List[str]:
        return [name for name in OPTIMIZABLE_FIELDS if self.is_mutable(name)]

    def pinned_value(self, field_name: str) -> float:
        """不可變參數的固定值：公式驅動為 0，其餘為基準值"""
        if field_name in self.constraints.formula_driven:
            return 0
        return getattr(self.baseline, field_name)

    # ------------------------------------------------------------------
    # 行動
    # ------------------------------------------------------------------

    def allows_action(self, action: StrategyAction) -> bool:
        """行動是否允許出現在候選策略中

        改寫固定、鎖定或公式驅動參數的政策行動不被允許。
        """
        policy_field = action.policy_field()
        if policy_field is None:
            return True
        return self.is_mutable(policy_field)

    def action_bounds(self, action: StrategyAction) -> Optional[ParameterBounds]:
        """行動數值內容的邊界

        政策行動使用對應參數的收窄邊界，與行動自身的預設範圍取交集。
        """
        default = action.payload_bounds()
        policy_field = action.policy_field()
        if default is None or policy_field is None:
            return default
        narrowed = self.bounds_for(policy_field)
        low = max(default.min_value, narrowed.min_value)
        high = min(default.max_value, narrowed.max_value)
        if low > high:
            return narrowed
        return default.with_range(low, high)

    def clamp_day(self, day: float) -> int:
        return int(max(self.window_start, min(self.window_end, round(day))))

    def clamp_action(self, action: StrategyAction) -> StrategyAction:
        """將行動日期與內容限制在邊界內"""
        clamped = action
        if action.day != self.clamp_day(action.day):
            clamped = clamped.with_day(self.clamp_day(action.day))
        bounds = self.action_bounds(action)
        if bounds is not None:
            value = bounds.clamp(action.payload())
            if value != action.payload():
                clamped = clamped.with_payload(value)
        return clamped

    def _compute_protected_actions(self) -> Tuple[StrategyAction, ...]:
        protected = []
        for action in self.baseline.timed_actions:
            if action.is_locked:
                protected.append(action)
            elif action.key() in self.constraints.fixed_actions:
                protected.append(action.locked())
        return tuple(protected)

    @property
    def protected_actions(self) -> Tuple[StrategyAction, ...]:
        """受保護的基準行動（已鎖定或列於 fixed_actions）"""
        return self._protected

    # ------------------------------------------------------------------
    # 投影
    # ------------------------------------------------------------------

    def clamp_to_bounds(self, strategy: Strategy) -> Strategy:
        """將可變參數與未鎖定行動限制在邊界內（冪等）"""
        params = {}
        for name in OPTIMIZABLE_FIELDS:
            value = getattr(strategy, name)
            if self.is_mutable(name):
                params[name] = self.bounds_for(name).clamp(value)
            else:
                params[name] = self.pinned_value(name)

        actions = [
            action if action.is_locked else self.clamp_action(action)
            for action in strategy.timed_actions
        ]
        return strategy.with_params(params).with_actions(actions)

    def apply_fixed_constraints(self, strategy: Strategy) -> Strategy:
        """將候選策略投影回可行區域（冪等）

        固定參數還原為基準值、公式驅動參數設為 0、可變參數限制在收窄邊界內；
        不允許的行動移除、未鎖定行動內容限制在邊界內、鎖定行動保持原樣且受保護的基準行動一定存在；
        最後依人力與機台淨變化範圍，自最晚的行動開始移除超出範圍者。

        Args:
            strategy: 候選策略

        Returns:
            滿足所有約束的新策略
        """
        market = self.baseline.market_params()
        clamped = self.clamp_to_bounds(strategy.with_params(market))

        locked = clamped.locked_actions()
        for action in self._protected:
            if action not in locked:
                locked.append(action)

        # 與固定行動同識別字串的未鎖定行動由受保護的版本取代
        unlocked = [
            action for action in clamped.timed_actions
            if not action.is_locked
            and self.allows_action(action)
            and action.key() not in self.constraints.fixed_actions
        ]
        unlocked = self._enforce_workforce_range(unlocked)
        unlocked = self._enforce_machine_ranges(unlocked)

        return clamped.with_actions(sort_actions(locked + unlocked))

    def _enforce_workforce_range(self, actions: List[StrategyAction]) -> List[StrategyAction]:
        if self.constraints.workforce_range is None:
            return actions
        low, high = self.constraints.workforce_range
        return _drop_latest_until_within(
            actions,
            low,
            high,
            net_workforce_change,
            increases=lambda a: isinstance(a, HireWorkers),
            decreases=lambda a: isinstance(a, FireWorkers),
        )

    def _enforce_machine_ranges(self, actions: List[StrategyAction]) -> List[StrategyAction]:
        for machine_type, (low, high) in self.constraints.machine_ranges.items():
            actions = _drop_latest_until_within(
                actions,
                low,
                high,
                lambda acts, m=machine_type: net_machine_change(acts, m),
                increases=lambda a, m=machine_type: isinstance(a, BuyMachine) and a.machine_type == m,
                decreases=lambda a, m=machine_type: isinstance(a, SellMachine) and a.machine_type == m,
            )
        return actions


def _drop_latest_until_within(actions, low, high, net, increases, decreases) -> List[StrategyAction]:
    """自最晚的行動開始移除，直到淨變化落在 [low, high]"""
    kept = list(sort_actions(actions))
    while True:
        total = net(kept)
        if total > high:
            offending = increases
        elif total < low:
            offending = decreases
        else:
            return kept
        index = next(
            (i for i in range(len(kept) - 1, -1, -1) if offending(kept[i])),
            None,
        )
        if index is None:
            logger.debug(f"Net change {total} outside [{low}, {high}] and nothing left to drop")
            return kept
        del kept[index]
