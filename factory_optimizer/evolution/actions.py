"""
策略行動 (Strategy Actions)

定義每日決策行動的標記聯集 (tagged union)。每種行動是一個不可變的
dataclass，突變算子只會以新物件取代，不會原地修改。
"""

import random
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Iterable, Mapping, Optional, Type

from .bounds import ParameterBounds, ParameterType


class ActionType(Enum):
    """行動類型"""
    TAKE_LOAN = "TAKE_LOAN"
    PAY_DEBT = "PAY_DEBT"
    ORDER_MATERIALS = "ORDER_MATERIALS"
    STOP_MATERIAL_ORDERS = "STOP_MATERIAL_ORDERS"
    HIRE = "HIRE"
    FIRE = "FIRE"
    BUY_MACHINE = "BUY_MACHINE"
    SELL_MACHINE = "SELL_MACHINE"
    ADJUST_PRICE = "ADJUST_PRICE"
    ADJUST_BATCH_SIZE = "ADJUST_BATCH_SIZE"
    ADJUST_MCE_ALLOCATION = "ADJUST_MCE_ALLOCATION"
    SET_REORDER_POINT = "SET_REORDER_POINT"
    SET_ORDER_QUANTITY = "SET_ORDER_QUANTITY"


class WorkerRole(Enum):
    ROOKIE = "rookie"
    EXPERT = "expert"


class MachineType(Enum):
    MCE = "MCE"
    WMA = "WMA"
    PUC = "PUC"


class ProductLine(Enum):
    STANDARD = "standard"
    CUSTOM = "custom"


# 各行動內容的預設範圍
ACTION_PAYLOAD_BOUNDS: Dict[ActionType, Optional[ParameterBounds]] = {
    ActionType.TAKE_LOAN: ParameterBounds(10000, 200000, ParameterType.INTEGER),
    ActionType.PAY_DEBT: ParameterBounds(5000, 200000, ParameterType.INTEGER),
    ActionType.ORDER_MATERIALS: ParameterBounds(100, 1000, ParameterType.INTEGER),
    ActionType.STOP_MATERIAL_ORDERS: None,
    ActionType.HIRE: ParameterBounds(1, 5, ParameterType.INTEGER),
    ActionType.FIRE: ParameterBounds(1, 3, ParameterType.INTEGER),
    ActionType.BUY_MACHINE: ParameterBounds(1, 2, ParameterType.INTEGER),
    ActionType.SELL_MACHINE: ParameterBounds(1, 2, ParameterType.INTEGER),
    ActionType.ADJUST_PRICE: ParameterBounds(400, 1200, ParameterType.INTEGER),
    ActionType.ADJUST_BATCH_SIZE: ParameterBounds(5, 50, ParameterType.INTEGER),
    ActionType.ADJUST_MCE_ALLOCATION: ParameterBounds(0.3, 1.0, ParameterType.FLOAT),
    ActionType.SET_REORDER_POINT: ParameterBounds(50, 500, ParameterType.INTEGER),
    ActionType.SET_ORDER_QUANTITY: ParameterBounds(100, 1000, ParameterType.INTEGER),
}

CUSTOM_PRICE_BOUNDS = ParameterBounds(80, 200, ParameterType.INTEGER)


class StrategyAction:
    """策略行動基底類別

    子類別皆為 frozen dataclass，並宣告：
        action_type: 行動類型標記
        payload_field: 數值內容欄位名稱（無內容則為 None）
    """
    action_type: ClassVar[ActionType]
    payload_field: ClassVar[Optional[str]] = None

    day: int
    is_locked: bool

    def payload(self) -> Optional[float]:
        """獲取數值內容"""
        if self.payload_field is None:
            return None
        return getattr(self, self.payload_field)

    def with_payload(self, value: float) -> "StrategyAction":
        """回傳替換數值內容後的新行動；無內容的行動回傳自身"""
        if self.payload_field is None:
            return self
        return replace(self, **{self.payload_field: value})

    def with_day(self, day: int) -> "StrategyAction":
        return replace(self, day=int(day))

    def locked(self) -> "StrategyAction":
        """回傳標記為鎖定的新行動"""
        return replace(self, is_locked=True)

    def payload_bounds(self) -> Optional[ParameterBounds]:
        """數值內容的預設範圍"""
        return ACTION_PAYLOAD_BOUNDS[self.action_type]

    def discriminator(self) -> Optional[str]:
        """同類型行動之間的區分欄位（角色、機台、產品線）"""
        return None

    def policy_field(self) -> Optional[str]:
        """此行動會改寫的策略參數名稱"""
        return None

    def key(self) -> str:
        """行動識別字串，用於固定行動約束"""
        parts = [str(self.day), self.action_type.value]
        discriminator = self.discriminator()
        if discriminator is not None:
            parts.append(discriminator)
        return ":".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """轉換為字典格式"""
        data: Dict[str, Any] = {"type": self.action_type.value}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = value.value if isinstance(value, Enum) else value
        return data


@dataclass(frozen=True)
class TakeLoan(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.TAKE_LOAN
    payload_field: ClassVar[Optional[str]] = "amount"

    day: int
    amount: float
    is_locked: bool = False


@dataclass(frozen=True)
class PayDebt(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.PAY_DEBT
    payload_field: ClassVar[Optional[str]] = "amount"

    day: int
    amount: float
    is_locked: bool = False


@dataclass(frozen=True)
class OrderMaterials(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.ORDER_MATERIALS
    payload_field: ClassVar[Optional[str]] = "quantity"

    day: int
    quantity: float
    is_locked: bool = False


@dataclass(frozen=True)
class StopMaterialOrders(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.STOP_MATERIAL_ORDERS

    day: int
    is_locked: bool = False


@dataclass(frozen=True)
class HireWorkers(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.HIRE
    payload_field: ClassVar[Optional[str]] = "count"

    day: int
    role: WorkerRole
    count: int
    is_locked: bool = False

    def discriminator(self) -> Optional[str]:
        return self.role.value


@dataclass(frozen=True)
class FireWorkers(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.FIRE
    payload_field: ClassVar[Optional[str]] = "count"

    day: int
    role: WorkerRole
    count: int
    is_locked: bool = False

    def discriminator(self) -> Optional[str]:
        return self.role.value


@dataclass(frozen=True)
class BuyMachine(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.BUY_MACHINE
    payload_field: ClassVar[Optional[str]] = "count"

    day: int
    machine_type: MachineType
    count: int
    is_locked: bool = False

    def discriminator(self) -> Optional[str]:
        return self.machine_type.value


@dataclass(frozen=True)
class SellMachine(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.SELL_MACHINE
    payload_field: ClassVar[Optional[str]] = "count"

    day: int
    machine_type: MachineType
    count: int
    is_locked: bool = False

    def discriminator(self) -> Optional[str]:
        return self.machine_type.value


@dataclass(frozen=True)
class AdjustPrice(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.ADJUST_PRICE
    payload_field: ClassVar[Optional[str]] = "new_price"

    day: int
    product_line: ProductLine
    new_price: float
    is_locked: bool = False

    def payload_bounds(self) -> Optional[ParameterBounds]:
        if self.product_line == ProductLine.CUSTOM:
            return CUSTOM_PRICE_BOUNDS
        return ACTION_PAYLOAD_BOUNDS[self.action_type]

    def discriminator(self) -> Optional[str]:
        return self.product_line.value

    def policy_field(self) -> Optional[str]:
        if self.product_line == ProductLine.STANDARD:
            return "standard_price"
        return None


@dataclass(frozen=True)
class AdjustBatchSize(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.ADJUST_BATCH_SIZE
    payload_field: ClassVar[Optional[str]] = "new_size"

    day: int
    new_size: int
    is_locked: bool = False

    def policy_field(self) -> Optional[str]:
        return "standard_batch_size"


@dataclass(frozen=True)
class AdjustAllocation(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.ADJUST_MCE_ALLOCATION
    payload_field: ClassVar[Optional[str]] = "new_allocation"

    day: int
    new_allocation: float
    is_locked: bool = False

    def policy_field(self) -> Optional[str]:
        return "mce_allocation_custom"


@dataclass(frozen=True)
class SetReorderPoint(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.SET_REORDER_POINT
    payload_field: ClassVar[Optional[str]] = "new_reorder_point"

    day: int
    new_reorder_point: int
    is_locked: bool = False

    def policy_field(self) -> Optional[str]:
        return "reorder_point"


@dataclass(frozen=True)
class SetOrderQuantity(StrategyAction):
    action_type: ClassVar[ActionType] = ActionType.SET_ORDER_QUANTITY
    payload_field: ClassVar[Optional[str]] = "new_order_quantity"

    day: int
    new_order_quantity: int
    is_locked: bool = False

    def policy_field(self) -> Optional[str]:
        return "order_quantity"


def ensure_exhaustive(table: Mapping[ActionType, Any], table_name: str) -> None:
    """確認分派表涵蓋所有行動類型

    新增行動類型時，任何漏掉的分派表都會在匯入時失敗。

    Raises:
        TypeError: 若有行動類型未被處理
    """
    missing = [action_type.value for action_type in ActionType if action_type not in table]
    if missing:
        raise TypeError(f"{table_name} is missing handlers for: {', '.join(missing)}")


ACTION_CLASSES: Dict[ActionType, Type[StrategyAction]] = {
    ActionType.TAKE_LOAN: TakeLoan,
    ActionType.PAY_DEBT: PayDebt,
    ActionType.ORDER_MATERIALS: OrderMaterials,
    ActionType.STOP_MATERIAL_ORDERS: StopMaterialOrders,
    ActionType.HIRE: HireWorkers,
    ActionType.FIRE: FireWorkers,
    ActionType.BUY_MACHINE: BuyMachine,
    ActionType.SELL_MACHINE: SellMachine,
    ActionType.ADJUST_PRICE: AdjustPrice,
    ActionType.ADJUST_BATCH_SIZE: AdjustBatchSize,
    ActionType.ADJUST_MCE_ALLOCATION: AdjustAllocation,
    ActionType.SET_REORDER_POINT: SetReorderPoint,
    ActionType.SET_ORDER_QUANTITY: SetOrderQuantity,
}

# 建立行動骨架（只決定區分欄位，數值內容稍後依範圍取樣）
_SKELETON_BUILDERS: Dict[ActionType, Callable[[random.Random, int], StrategyAction]] = {
    ActionType.TAKE_LOAN: lambda rng, day: TakeLoan(day, 0),
    ActionType.PAY_DEBT: lambda rng, day: PayDebt(day, 0),
    ActionType.ORDER_MATERIALS: lambda rng, day: OrderMaterials(day, 0),
    ActionType.STOP_MATERIAL_ORDERS: lambda rng, day: StopMaterialOrders(day),
    ActionType.HIRE: lambda rng, day: HireWorkers(day, rng.choice(list(WorkerRole)), 0),
    ActionType.FIRE: lambda rng, day: FireWorkers(day, rng.choice(list(WorkerRole)), 0),
    ActionType.BUY_MACHINE: lambda rng, day: BuyMachine(day, rng.choice(list(MachineType)), 0),
    ActionType.SELL_MACHINE: lambda rng, day: SellMachine(day, rng.choice(list(MachineType)), 0),
    ActionType.ADJUST_PRICE: lambda rng, day: AdjustPrice(day, rng.choice(list(ProductLine)), 0),
    ActionType.ADJUST_BATCH_SIZE: lambda rng, day: AdjustBatchSize(day, 0),
    ActionType.ADJUST_MCE_ALLOCATION: lambda rng, day: AdjustAllocation(day, 0.0),
    ActionType.SET_REORDER_POINT: lambda rng, day: SetReorderPoint(day, 0),
    ActionType.SET_ORDER_QUANTITY: lambda rng, day: SetOrderQuantity(day, 0),
}

ensure_exhaustive(ACTION_CLASSES, "ACTION_CLASSES")
ensure_exhaustive(ACTION_PAYLOAD_BOUNDS, "ACTION_PAYLOAD_BOUNDS")
ensure_exhaustive(_SKELETON_BUILDERS, "_SKELETON_BUILDERS")

# 改寫營運政策的行動類型
POLICY_ACTION_TYPES = frozenset({
    ActionType.ADJUST_PRICE,
    ActionType.ADJUST_BATCH_SIZE,
    ActionType.ADJUST_MCE_ALLOCATION,
    ActionType.SET_REORDER_POINT,
    ActionType.SET_ORDER_QUANTITY,
})


def build_action(
    action_type: ActionType,
    day: int,
    rng: random.Random,
    bounds_for: Optional[Callable[[StrategyAction], Optional[ParameterBounds]]] = None,
) -> StrategyAction:
    """建立指定類型的隨機行動

    Args:
        action_type: 行動類型
        day: 行動日期
        rng: 亂數來源
        bounds_for: 依行動回傳數值範圍的函式（可選，預設使用行動自身的範圍）

    Returns:
        新建立的行動
    """
    skeleton = _SKELETON_BUILDERS[action_type](rng, int(day))
    bounds = bounds_for(skeleton) if bounds_for is not None else skeleton.payload_bounds()
    if bounds is None:
        return skeleton
    return skeleton.with_payload(bounds.sample(rng))


def action_from_dict(data: Dict[str, Any]) -> StrategyAction:
    """從字典建立行動

    Raises:
        ValueError: 若行動類型未知
    """
    action_type = ActionType(data["type"])
    cls = ACTION_CLASSES[action_type]
    kwargs: Dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        if f.name == "role":
            value = WorkerRole(value)
        elif f.name == "machine_type":
            value = MachineType(value)
        elif f.name == "product_line":
            value = ProductLine(value)
        kwargs[f.name] = value
    return cls(**kwargs)


def net_workforce_change(actions: Iterable[StrategyAction]) -> int:
    """計算行動序列造成的人力淨變化（雇用減解雇）"""
    total = 0
    for action in actions:
        if isinstance(action, HireWorkers):
            total += int(action.count)
        elif isinstance(action, FireWorkers):
            total -= int(action.count)
    return total


def net_machine_change(actions: Iterable[StrategyAction], machine_type: MachineType) -> int:
    """計算行動序列造成的指定機台淨變化（購買減出售）"""
    total = 0
    for action in actions:
        if isinstance(action, BuyMachine) and action.machine_type == machine_type:
            total += int(action.count)
        elif isinstance(action, SellMachine) and action.machine_type == machine_type:
            total -= int(action.count)
    return total
