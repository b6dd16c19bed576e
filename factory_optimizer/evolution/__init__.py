"""
策略演化優化引擎 (Strategy Evolution Engine)

透過遺傳演算法在營運政策與時序行動的混合決策空間中搜尋高適應度策略。
"""

from .bounds import (
    ParameterType,
    ParameterBounds,
    DECISION_WINDOW_START,
    SIMULATION_END_DAY,
)

from .actions import (
    ActionType,
    WorkerRole,
    MachineType,
    ProductLine,
    StrategyAction,
    TakeLoan,
    PayDebt,
    OrderMaterials,
    StopMaterialOrders,
    HireWorkers,
    FireWorkers,
    BuyMachine,
    SellMachine,
    AdjustPrice,
    AdjustBatchSize,
    AdjustAllocation,
    SetReorderPoint,
    SetOrderQuantity,
    ACTION_CLASSES,
    ACTION_PAYLOAD_BOUNDS,
    POLICY_ACTION_TYPES,
    build_action,
    action_from_dict,
    ensure_exhaustive,
)

from .models import (
    Strategy,
    OptimizationCandidate,
    OPTIMIZABLE_FIELDS,
    MARKET_FIELDS,
    MARKET_DEFAULTS,
    PARAMETER_BOUNDS,
    validate_strategy_bounds,
)

from .constraints import (
    LockState,
    Constraints,
    ConstraintEngine,
    narrow_range,
)

from .crossover import (
    CrossoverOperator,
)

from .mutation import (
    MutationOperator,
)

from .population import (
    PopulationGenerator,
    sample_action,
)

from .analytical import (
    SeederInputs,
    AnalyticalSeeder,
    economic_order_quantity,
    reorder_point,
    economic_production_quantity,
    net_present_value,
    mms_wait_time,
    optimal_price,
)

from .fitness import (
    Severity,
    Violation,
    DailyValue,
    FitnessResult,
    StartingState,
    FitnessEvaluator,
    FunctionEvaluator,
    SafeEvaluator,
    INVALID_FITNESS,
    growth_rate,
)

from .generation import (
    GenerationStats,
    ConvergenceHistory,
    MutationSchedule,
    should_stop_early,
)

from .events import (
    ProgressEvent,
    OptimizationEventSink,
    LoggingEventSink,
    RecordingEventSink,
)

from .engine import (
    OptimizerConfig,
    OptimizationResult,
    GeneticAlgorithmOptimizer,
)

from .refinement import (
    RefinementConfig,
    Phase2Refiner,
)

from .multi_run import (
    MultiRunConfig,
    MultiRunOptimizer,
    MultiRunResult,
    RunFitnessStats,
)

from .exceptions import (
    EvolutionError,
    ConfigurationError,
    InvalidPopulationSizeError,
    InvalidEliteCountError,
    InvalidGenerationCountError,
    InvalidCrossoverRateError,
    InvalidMutationRateError,
    InvalidMutationScheduleError,
    InvalidRefinementIntensityError,
    InvalidEarlyStoppingError,
    EvaluatorUnavailableError,
    SimulatorResponseError,
)

__all__ = [
    # Bounds
    "ParameterType",
    "ParameterBounds",
    "DECISION_WINDOW_START",
    "SIMULATION_END_DAY",
    # Actions
    "ActionType",
    "WorkerRole",
    "MachineType",
    "ProductLine",
    "StrategyAction",
    "TakeLoan",
    "PayDebt",
    "OrderMaterials",
    "StopMaterialOrders",
    "HireWorkers",
    "FireWorkers",
    "BuyMachine",
    "SellMachine",
    "AdjustPrice",
    "AdjustBatchSize",
    "AdjustAllocation",
    "SetReorderPoint",
    "SetOrderQuantity",
    "ACTION_CLASSES",
    "ACTION_PAYLOAD_BOUNDS",
    "POLICY_ACTION_TYPES",
    "build_action",
    "action_from_dict",
    "ensure_exhaustive",
    # Models
    "Strategy",
    "OptimizationCandidate",
    "OPTIMIZABLE_FIELDS",
    "MARKET_FIELDS",
    "MARKET_DEFAULTS",
    "PARAMETER_BOUNDS",
    "validate_strategy_bounds",
    # Constraints
    "LockState",
    "Constraints",
    "ConstraintEngine",
    "narrow_range",
    # Operators
    "CrossoverOperator",
    "MutationOperator",
    "PopulationGenerator",
    "sample_action",
    # Analytical
    "SeederInputs",
    "AnalyticalSeeder",
    "economic_order_quantity",
    "reorder_point",
    "economic_production_quantity",
    "net_present_value",
    "mms_wait_time",
    "optimal_price",
    # Fitness
    "Severity",
    "Violation",
    "DailyValue",
    "FitnessResult",
    "StartingState",
    "FitnessEvaluator",
    "FunctionEvaluator",
    "SafeEvaluator",
    "INVALID_FITNESS",
    "growth_rate",
    # Generation
    "GenerationStats",
    "ConvergenceHistory",
    "MutationSchedule",
    "should_stop_early",
    # Events
    "ProgressEvent",
    "OptimizationEventSink",
    "LoggingEventSink",
    "RecordingEventSink",
    # Engine
    "OptimizerConfig",
    "OptimizationResult",
    "GeneticAlgorithmOptimizer",
    "RefinementConfig",
    "Phase2Refiner",
    "MultiRunConfig",
    "MultiRunOptimizer",
    "MultiRunResult",
    "RunFitnessStats",
    # Exceptions
    "EvolutionError",
    "ConfigurationError",
    "InvalidPopulationSizeError",
    "InvalidEliteCountError",
    "InvalidGenerationCountError",
    "InvalidCrossoverRateError",
    "InvalidMutationRateError",
    "InvalidMutationScheduleError",
    "InvalidRefinementIntensityError",
    "InvalidEarlyStoppingError",
    "EvaluatorUnavailableError",
    "SimulatorResponseError",
]
