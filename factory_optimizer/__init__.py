"""
factory_optimizer

工廠經營策略優化：遺傳演算法、第二階段精煉，以及具跨執行記憶的貝氏政策搜尋。
"""

__version__ = "1.0.0"

from .evolution import (
    Strategy,
    Constraints,
    LockState,
    OptimizerConfig,
    GeneticAlgorithmOptimizer,
    RefinementConfig,
    Phase2Refiner,
    MultiRunConfig,
    MultiRunOptimizer,
    FitnessEvaluator,
    FitnessResult,
)
from .bayesian import (
    BayesianConfig,
    BayesianOptimizer,
    PolicyParameters,
    DemandContext,
    StrategyPolicyEvaluator,
)
from .db import EvaluationMemory
from .simulation import SurrogateFactoryEvaluator, RemoteFitnessEvaluator

__all__ = [
    "Strategy",
    "Constraints",
    "LockState",
    "OptimizerConfig",
    "GeneticAlgorithmOptimizer",
    "RefinementConfig",
    "Phase2Refiner",
    "MultiRunConfig",
    "MultiRunOptimizer",
    "FitnessEvaluator",
    "FitnessResult",
    "BayesianConfig",
    "BayesianOptimizer",
    "PolicyParameters",
    "DemandContext",
    "StrategyPolicyEvaluator",
    "EvaluationMemory",
    "SurrogateFactoryEvaluator",
    "RemoteFitnessEvaluator",
]
