"""
適應度評估器實作 (Fitness Evaluator Implementations)

代理模型與遠端模擬器客戶端。
"""

from .surrogate import (
    FactorySettings,
    SurrogateFactoryEvaluator,
)

from .remote import (
    RemoteFitnessEvaluator,
    parse_simulation_response,
)

__all__ = [
    "FactorySettings",
    "SurrogateFactoryEvaluator",
    "RemoteFitnessEvaluator",
    "parse_simulation_response",
]
