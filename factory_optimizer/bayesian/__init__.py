"""
貝氏政策優化 (Bayesian Policy Optimization)

在連續營運政策空間上的貝氏搜尋，支援以歷史記憶暖啟動。
"""

from .policy import (
    POLICY_BOUNDS,
    PolicyParameters,
    DemandContext,
    PlanningAssumptions,
    StrategyPolicyEvaluator,
    plan_policy_actions,
    policy_to_strategy,
)

from .optimizer import (
    BayesianConfig,
    BayesianResult,
    BayesianOptimizer,
    plan_budget,
    suggest_policy,
)

__all__ = [
    # Policy
    "POLICY_BOUNDS",
    "PolicyParameters",
    "DemandContext",
    "PlanningAssumptions",
    "StrategyPolicyEvaluator",
    "plan_policy_actions",
    "policy_to_strategy",
    # Optimizer
    "BayesianConfig",
    "BayesianResult",
    "BayesianOptimizer",
    "plan_budget",
    "suggest_policy",
]
