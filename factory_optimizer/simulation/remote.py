"""
遠端模擬器客戶端 (Remote Simulator Client)

透過 HTTP 將策略送至獨立行程的工廠模擬器（POST /api/simulate），
並將回應轉為 FitnessResult。傳輸錯誤以例外拋出，交由 SafeEvaluator
轉為失敗結果。
"""

from typing import Any, Dict, List, Optional
import logging

import requests

from ..evolution.exceptions import SimulatorResponseError
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

# 模擬器回報的嚴重程度；CRITICAL 與 MAJOR 使策略無效
ERROR_SEVERITIES = {"CRITICAL", "MAJOR", "ERROR"}


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def camelize(value: Any) -> Any:
    """遞迴將字典鍵由 snake_case 轉為 camelCase"""
    if isinstance(value, dict):
        return {to_camel(key): camelize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [camelize(item) for item in value]
    return value


def parse_simulation_response(payload: Dict[str, Any]) -> FitnessResult:
    """將模擬器回應轉為 FitnessResult

    Raises:
        SimulatorResponseError: 若回應表示失敗或缺少必要欄位
    """
    if not payload.get("success", False):
        raise SimulatorResponseError(payload.get("error") or "simulation reported failure")

    result = payload.get("result")
    if not isinstance(result, dict) or "finalNetWorth" not in result:
        raise SimulatorResponseError("missing result.finalNetWorth")

    net_worth = float(result["finalNetWorth"])
    fitness = float(result.get("fitnessScore", net_worth))

    violations: List[Violation] = []
    rules = payload.get("businessRules") or {}
    for item in rules.get("violations", []):
        severity = Severity.ERROR if item.get("severity") in ERROR_SEVERITIES else Severity.WARNING
        violations.append(Violation(severity, item.get("rule", ""), item.get("message", "")))
    valid = bool(rules.get("valid", not any(v.severity is Severity.ERROR for v in violations)))

    history = None
    daily = (result.get("state") or {}).get("history", {}).get("dailyNetWorth")
    if daily:
        history = [DailyValue(int(entry["day"]), float(entry["value"])) for entry in daily]

    return FitnessResult(
        fitness_score=fitness,
        net_worth=net_worth,
        valid=valid,
        violations=violations,
        daily_history=history,
    )


class RemoteFitnessEvaluator(FitnessEvaluator):
    """遠端適應度評估器

    Attributes:
        base_url: 模擬器位址，例如 http://localhost:3000
        timeout: 單次請求逾時秒數
        scenario_id: 起始情境 ID（可選）
    """

    ENDPOINT = "/api/simulate"

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        scenario_id: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.scenario_id = scenario_id
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    def build_request(
        self,
        strategy: Strategy,
        starting_state: Optional[StartingState] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"strategy": camelize(strategy.to_dict())}
        if self.scenario_id is not None:
            body["scenarioId"] = self.scenario_id
        if starting_state is not None:
            body["startingState"] = {"day": starting_state.day, **camelize(starting_state.state)}
        return body

    def evaluate(
        self,
        strategy: Strategy,
        starting_state: Optional[StartingState] = None,
    ) -> FitnessResult:
        url = f"{self.base_url}{self.ENDPOINT}"
        resp = self._session.post(url, json=self.build_request(strategy, starting_state), timeout=self.timeout)
        resp.raise_for_status()
        result = parse_simulation_response(resp.json())
        logger.debug(f"Remote evaluation: fitness {result.fitness_score:.2f}, valid={result.valid}")
        return result
