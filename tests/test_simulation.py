"""
Tests for the fitness evaluators: the surrogate factory model and the
remote simulator client.
"""

import pytest
import math

import requests

from factory_optimizer.evolution.actions import (
    FireWorkers,
    HireWorkers,
    MachineType,
    SellMachine,
    TakeLoan,
    WorkerRole,
)
from factory_optimizer.evolution.exceptions import SimulatorResponseError
from factory_optimizer.evolution.fitness import SafeEvaluator, Severity, StartingState
from factory_optimizer.evolution.models import Strategy
from factory_optimizer.simulation.remote import (
    RemoteFitnessEvaluator,
    camelize,
    parse_simulation_response,
    to_camel,
)
from factory_optimizer.simulation.surrogate import FactorySettings, SurrogateFactoryEvaluator


# =============================================================================
# Surrogate Simulator
# =============================================================================

class TestSurrogateEvaluator:
    """
    The surrogate SHALL report one net worth value per simulated day, use the
    final net worth as fitness, and flag impossible resource plans as errors.
    """

    def test_daily_history_covers_decision_window(self):
        result = SurrogateFactoryEvaluator().evaluate(Strategy())
        days = [entry.day for entry in result.daily_history]
        assert days == list(range(51, 501))
        assert result.fitness_score == result.net_worth == result.daily_history[-1].value

    def test_deterministic_without_noise(self):
        evaluator = SurrogateFactoryEvaluator()
        strategy = Strategy(timed_actions=(HireWorkers(80, WorkerRole.EXPERT, 2),))
        assert evaluator.evaluate(strategy).net_worth == evaluator.evaluate(strategy).net_worth

    def test_seeded_noise_is_reproducible(self):
        settings = FactorySettings(demand_noise=0.1, noise_seed=7)
        first = SurrogateFactoryEvaluator(settings).evaluate(Strategy())
        second = SurrogateFactoryEvaluator(FactorySettings(demand_noise=0.1, noise_seed=7)).evaluate(Strategy())
        assert first.net_worth == second.net_worth

    def test_over_firing_is_invalid(self):
        strategy = Strategy(timed_actions=(FireWorkers(100, WorkerRole.EXPERT, 3),))
        result = SurrogateFactoryEvaluator().evaluate(strategy)
        assert not result.valid
        assert any(v.rule == "workforce_negative" and v.severity is Severity.ERROR for v in result.violations)

    def test_selling_every_mce_warns(self):
        strategy = Strategy(timed_actions=(SellMachine(300, MachineType.MCE, 1),))
        result = SurrogateFactoryEvaluator().evaluate(strategy)
        assert any(v.rule == "no_mce" and v.severity is Severity.WARNING for v in result.violations)

    def test_loan_changes_net_worth_only_by_interest(self):
        settings = FactorySettings()
        evaluator = SurrogateFactoryEvaluator(settings)
        base = evaluator.evaluate(Strategy())
        with_loan = evaluator.evaluate(Strategy(timed_actions=(TakeLoan(100, 50000),)))
        difference = base.value_on(100) - with_loan.value_on(100)
        assert difference == pytest.approx(50000 * settings.daily_interest_rate)

    def test_starting_state_shortens_simulation(self):
        state = StartingState(day=200, state={"cash": 250000.0, "experts": 4, "machines": {"MCE": 2}})
        result = SurrogateFactoryEvaluator().evaluate(Strategy(), state)
        assert result.daily_history[0].day == 200
        assert len(result.daily_history) == 301

    def test_actions_before_start_ignored(self):
        evaluator = SurrogateFactoryEvaluator()
        state = StartingState(day=200)
        early = Strategy(timed_actions=(FireWorkers(100, WorkerRole.EXPERT, 5),))
        assert evaluator.evaluate(early, state).valid


# =============================================================================
# Remote Simulator
# =============================================================================

class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.headers = {}
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append((url, json, timeout))
        return self.response


def success_payload(net_worth=123456.0, violations=(), valid=True):
    return {
        "success": True,
        "result": {
            "finalNetWorth": net_worth,
            "fitnessScore": net_worth,
            "state": {"history": {"dailyNetWorth": [{"day": 51, "value": 100.0}, {"day": 81, "value": 400.0}]}},
        },
        "businessRules": {"valid": valid, "violations": list(violations)},
        "error": None,
    }


class TestWireFormat:
    """Tests for request encoding and response parsing."""

    def test_to_camel(self):
        assert to_camel("custom_demand_mean_1") == "customDemandMean1"
        assert to_camel("reorder_point") == "reorderPoint"
        assert to_camel("type") == "type"

    def test_camelize_nested(self):
        data = {"timed_actions": [{"is_locked": True, "new_price": 900}]}
        assert camelize(data) == {"timedActions": [{"isLocked": True, "newPrice": 900}]}

    def test_parse_success(self):
        result = parse_simulation_response(success_payload())
        assert result.net_worth == 123456.0
        assert result.valid
        assert result.value_on(81) == 400.0

    def test_parse_critical_violation(self):
        payload = success_payload(
            violations=[{"severity": "CRITICAL", "rule": "cash", "message": "negative cash"}],
            valid=False,
        )
        result = parse_simulation_response(payload)
        assert not result.valid
        assert result.violations[0].severity is Severity.ERROR

    def test_parse_warning_only(self):
        payload = success_payload(violations=[{"severity": "WARNING", "rule": "idle", "message": ""}])
        result = parse_simulation_response(payload)
        assert result.valid
        assert result.violations[0].severity is Severity.WARNING

    def test_parse_failure(self):
        with pytest.raises(SimulatorResponseError, match="scenario not found"):
            parse_simulation_response({"success": False, "error": "scenario not found"})

    def test_parse_missing_net_worth(self):
        with pytest.raises(SimulatorResponseError):
            parse_simulation_response({"success": True, "result": {}})


class TestRemoteFitnessEvaluator:
    """Tests for the HTTP client using a fake session."""

    def test_posts_camel_case_strategy(self):
        session = FakeSession(FakeResponse(success_payload()))
        evaluator = RemoteFitnessEvaluator("http://sim:3000/", timeout=5, scenario_id="s1", session=session)

        result = evaluator.evaluate(Strategy(reorder_point=250))

        url, body, timeout = session.calls[0]
        assert url == "http://sim:3000/api/simulate"
        assert timeout == 5
        assert body["scenarioId"] == "s1"
        assert body["strategy"]["reorderPoint"] == 250
        assert "timedActions" in body["strategy"]
        assert result.net_worth == 123456.0

    def test_starting_state_in_request(self):
        evaluator = RemoteFitnessEvaluator("http://sim", session=FakeSession(None))
        body = evaluator.build_request(Strategy(), StartingState(day=120, state={"raw_inventory": 40}))
        assert body["startingState"] == {"day": 120, "rawInventory": 40}
        assert "scenarioId" not in body

    def test_http_error_propagates(self):
        evaluator = RemoteFitnessEvaluator("http://sim", session=FakeSession(FakeResponse({}, 500)))
        with pytest.raises(requests.HTTPError):
            evaluator.evaluate(Strategy())

    def test_safe_evaluator_converts_errors(self):
        evaluator = SafeEvaluator(RemoteFitnessEvaluator("http://sim", session=FakeSession(FakeResponse({}, 503))))
        result = evaluator.evaluate(Strategy())
        assert result.failed
        assert result.fitness_score == -math.inf
