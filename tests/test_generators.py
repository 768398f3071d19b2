from __future__ import annotations

import json

import pytest

from finance_chat.errors import ConfigurationMissing, MalformedUpstreamOutput, UpstreamUnavailable
from finance_chat.generators import (
    MAX_CSV_CHARS,
    BudgetPlan,
    ConceptExplanation,
    ExpenseReport,
    GoalStrategy,
    StructuredPlanner,
    parse_structured,
)
from finance_chat.llm import ChatClient

from conftest import FakeChatClient

BUDGET_JSON = {
    "allocations": [
        {"name": "Needs", "value": 1500, "limit": 1500, "color": "#0088FE", "description": "Rent"},
        {"name": "Wants", "value": 900, "limit": 900, "color": "#FFBB28", "description": "Dining"},
        {"name": "Savings", "value": 600, "limit": 600, "color": "#00C49F", "description": "SIP"},
    ],
    "analysis": "Within limits.",
    "action_plan": ["Automate savings."],
}

GOAL_JSON = {
    "monthly_savings_required": 5000,
    "estimated_return_rate": "12%",
    "investment_split": [{"type": "Equity", "percentage": 60, "amount": 3000, "color": "#8884d8"}],
    "strategy_logic": "Growth first.",
    "recommendations": ["Start a SIP."],
}

EXPENSE_JSON = {
    "categories": [{"name": "Food", "value": 500, "color": "#FF8042", "details": "Eating out"}],
    "total_spent": 1200,
    "total_income": 3000,
    "insights": ["Dining is high"],
    "risky_spending": [],
}

EXPLAIN_JSON = {
    "term": "SIP",
    "definition": "Regular investing.",
    "example": {"scenario": "5000/month", "invested_amount": "600000", "final_value": "1161700", "gain": "561700"},
    "risk_level": "Medium",
    "risk_color": "#F59E0B",
    "takeaways": ["Discipline"],
}


@pytest.mark.parametrize("model", [BudgetPlan, GoalStrategy, ExpenseReport])
def test_non_json_raises_malformed(model):
    with pytest.raises(MalformedUpstreamOutput):
        parse_structured("Sure! Here is your plan: save more.", model)


def test_json_array_is_rejected():
    with pytest.raises(MalformedUpstreamOutput):
        parse_structured("[1, 2, 3]", BudgetPlan)


def test_schema_mismatch_never_returns_partial():
    partial = {"allocations": BUDGET_JSON["allocations"]}  # analysis missing
    with pytest.raises(MalformedUpstreamOutput):
        parse_structured(json.dumps(partial), BudgetPlan)


def test_code_fence_is_tolerated():
    raw = "```json\n" + json.dumps(GOAL_JSON) + "\n```"
    assert parse_structured(raw, GoalStrategy).monthly_savings_required == 5000


def test_budget_plan_uses_json_mode_and_low_temperature():
    client = FakeChatClient([json.dumps(BUDGET_JSON)])
    plan = StructuredPlanner(client).budget_plan(3000, 1200, "Emergency fund", api_key="k")
    assert [a.name for a in plan.allocations] == ["Needs", "Wants", "Savings"]
    config = client.calls[0]["config"]
    assert config.json_mode is True
    assert config.temperature == 0.2
    assert client.calls[0]["messages"][0]["role"] == "system"
    assert "Monthly Income: 3000" in client.calls[0]["messages"][1]["content"]


def test_goal_strategy():
    client = FakeChatClient([json.dumps(GOAL_JSON)])
    strategy = StructuredPlanner(client).goal_strategy("House", 500000, 5, "Medium", api_key="k")
    assert strategy.investment_split[0].percentage == 60


def test_expense_csv_is_truncated():
    client = FakeChatClient([json.dumps(EXPENSE_JSON)])
    csv = "date,desc,amount\n" + "x" * (MAX_CSV_CHARS * 2)
    report = StructuredPlanner(client).analyze_expenses(csv, api_key="k")
    assert report.total_income == 3000
    prompt = client.calls[0]["messages"][1]["content"]
    assert "x" * MAX_CSV_CHARS not in prompt
    assert client.calls[0]["config"].temperature == 0.1


def test_explain_concept():
    client = FakeChatClient([json.dumps(EXPLAIN_JSON)])
    explanation = StructuredPlanner(client).explain_concept("SIP", api_key="k")
    assert explanation.example.gain == "561700"


def test_planner_raises_malformed_for_prose():
    client = FakeChatClient(["I cannot produce JSON today."])
    with pytest.raises(MalformedUpstreamOutput):
        StructuredPlanner(client).budget_plan(1000, 500, "", api_key="k")


def test_upstream_errors_stay_typed(upstream_down):
    client = FakeChatClient([upstream_down])
    with pytest.raises(UpstreamUnavailable):
        StructuredPlanner(client).explain_concept("ETF", api_key="k")


def test_missing_key_is_configuration_error():
    # real client: the key check happens before any network traffic
    client = ChatClient("http://127.0.0.1:9/v1")
    with pytest.raises(ConfigurationMissing):
        StructuredPlanner(client).goal_strategy("Car", 10000, 2, "Low", api_key=None)
    client.close()


def test_numeric_text_fields_are_accepted():
    goal = dict(GOAL_JSON, estimated_return_rate=12)
    assert parse_structured(json.dumps(goal), GoalStrategy).estimated_return_rate == "12"

    example = {"scenario": "5000/month", "invested_amount": 600000, "final_value": 1161700.5, "gain": 561700}
    explained = parse_structured(json.dumps(dict(EXPLAIN_JSON, example=example)), ConceptExplanation)
    assert explained.example.invested_amount == "600000"
    assert explained.example.final_value == "1161700.5"
    assert explained.example.gain == "561700"


def test_non_scalar_text_field_is_still_malformed():
    goal = dict(GOAL_JSON, estimated_return_rate={"low": 5})
    with pytest.raises(MalformedUpstreamOutput):
        parse_structured(json.dumps(goal), GoalStrategy)
