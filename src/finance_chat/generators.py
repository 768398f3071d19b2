"""Structured-output planners: budget, goal, expense analysis and concept explainer.

Each call asks the model for a JSON object with a fixed shape and validates
it into a pydantic model. Anything that does not parse and validate raises
:class:`MalformedUpstreamOutput`; callers never see a partial result.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import MalformedUpstreamOutput
from .llm import ChatClient, GenerationConfig
from .prompts import JSON_ONLY_SYSTEM

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

MAX_CSV_CHARS = 15000
_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```$", re.S)


# -----------------------------
# Result schemas
# -----------------------------
class Allocation(BaseModel):
    name: str
    value: float
    limit: float
    color: str = ""
    description: str = ""


class BudgetPlan(BaseModel):
    allocations: List[Allocation]
    analysis: str
    action_plan: List[str] = Field(default_factory=list)


class InvestmentSlice(BaseModel):
    type: str
    percentage: float
    amount: float
    color: str = ""


def _as_text(value: Any) -> Any:
    # Models often send bare numbers where the example shows a string ("12%" vs 12).
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class GoalStrategy(BaseModel):
    monthly_savings_required: float
    estimated_return_rate: str
    investment_split: List[InvestmentSlice]
    strategy_logic: str
    recommendations: List[str] = Field(default_factory=list)

    @field_validator("estimated_return_rate", mode="before")
    @classmethod
    def rate_as_text(cls, value: Any) -> Any:
        return _as_text(value)


class SpendingCategory(BaseModel):
    name: str
    value: float
    color: str = ""
    details: str = ""


class RiskyTransaction(BaseModel):
    date: str = ""
    description: str
    amount: float
    reason: str


class ExpenseReport(BaseModel):
    categories: List[SpendingCategory]
    total_spent: float
    total_income: float
    insights: List[str] = Field(default_factory=list)
    risky_spending: List[RiskyTransaction] = Field(default_factory=list)


class ConceptExample(BaseModel):
    scenario: str
    invested_amount: str
    final_value: str
    gain: str

    @field_validator("invested_amount", "final_value", "gain", mode="before")
    @classmethod
    def amounts_as_text(cls, value: Any) -> Any:
        return _as_text(value)


class ConceptExplanation(BaseModel):
    term: str
    definition: str
    example: ConceptExample
    risk_level: str
    risk_color: str = ""
    takeaways: List[str] = Field(default_factory=list)


# -----------------------------
# Parsing
# -----------------------------
def parse_structured(raw: Optional[str], model: Type[T]) -> T:
    """Parse a JSON completion into ``model`` or raise MalformedUpstreamOutput."""
    text = (raw or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1).strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedUpstreamOutput(f"Model did not return valid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise MalformedUpstreamOutput("Model returned JSON that is not an object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedUpstreamOutput(
            f"Model output does not match {model.__name__}: {e.error_count()} error(s)"
        ) from e


# -----------------------------
# Prompts
# -----------------------------
BUDGET_PROMPT = """
You are an expert financial planner. Create a monthly budget plan based on the 50/30/20 rule (Needs/Wants/Savings) for the following user profile.

USER DATA:
- Monthly Income: {income}
- Fixed Costs (Needs): {fixed_costs}
- Financial Goals: {goals}

INSTRUCTIONS:
1. Calculate the ideal 50/30/20 split based on the income.
2. Compare the fixed costs against the 50% "Needs" bucket.
3. Adjust the plan if fixed costs exceed 50% (reduce wants first).
4. Provide specific, actionable advice to achieve the stated goals.

OUTPUT FORMAT (Strict JSON):
{{
    "allocations": [
        {{"name": "Needs", "value": 1500, "limit": 1500, "color": "#0088FE", "description": "Rent, Bills, Groceries"}},
        {{"name": "Wants", "value": 900, "limit": 900, "color": "#FFBB28", "description": "Dining, Entertainment"}},
        {{"name": "Savings", "value": 600, "limit": 600, "color": "#00C49F", "description": "Investments, Emergency Fund"}}
    ],
    "analysis": "Your fixed costs are within the 50% limit. Great job!",
    "action_plan": ["Automate a transfer to savings on payday."]
}}
"""

GOAL_PROMPT = """
You are a certified financial planner. Create an investment strategy for a specific user goal.

GOAL DETAILS:
- Goal: {name}
- Target Amount: {amount}
- Timeline: {years} years
- Risk Tolerance: {risk}

INSTRUCTIONS:
1. Calculate the estimated monthly contribution required to reach the target (assume annual returns by risk: Low=5%, Medium=8%, High=12%).
2. Suggest an investment portfolio split (e.g., Equity Mutual Funds vs Debt/FDs vs Gold/Cash).
3. Explain the reasoning behind the split.

OUTPUT FORMAT (Strict JSON):
{{
    "monthly_savings_required": 5000,
    "estimated_return_rate": "12%",
    "investment_split": [
        {{"type": "Equity (SIP)", "percentage": 60, "amount": 3000, "color": "#8884d8"}},
        {{"type": "Debt / FD", "percentage": 30, "amount": 1500, "color": "#00C49F"}},
        {{"type": "Gold / Cash", "percentage": 10, "amount": 500, "color": "#FFBB28"}}
    ],
    "strategy_logic": "A 60/40 equity-debt split balances growth with stability.",
    "recommendations": ["Start a SIP in an Index Fund."]
}}
"""

EXPENSE_PROMPT = """
You are a financial analyst. Analyze the following bank statement data (CSV format) and provide a structured JSON response.

DATA:
{csv}

INSTRUCTIONS:
1. Categorize each transaction into one of: Food, Transport, Rent/Housing, Utilities, Entertainment, Shopping, Income, Healthcare, Debt, Others.
2. Calculate total spending and total income.
3. Identify 3 key insights or spending habits.
4. Flag any risky or unusual spending (e.g. gambling, overdraft fees, very high discretionary spend).

OUTPUT FORMAT (Strict JSON):
{{
    "categories": [
        {{"name": "Food", "value": 500, "color": "#FF8042", "details": "Eating out 5 times"}}
    ],
    "total_spent": 1200,
    "total_income": 3000,
    "insights": ["High spending on dining out"],
    "risky_spending": [{{"date": "2024-01-01", "description": "Unknown", "amount": 500, "reason": "Unrecognized merchant"}}]
}}
"""

EXPLAIN_PROMPT = """
You are a friendly financial tutor. Explain the following investment term to a beginner.

TERM: "{term}"

INSTRUCTIONS:
1. Define the term simply (no jargon).
2. Provide a concrete numerical example.
3. Assign a Risk Level (Low, Medium, High) and a corresponding color code.
4. List 3 key takeaways.

OUTPUT FORMAT (Strict JSON):
{{
    "term": "SIP (Systematic Investment Plan)",
    "definition": "A way to invest a fixed amount regularly in mutual funds, rather than a lump sum.",
    "example": {{
        "scenario": "You invest 5000 every month for 10 years at 12% annual return.",
        "invested_amount": "6,00,000",
        "final_value": "11,61,700",
        "gain": "5,61,700"
    }},
    "risk_level": "Medium",
    "risk_color": "#F59E0B",
    "takeaways": ["Disciplined investing habit."]
}}
"""


# -----------------------------
# Generators
# -----------------------------
class StructuredPlanner:
    """JSON-mode calls for the planning features. Stateless apart from the client."""

    BUDGET = GenerationConfig(temperature=0.2, max_tokens=1024, json_mode=True)
    GOAL = GenerationConfig(temperature=0.2, max_tokens=1024, json_mode=True)
    EXPENSES = GenerationConfig(temperature=0.1, max_tokens=2048, json_mode=True)
    EXPLAIN = GenerationConfig(temperature=0.3, max_tokens=1024, json_mode=True)

    def __init__(self, client: ChatClient) -> None:
        self.client = client

    def _run(self, prompt: str, config: GenerationConfig, model: Type[T], *, api_key: Optional[str]) -> T:
        messages = [
            {"role": "system", "content": JSON_ONLY_SYSTEM},
            {"role": "user", "content": prompt},
        ]
        raw = self.client.complete(messages, api_key=api_key, config=config)
        try:
            return parse_structured(raw, model)
        except MalformedUpstreamOutput as e:
            logger.error("%s generation returned unusable output: %s", model.__name__, e)
            raise

    def budget_plan(self, income: float, fixed_costs: float, goals: str, *, api_key: Optional[str]) -> BudgetPlan:
        prompt = BUDGET_PROMPT.format(income=income, fixed_costs=fixed_costs, goals=goals or "None stated")
        return self._run(prompt, self.BUDGET, BudgetPlan, api_key=api_key)

    def goal_strategy(
        self, name: str, amount: float, years: float, risk: str, *, api_key: Optional[str]
    ) -> GoalStrategy:
        prompt = GOAL_PROMPT.format(name=name, amount=amount, years=years, risk=risk)
        return self._run(prompt, self.GOAL, GoalStrategy, api_key=api_key)

    def analyze_expenses(self, csv_text: str, *, api_key: Optional[str]) -> ExpenseReport:
        prompt = EXPENSE_PROMPT.format(csv=(csv_text or "")[:MAX_CSV_CHARS])
        return self._run(prompt, self.EXPENSES, ExpenseReport, api_key=api_key)

    def explain_concept(self, term: str, *, api_key: Optional[str]) -> ConceptExplanation:
        prompt = EXPLAIN_PROMPT.format(term=term)
        return self._run(prompt, self.EXPLAIN, ConceptExplanation, api_key=api_key)
