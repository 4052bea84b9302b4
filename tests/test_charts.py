# SAP B1 Query MCP Server
# File: tests/test_charts.py
# Version: v1

from __future__ import annotations

from typing import Any, Dict

import pytest

from sap_b1_mcp.charts import LLMChartAdvisor, recommend_chart, recommend_chart_types
from sap_b1_mcp.llm import LLMError


ORDERS = [
    {"DocEntry": i, "DocDate": f"2024-01-{i:02d}", "CardName": name, "DocTotal": 100.0 * i}
    for i, name in enumerate(["Maxi Teq", "Microchips", "Aquent", "Maxi Teq", "Aquent"], start=1)
]


class _FakeChat:
    def __init__(self, reply: Dict[str, Any]) -> None:
        self.reply = reply
        self.prompts = []

    async def complete_json(self, system_prompt, user_prompt, max_tokens=300, temperature=0.2):
        self.prompts.append(user_prompt)
        return self.reply


class _FailingChat:
    async def complete_json(self, *args, **kwargs):
        raise LLMError("No valid JSON found in LLM response")


def test_heuristic_prefers_line_for_dated_numeric_rows() -> None:
    assert recommend_chart_types(ORDERS, "sales trend") == ["line", "bar", "pie"]


def test_heuristic_without_dates() -> None:
    rows = [{"ItemCode": f"A{i}", "QuantityOnStock": i} for i in range(30)]
    # 20 distinct item codes in the sample: too many slices for a pie
    assert recommend_chart_types(rows, "") == ["bar"]


def test_heuristic_defaults_to_bar() -> None:
    assert recommend_chart_types([], "") == ["bar"]
    assert recommend_chart_types([{"Nested": {"a": 1}}], "") == ["bar"]


@pytest.mark.asyncio
async def test_advisor_validates_fields_and_types() -> None:
    chat = _FakeChat(
        {
            "bestChartType": "PIE",
            "xAxisField": "CardName",
            "yAxisField": "NotAField",
            "groupByField": None,
            "recommendedTypes": ["bar", "radar", "line", "bar"],
        }
    )
    rec = await LLMChartAdvisor(chat).recommend(ORDERS, "share of sales per customer")

    assert rec.best_chart_type == "pie"
    assert rec.recommended_types == ["pie", "bar", "line"]
    assert rec.x_axis_field == "CardName"
    assert rec.y_axis_field is None
    assert rec.group_by_field is None
    assert rec.source == "llm"
    assert "share of sales per customer" in chat.prompts[0]


@pytest.mark.asyncio
async def test_unknown_chart_type_becomes_bar() -> None:
    rec = await LLMChartAdvisor(_FakeChat({"bestChartType": "scatter"})).recommend(ORDERS, "q")
    assert rec.best_chart_type == "bar"
    assert rec.recommended_types == ["bar"]


@pytest.mark.asyncio
async def test_recommend_chart_falls_back_on_advisor_failure() -> None:
    rec = await recommend_chart(ORDERS, "sales trend", LLMChartAdvisor(_FailingChat()))

    assert rec.source == "heuristic"
    assert rec.best_chart_type == "line"
    assert rec.recommended_types == ["line", "bar", "pie"]


@pytest.mark.asyncio
async def test_recommend_chart_without_advisor_is_local() -> None:
    rec = await recommend_chart(ORDERS, "orders", None)
    assert rec.source == "heuristic"
    assert rec.to_dict()["best_chart_type"] == "line"
