# SAP B1 Query MCP Server
# File: charts.py
# Version: v2

"""Chart recommendation: LLM advisor with a local heuristic fallback."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from .llm import ChatCompletionClient
from .models import ChartRecommendation, Row

logger = logging.getLogger(__name__)

CHART_TYPES = ("pie", "bar", "line")
MAX_RECOMMENDED_TYPES = 3
LLM_SAMPLE_ROWS = 5

_DATE_FIELD_NAMES = {"docdate", "createdate", "updatedate", "postingdate"}

_SYSTEM_PROMPT = (
    "You are a data visualization expert. Analyze data structure and recommend "
    "the best chart types. Always return valid JSON only."
)


def _is_date_field(name: str) -> bool:
    lowered = name.lower()
    return "date" in lowered or "time" in lowered or lowered in _DATE_FIELD_NAMES


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str) and value.strip():
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


def classify_fields(row: Row) -> Dict[str, List[str]]:
    """Split a row's keys into date, numeric and categorical field names."""
    fields: Dict[str, List[str]] = {"date": [], "numeric": [], "categorical": []}
    for name, value in row.items():
        if name.startswith("odata.") or name == "__metadata":
            continue
        if _is_date_field(name):
            fields["date"].append(name)
        elif _is_numeric(value):
            fields["numeric"].append(name)
        elif isinstance(value, (str, bool)):
            fields["categorical"].append(name)
    return fields


def recommend_chart_types(rows: Sequence[Row], query: str = "") -> List[str]:
    """Pure local recommendation from the shape of the first row.

    - ``line`` when date-like fields and numeric fields coexist
    - ``bar`` when there is anything numeric or categorical
    - ``pie`` when the first categorical field has 2-8 distinct values in
      the first 20 rows
    """
    if not rows or not isinstance(rows[0], dict):
        return ["bar"]

    fields = classify_fields(rows[0])
    recommendations: List[str] = []

    if fields["date"] and fields["numeric"]:
        recommendations.append("line")

    if fields["numeric"] or fields["categorical"]:
        recommendations.append("bar")

    if fields["numeric"] and fields["categorical"]:
        first = fields["categorical"][0]
        distinct = {
            str(row.get(first))
            for row in rows[:20]
            if isinstance(row, dict) and row.get(first)
        }
        if 2 <= len(distinct) <= 8:
            recommendations.append("pie")

    return recommendations or ["bar"]


def heuristic_recommendation(rows: Sequence[Row], query: str = "") -> ChartRecommendation:
    types = recommend_chart_types(rows, query)
    return ChartRecommendation(best_chart_type=types[0], recommended_types=types, source="heuristic")


def _sample(rows: Sequence[Row]) -> List[Dict[str, Any]]:
    sample = []
    for row in rows[:LLM_SAMPLE_ROWS]:
        summary: Dict[str, Any] = {}
        for key in list(row)[:8]:
            value = row[key]
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                summary[key] = value
            elif isinstance(value, str) and len(value) < 50:
                summary[key] = value
        sample.append(summary)
    return sample


class LLMChartAdvisor:
    """Ask the LLM for the best chart type and axis fields."""

    def __init__(self, chat: ChatCompletionClient) -> None:
        self._chat = chat

    def build_prompt(self, rows: Sequence[Row], query: str) -> str:
        first = rows[0]
        fields = classify_fields(first)
        return f"""Analyze the data and user query to determine the BEST chart configuration.

User Query: "{query}"

Data Sample ({len(rows)} total records):
{json.dumps(_sample(rows), indent=2, default=str)}

Available Fields: {", ".join(first)}
Numeric Fields (Measures): {", ".join(fields["numeric"]) or "None"}
Categorical Fields (Dimensions): {", ".join(fields["categorical"]) or "None"}
Date Fields: {", ".join(fields["date"]) or "None"}

Chart Selection Rules:
- line: time series, trends over time
- bar: comparisons, rankings, top N items
- pie: proportions, parts of a whole (2-8 categories)

Return ONLY valid JSON in this exact format:
{{
  "bestChartType": "bar",
  "xAxisField": "CardName",
  "yAxisField": "DocTotal",
  "groupByField": null,
  "recommendedTypes": ["bar", "line"]
}}"""

    async def recommend(self, rows: Sequence[Row], query: str) -> ChartRecommendation:
        if not rows or not isinstance(rows[0], dict):
            return ChartRecommendation(best_chart_type="bar", recommended_types=["bar"], source="llm")

        config = await self._chat.complete_json(
            _SYSTEM_PROMPT, self.build_prompt(rows, query), max_tokens=200
        )

        best = str(config.get("bestChartType") or "").lower()
        if best not in CHART_TYPES:
            best = "bar"

        available = set(rows[0])

        def _field(key: str) -> Optional[str]:
            value = config.get(key)
            return value if isinstance(value, str) and value in available else None

        recommended: List[str] = []
        raw_types = config.get("recommendedTypes")
        if isinstance(raw_types, list):
            for item in raw_types:
                chart = str(item).lower()
                if chart in CHART_TYPES and chart not in recommended:
                    recommended.append(chart)
        if best not in recommended:
            recommended.insert(0, best)

        return ChartRecommendation(
            best_chart_type=best,
            recommended_types=recommended[:MAX_RECOMMENDED_TYPES],
            x_axis_field=_field("xAxisField"),
            y_axis_field=_field("yAxisField"),
            group_by_field=_field("groupByField"),
            source="llm",
        )


async def recommend_chart(
    rows: Sequence[Row],
    query: str,
    advisor: Optional[LLMChartAdvisor] = None,
) -> ChartRecommendation:
    """Advisor result, or the local heuristic when there is no advisor or it fails."""
    if advisor is None:
        return heuristic_recommendation(rows, query)
    try:
        return await advisor.recommend(rows, query)
    except Exception as exc:  # noqa: BLE001
        logger.warning("AI chart configuration failed, using local analysis: %s", exc)
        return heuristic_recommendation(rows, query)
