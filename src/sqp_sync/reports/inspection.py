"""
Inspection Report Generator
===========================
Renders inspection, sync, validation and comparison output as markdown,
HTML or JSON. Read-only: never touches sync state.
"""

import json
from datetime import datetime, timezone

from jinja2 import Environment, select_autoescape

FORMATS = ("markdown", "html", "json")

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{{ title }}</title></head>
<body>
<h1>{{ title }}</h1>
<p>Generated {{ generated_at }}</p>
{% for section in sections %}
<h2>{{ section.heading }}</h2>
{% if section.rows %}
<table>
<thead><tr>{% for col in section.columns %}<th>{{ col }}</th>{% endfor %}</tr></thead>
<tbody>
{% for row in section.rows %}<tr>{% for cell in row %}<td>{{ cell }}</td>{% endfor %}</tr>
{% endfor %}</tbody>
</table>
{% else %}
<p>No data.</p>
{% endif %}
{% endfor %}
</body>
</html>
"""

_env = Environment(autoescape=select_autoescape(default_for_string=True, default=True))


def _fmt(value) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, int):
        return f"{value:,}"
    if isinstance(value, float):
        return f"{value:,.4f}"
    return "" if value is None else str(value)


class InspectionReportGenerator:
    """Builds report sections once and renders them in the requested format."""

    def sections(self, data: dict) -> list[dict]:
        sections = []

        inspection = data.get("inspection")
        if inspection:
            metrics = inspection.get("metrics", {})
            sections.append(
                {
                    "heading": f"ASIN distribution: {inspection.get('query', '')}",
                    "columns": ["Metric", "Value"],
                    "rows": [
                        ["Total ASINs", _fmt(inspection.get("total_asins", 0))],
                        *[[name.replace("_", " ").title(), _fmt(v)] for name, v in metrics.items()],
                    ],
                }
            )
            sections.append(
                {
                    "heading": "Top ASINs",
                    "columns": ["Rank", "ASIN", "Impressions", "Clicks", "Purchases"],
                    "rows": [
                        [_fmt(a.get("rank")), a.get("asin"), _fmt(a.get("impressions")),
                         _fmt(a.get("clicks")), _fmt(a.get("purchases"))]
                        for a in inspection.get("top_asins", [])[:20]
                    ],
                }
            )

        sync = data.get("sync")
        if sync:
            sections.append(
                {
                    "heading": "Sync result",
                    "columns": ["Field", "Value"],
                    "rows": [
                        [k.replace("_", " ").title(), _fmt(v)]
                        for k, v in sync.items()
                        if not isinstance(v, (dict, list))
                    ],
                }
            )
            errors = sync.get("errors") or []
            if errors:
                sections.append(
                    {
                        "heading": "Row errors",
                        "columns": ["Stage", "Query", "ASIN", "Period", "Error"],
                        "rows": [
                            [e.get("stage"), e.get("query"), e.get("asin"),
                             f"{e.get('period_start') or ''} to {e.get('period_end') or ''}", e.get("error")]
                            for e in errors[:50]
                        ],
                    }
                )

        validation = data.get("validation")
        if validation:
            sections.append(
                {
                    "heading": "Validation",
                    "columns": ["Check", "Status", "Passed", "Total", "Percentage"],
                    "rows": [
                        [c["check"], c["status"], _fmt(c["passed"]), _fmt(c["total"]), c["percentage"]]
                        for c in validation.get("checks", [])
                    ],
                }
            )
            sections.append(
                {
                    "heading": "Quality score",
                    "columns": ["Metric", "Value"],
                    "rows": [
                        ["Quality score", f"{validation.get('quality_score', 0):.2f}%"],
                        ["Valid records", _fmt(validation.get("valid_records", 0))],
                        ["Invalid records", _fmt(validation.get("invalid_records", 0))],
                        ["Outliers", _fmt(validation.get("outlier_count", 0))],
                    ],
                }
            )

        comparison = data.get("comparison")
        if comparison:
            sections.append(
                {
                    "heading": "Warehouse vs store",
                    "columns": ["Field", "Warehouse", "Store", "Diff %", "Flagged"],
                    "rows": [
                        [name, _fmt(f["source"]), _fmt(f["target"]), f"{f['difference_pct']:.2f}", _fmt(f["flagged"])]
                        for name, f in comparison.get("fields", {}).items()
                    ],
                }
            )

        records = data.get("records")
        if records:
            sections.append(
                {
                    "heading": "Record comparison",
                    "columns": ["Metric", "Value"],
                    "rows": [
                        [name.replace("_", " ").title(), _fmt(records.get(name))]
                        for name in ("identical", "source_total", "target_total", "matches",
                                     "mismatches", "missing_in_target", "extra_in_target")
                    ],
                }
            )

        strategies = data.get("strategies")
        if strategies:
            sections.append(
                {
                    "heading": "Sampling strategies",
                    "columns": ["Strategy", "ASINs", "Estimated impressions"],
                    "rows": [
                        [s["name"], "all" if s["asins"] is None else _fmt(len(s["asins"])),
                         _fmt(s["estimated_impressions"])]
                        for s in strategies.values()
                    ],
                }
            )

        return sections

    def to_markdown(self, title: str, sections: list[dict], generated_at: str) -> str:
        lines = [f"# {title}", "", f"_Generated {generated_at}_", ""]
        for section in sections:
            lines.append(f"## {section['heading']}")
            lines.append("")
            if not section["rows"]:
                lines.extend(["No data.", ""])
                continue
            lines.append("| " + " | ".join(section["columns"]) + " |")
            lines.append("|" + "---|" * len(section["columns"]))
            for row in section["rows"]:
                cells = [str(c).replace("|", "\\|") if c is not None else "" for c in row]
                lines.append("| " + " | ".join(cells) + " |")
            lines.append("")
        return "\n".join(lines)

    def generate(self, data: dict, fmt: str = "markdown", title: str = "SQP Inspection Report") -> str:
        """
        Render a report.

        Args:
            data: Any of 'inspection', 'sync', 'validation', 'comparison'
            fmt: markdown | html | json

        Raises:
            ValueError: unsupported format
        """
        if fmt not in FORMATS:
            raise ValueError(f"Unsupported report format: {fmt}")

        generated_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

        if fmt == "json":
            return json.dumps({"title": title, "generated_at": generated_at, **data}, indent=2, default=str)

        sections = self.sections(data)
        if fmt == "html":
            return _env.from_string(HTML_TEMPLATE).render(
                title=title, generated_at=generated_at, sections=sections
            )
        return self.to_markdown(title, sections, generated_at)
