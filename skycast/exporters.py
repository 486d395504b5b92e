"""
Export helpers.

Input is two lists of JSON-ready dicts (weather queries and AI insights).
They are never joined: every format renders them as two parallel sections.

- JSON: both lists plus export metadata, pretty printed
- CSV: two flattened tables under section titles; list fields joined into one cell
- XML: ElementTree document, with a hand-built fallback using the same escaping
- PDF: short paginated report (reportlab), truncated to configurable limits
- Markdown: the same report, untruncated
"""

from __future__ import annotations

import csv
import io
import json
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from .errors import UnsupportedFormatError

logger = logging.getLogger(__name__)

FORMATS = ("json", "csv", "xml", "pdf", "markdown")

CONTENT_TYPES = {
    "json": "application/json",
    "csv": "text/csv",
    "xml": "application/xml",
    "pdf": "application/pdf",
    "markdown": "text/markdown",
}

QUERY_COLUMNS = [
    "id", "location", "start_date", "end_date", "temperature", "description",
    "humidity", "wind_speed", "feels_like", "pressure", "visibility",
    "created_at", "user_notes", "tags",
]

INSIGHT_COLUMNS = [
    "id", "query_id", "location", "insight", "recommendations", "weather_summary",
    "travel_advice", "clothing_recommendations", "activity_suggestions",
    "generated_at", "model",
]

# (snapshot key, XML element name)
WEATHER_XML_FIELDS = [
    ("temperature", "temperature"),
    ("description", "description"),
    ("humidity", "humidity"),
    ("wind_speed", "windSpeed"),
    ("feels_like", "feelsLike"),
    ("pressure", "pressure"),
    ("visibility", "visibility"),
]


@dataclass(frozen=True)
class ExportResult:
    payload: bytes
    filename: str
    content_type: str


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _joined(values: Optional[List[Any]], sep: str) -> str:
    return sep.join(_text(v) for v in (values or []))


def _weather(query: Dict[str, Any]) -> Dict[str, Any]:
    return query.get("weather_data") or {}


def _range(query: Dict[str, Any]) -> Tuple[str, str]:
    dr = query.get("date_range") or {}
    return _text(dr.get("start_date")), _text(dr.get("end_date"))


# -------------------------
# JSON
# -------------------------

def export_json(queries: List[Dict[str, Any]], insights: List[Dict[str, Any]], exported_at: datetime) -> str:
    """Lossless: both lists as given plus metadata."""
    return json.dumps(
        {
            "queries": queries,
            "insights": insights,
            "exported_at": exported_at.isoformat(),
            "format": "json",
        },
        indent=2,
        default=str,
        ensure_ascii=False,
    )


# -------------------------
# CSV
# -------------------------

def flatten_query(query: Dict[str, Any]) -> Dict[str, Any]:
    weather = _weather(query)
    start, end = _range(query)
    return {
        "id": query.get("id"),
        "location": query.get("location"),
        "start_date": start,
        "end_date": end,
        "temperature": weather.get("temperature"),
        "description": weather.get("description"),
        "humidity": weather.get("humidity"),
        "wind_speed": weather.get("wind_speed"),
        "feels_like": weather.get("feels_like"),
        "pressure": weather.get("pressure"),
        "visibility": weather.get("visibility"),
        "created_at": query.get("created_at"),
        "user_notes": query.get("user_notes") or "",
        "tags": _joined(query.get("tags"), ", "),
    }


def flatten_insight(insight: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": insight.get("id"),
        "query_id": insight.get("query_id"),
        "location": insight.get("location"),
        "insight": insight.get("insight"),
        "recommendations": _joined(insight.get("recommendations"), " | "),
        "weather_summary": insight.get("weather_summary"),
        "travel_advice": insight.get("travel_advice") or "",
        "clothing_recommendations": _joined(insight.get("clothing_recommendations"), " | "),
        "activity_suggestions": _joined(insight.get("activity_suggestions"), " | "),
        "generated_at": insight.get("generated_at"),
        "model": insight.get("model"),
    }


def _csv_table(columns: List[str], rows: List[Dict[str, Any]]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=columns, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return output.getvalue()


def export_csv(queries: List[Dict[str, Any]], insights: List[Dict[str, Any]]) -> str:
    """
    Two tables, one after the other:

        Weather Queries
        <header>
        <rows>

        AI Insights
        <header>
        <rows>
    """
    return (
        "Weather Queries\n"
        + _csv_table(QUERY_COLUMNS, [flatten_query(q) for q in queries])
        + "\nAI Insights\n"
        + _csv_table(INSIGHT_COLUMNS, [flatten_insight(i) for i in insights])
    )


# -------------------------
# XML
# -------------------------

# (tag, attributes, text or children)
XmlNode = Tuple[str, Dict[str, str], Union[str, List["XmlNode"]]]

# Characters XML 1.0 does not allow at all, even escaped
_INVALID_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def _xml_text(value: Any) -> str:
    return _INVALID_XML_CHARS.sub("", _text(value))


def escape_xml(value: Any) -> str:
    """Escape & < > " ' for text and attribute content."""
    return escape(_xml_text(value), {'"': "&quot;", "'": "&apos;"})


def _leaf(tag: str, value: Any) -> XmlNode:
    return (tag, {}, _xml_text(value))


def xml_layout(queries: List[Dict[str, Any]], insights: List[Dict[str, Any]], exported_at: datetime) -> XmlNode:
    """Document structure shared by the ElementTree path and the string fallback."""
    query_nodes: List[XmlNode] = []
    for q in queries:
        weather = _weather(q)
        start, end = _range(q)
        query_nodes.append(("query", {"id": _xml_text(q.get("id"))}, [
            _leaf("location", q.get("location")),
            ("dateRange", {}, [_leaf("startDate", start), _leaf("endDate", end)]),
            ("weatherData", {}, [_leaf(tag, weather.get(key)) for key, tag in WEATHER_XML_FIELDS]),
            ("metadata", {}, [
                _leaf("createdAt", q.get("created_at")),
                _leaf("userNotes", q.get("user_notes")),
                _leaf("tags", _joined(q.get("tags"), ", ")),
            ]),
        ]))

    insight_nodes: List[XmlNode] = []
    for i in insights:
        insight_nodes.append(("insight", {"id": _xml_text(i.get("id")), "queryId": _xml_text(i.get("query_id"))}, [
            _leaf("location", i.get("location")),
            _leaf("insight", i.get("insight")),
            _leaf("recommendations", _joined(i.get("recommendations"), " | ")),
            _leaf("weatherSummary", i.get("weather_summary")),
            _leaf("travelAdvice", i.get("travel_advice")),
            _leaf("clothingRecommendations", _joined(i.get("clothing_recommendations"), " | ")),
            _leaf("activitySuggestions", _joined(i.get("activity_suggestions"), " | ")),
            ("metadata", {}, [
                _leaf("generatedAt", i.get("generated_at")),
                _leaf("model", i.get("model")),
            ]),
        ]))

    attrs = {
        "exportedAt": exported_at.isoformat(),
        "format": "xml",
        "totalQueries": str(len(queries)),
        "totalInsights": str(len(insights)),
    }
    return ("skyCastExport", attrs, [
        ("weatherQueries", {}, query_nodes),
        ("aiInsights", {}, insight_nodes),
    ])


def _to_element(node: XmlNode, parent: Optional[ET.Element] = None) -> ET.Element:
    tag, attrs, content = node
    element = ET.Element(tag, attrs) if parent is None else ET.SubElement(parent, tag, attrs)
    if isinstance(content, str):
        element.text = content
    else:
        for child in content:
            _to_element(child, element)
    return element


def _render_node(node: XmlNode, depth: int, out: List[str]) -> None:
    tag, attrs, content = node
    pad = "  " * depth
    attr_text = "".join(f' {k}="{escape_xml(v)}"' for k, v in attrs.items())
    if isinstance(content, str):
        out.append(f"{pad}<{tag}{attr_text}>{escape_xml(content)}</{tag}>")
    elif not content:
        out.append(f"{pad}<{tag}{attr_text} />")
    else:
        out.append(f"{pad}<{tag}{attr_text}>")
        for child in content:
            _render_node(child, depth + 1, out)
        out.append(f"{pad}</{tag}>")


XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'


def build_simple_xml(layout: XmlNode) -> str:
    """String-built XML; used when ElementTree serialization fails."""
    out: List[str] = []
    _render_node(layout, 0, out)
    return XML_DECLARATION + "\n".join(out) + "\n"


_TEXT_NODES = re.compile(r">([^<]*)<")


def _escape_quotes(serialized: str) -> str:
    # ElementTree leaves quotes raw in text and apostrophes raw in attributes
    serialized = serialized.replace("'", "&apos;")
    return _TEXT_NODES.sub(lambda m: ">" + m.group(1).replace('"', "&quot;") + "<", serialized)


def export_xml(queries: List[Dict[str, Any]], insights: List[Dict[str, Any]], exported_at: datetime) -> str:
    layout = xml_layout(queries, insights, exported_at)
    try:
        root = _to_element(layout)
        ET.indent(root)
        return XML_DECLARATION + _escape_quotes(ET.tostring(root, encoding="unicode")) + "\n"
    except (TypeError, ValueError) as e:
        logger.warning("xml_export_fallback error=%s", e)
        return build_simple_xml(layout)


# -------------------------
# PDF
# -------------------------

class _PdfWriter:
    """Tiny cursor over a reportlab canvas that starts a new page when a block won't fit."""

    def __init__(self, buffer: io.BytesIO, margin: float = 56):
        self.canvas = canvas.Canvas(buffer, pagesize=A4)
        self.width, self.height = A4
        self.margin = margin
        self.y = self.height - margin

    @property
    def text_width(self) -> float:
        return self.width - 2 * self.margin

    def ensure(self, needed: float) -> None:
        if self.y - needed < self.margin:
            self.canvas.showPage()
            self.y = self.height - self.margin

    def line(self, text: str, x: float = 0, size: float = 10,
             rgb: Tuple[float, float, float] = (0, 0, 0), font: str = "Helvetica",
             centered: bool = False) -> None:
        self.canvas.setFont(font, size)
        self.canvas.setFillColorRGB(*rgb)
        if centered:
            self.canvas.drawCentredString(self.width / 2, self.y, text)
        else:
            self.canvas.drawString(self.margin + x, self.y, text)
        self.y -= size * 1.5

    def wrap(self, text: str, indent: float = 0, size: float = 10) -> List[str]:
        return simpleSplit(text, "Helvetica", size, self.text_width - indent)

    def gap(self, points: float) -> None:
        self.y -= points

    def save(self) -> None:
        self.canvas.save()


def export_pdf(queries: List[Dict[str, Any]], insights: List[Dict[str, Any]], generated_at: datetime,
               max_queries: int = 10, max_insights: int = 5) -> bytes:
    buffer = io.BytesIO()
    pdf = _PdfWriter(buffer)

    pdf.line("SkyCast Weather Report", size=20, rgb=(0, 0.4, 0.8), font="Helvetica-Bold", centered=True)
    pdf.gap(6)
    grey = (0.4, 0.4, 0.4)
    pdf.line(f"Generated on: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}", size=12, rgb=grey)
    pdf.line(f"Total Queries: {len(queries)}", size=12, rgb=grey)
    pdf.line(f"AI Insights: {len(insights)}", size=12, rgb=grey)
    pdf.gap(12)

    pdf.line("Weather Queries", size=16, font="Helvetica-Bold")
    for q in queries[:max_queries]:
        weather = _weather(q)
        start, end = _range(q)
        notes = _text(q.get("user_notes"))
        pdf.ensure(12 * 1.5 + 10 * 1.5 * (5 if notes else 4) + 8)

        pdf.line(f"Location: {_text(q.get('location'))}", size=12, rgb=(0, 0.2, 0.4))
        pdf.line(f"Date Range: {start} to {end}", x=8)
        pdf.line(
            f"Temperature: {_text(weather.get('temperature'))}°C "
            f"(feels like {_text(weather.get('feels_like'))}°C)", x=8,
        )
        pdf.line(f"Conditions: {_text(weather.get('description'))}", x=8)
        pdf.line(
            f"Humidity: {_text(weather.get('humidity'))}% | Wind: {_text(weather.get('wind_speed'))} km/h", x=8,
        )
        if notes:
            pdf.line(f"Notes: {notes[:100]}", x=8)
        pdf.gap(8)

    if insights:
        pdf.gap(12)
        pdf.ensure(16 * 1.5 + 80)
        pdf.line("AI Weather Insights", size=16, font="Helvetica-Bold")

        for i in insights[:max_insights]:
            body = pdf.wrap(_text(i.get("insight")), indent=8)
            recs = [pdf.wrap(f"• {_text(r)}", indent=16) for r in (i.get("recommendations") or [])[:3]]
            rec_lines = sum(len(r) for r in recs)
            pdf.ensure(12 * 1.5 + 10 * 1.5 * (len(body) + (rec_lines + 1 if recs else 0)) + 8)

            pdf.line(f"Location: {_text(i.get('location'))}", size=12, rgb=(0, 0.2, 0.4))
            for text in body:
                pdf.line(text, x=8)
            if recs:
                pdf.line("Recommendations:", x=8)
                for wrapped in recs:
                    for text in wrapped:
                        pdf.line(text, x=16)
            pdf.gap(8)

    pdf.save()
    return buffer.getvalue()


# -------------------------
# Markdown
# -------------------------

def export_markdown(queries: List[Dict[str, Any]], insights: List[Dict[str, Any]], generated_at: datetime) -> str:
    """Human-readable report; nothing truncated."""
    lines = [
        "# SkyCast Weather Report",
        "",
        f"**Generated:** {generated_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Total Queries:** {len(queries)}",
        f"**AI Insights:** {len(insights)}",
        "",
        "## Weather Queries",
        "",
    ]

    if not queries:
        lines += ["_No queries._", ""]

    for n, q in enumerate(queries, start=1):
        weather = _weather(q)
        start, end = _range(q)
        lines += [
            f"### {n}. {_text(q.get('location'))}",
            "",
            f"**Date Range:** {start} to {end}",
            "",
            "**Current Weather:**",
            f"- Temperature: **{_text(weather.get('temperature'))}°C** (feels like {_text(weather.get('feels_like'))}°C)",
            f"- Conditions: {_text(weather.get('description'))}",
            f"- Humidity: {_text(weather.get('humidity'))}%",
            f"- Wind Speed: {_text(weather.get('wind_speed'))} km/h",
            f"- Visibility: {_text(weather.get('visibility'))} km",
            f"- Pressure: {_text(weather.get('pressure'))} hPa",
            "",
        ]
        if q.get("user_notes"):
            lines += [f"**Notes:** {q['user_notes']}", ""]
        if q.get("tags"):
            lines += ["**Tags:** " + ", ".join(f"`{t}`" for t in q["tags"]), ""]
        lines += ["---", ""]

    if insights:
        lines += ["## AI Weather Insights", ""]
        for n, i in enumerate(insights, start=1):
            lines += [f"### {n}. {_text(i.get('location'))} Analysis", "", _text(i.get("insight")), ""]
            for title, key in (
                ("Recommendations", "recommendations"),
                ("Clothing Recommendations", "clothing_recommendations"),
                ("Activity Suggestions", "activity_suggestions"),
            ):
                items = i.get(key) or []
                if items:
                    lines.append(f"**{title}:**")
                    lines += [f"- {_text(item)}" for item in items]
                    lines.append("")
                if key == "recommendations" and i.get("travel_advice"):
                    lines += [f"**Travel Advice:** {i['travel_advice']}", ""]
            lines += [f"*Generated by: {_text(i.get('model'))}*", "", "---", ""]

    lines += ["*Report generated by SkyCast Weather*", ""]
    return "\n".join(lines)


# -------------------------
# Dispatch
# -------------------------

def export(queries: List[Dict[str, Any]], insights: List[Dict[str, Any]], fmt: str,
           now: Optional[datetime] = None, max_pdf_queries: int = 10, max_pdf_insights: int = 5) -> ExportResult:
    """Serialize queries + insights; filenames carry a timestamp, content type is fixed per format."""
    fmt = (fmt or "").lower()
    if fmt not in FORMATS:
        raise UnsupportedFormatError(f"Unsupported export format: {fmt!r}. Supported formats: {', '.join(FORMATS)}")

    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%d_%H-%M-%S")

    if fmt == "json":
        payload = export_json(queries, insights, now).encode("utf-8")
        filename = f"skycast_weather_data_{stamp}.json"
    elif fmt == "csv":
        payload = export_csv(queries, insights).encode("utf-8")
        filename = f"skycast_weather_data_{stamp}.csv"
    elif fmt == "xml":
        payload = export_xml(queries, insights, now).encode("utf-8")
        filename = f"skycast_weather_data_{stamp}.xml"
    elif fmt == "pdf":
        payload = export_pdf(queries, insights, now, max_queries=max_pdf_queries, max_insights=max_pdf_insights)
        filename = f"skycast_weather_report_{stamp}.pdf"
    else:
        payload = export_markdown(queries, insights, now).encode("utf-8")
        filename = f"skycast_weather_report_{stamp}.md"

    logger.info("export_generated format=%s queries=%d insights=%d bytes=%d",
                fmt, len(queries), len(insights), len(payload))
    return ExportResult(payload=payload, filename=filename, content_type=CONTENT_TYPES[fmt])
