import csv
import io
import json
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from skycast import exporters
from skycast.errors import UnsupportedFormatError, ValidationError

NOW = datetime(2026, 10, 19, 14, 5, 9, tzinfo=timezone.utc)


def query_dict(qid="q1", location="London", notes="", tags=None):
    return {
        "id": qid,
        "location": location,
        "location_normalized": location.lower(),
        "coordinates": {"lat": 51.5, "lon": -0.1},
        "date_range": {"start_date": "2026-10-19", "end_date": "2026-10-21"},
        "weather_data": {
            "name": location,
            "temperature": 12,
            "feels_like": 11,
            "description": "light rain",
            "humidity": 82,
            "wind_speed": 15,
            "pressure": 1012,
            "visibility": 10,
        },
        "forecast_data": None,
        "user_notes": notes,
        "tags": tags or [],
        "created_at": "2026-10-19T10:00:00",
        "updated_at": "2026-10-19T10:00:00",
    }


def insight_dict(qid="q1", location="London"):
    return {
        "id": f"i-{qid}",
        "query_id": qid,
        "location": location,
        "insight": "Cool and damp.",
        "recommendations": ["Umbrella", "Boots", "Scarf", "Tea"],
        "weather_summary": "Cool and damp.",
        "travel_advice": "Expect delays",
        "clothing_recommendations": ["Raincoat"],
        "activity_suggestions": ["Museum", "Cafe"],
        "generated_at": "2026-10-19T10:01:00",
        "model": "test/model",
    }


def test_unsupported_format():
    with pytest.raises(UnsupportedFormatError) as exc:
        exporters.export([], [], "yaml")

    assert isinstance(exc.value, ValidationError)
    assert "yaml" in str(exc.value)


@pytest.mark.parametrize("fmt, filename, content_type", [
    ("json", "skycast_weather_data_2026-10-19_14-05-09.json", "application/json"),
    ("csv", "skycast_weather_data_2026-10-19_14-05-09.csv", "text/csv"),
    ("xml", "skycast_weather_data_2026-10-19_14-05-09.xml", "application/xml"),
    ("pdf", "skycast_weather_report_2026-10-19_14-05-09.pdf", "application/pdf"),
    ("markdown", "skycast_weather_report_2026-10-19_14-05-09.md", "text/markdown"),
])
def test_filenames_and_content_types(fmt, filename, content_type):
    result = exporters.export([query_dict()], [insight_dict()], fmt, now=NOW)

    assert result.filename == filename
    assert result.content_type == content_type
    assert result.payload


def test_json_is_lossless():
    queries, insights = [query_dict(tags=["a"])], [insight_dict()]

    payload = json.loads(exporters.export(queries, insights, "json", now=NOW).payload)

    assert payload["queries"] == queries
    assert payload["insights"] == insights
    assert payload["format"] == "json"
    assert payload["exported_at"].startswith("2026-10-19T14:05:09")


def test_csv_empty_export_has_headers_only():
    text = exporters.export([], [], "csv", now=NOW).payload.decode()
    lines = text.splitlines()

    assert lines[0] == "Weather Queries"
    assert lines[1] == ",".join(exporters.QUERY_COLUMNS)
    assert lines[2] == ""
    assert lines[3] == "AI Insights"
    assert lines[4] == ",".join(exporters.INSIGHT_COLUMNS)
    assert len(lines) == 5


def test_csv_rows_join_lists():
    text = exporters.export(
        [query_dict(notes='Say "hi", then leave', tags=["work", "uk"])],
        [insight_dict()],
        "csv",
        now=NOW,
    ).payload.decode()

    queries_part, insights_part = text.split("\nAI Insights\n")
    query_rows = list(csv.DictReader(io.StringIO(queries_part.split("\n", 1)[1])))
    insight_rows = list(csv.DictReader(io.StringIO(insights_part)))

    assert query_rows[0]["tags"] == "work, uk"
    assert query_rows[0]["user_notes"] == 'Say "hi", then leave'
    assert query_rows[0]["temperature"] == "12"
    assert insight_rows[0]["recommendations"] == "Umbrella | Boots | Scarf | Tea"
    assert insight_rows[0]["query_id"] == "q1"


def test_xml_escapes_and_reparses():
    q = query_dict(location="A & B <Town>", notes='5 > 3 & "quoted" \'single\'')

    text = exporters.export([q], [insight_dict()], "xml", now=NOW).payload.decode()

    assert "&amp;" in text
    assert "&lt;Town&gt;" in text
    assert "&quot;quoted&quot;" in text
    assert "&apos;single&apos;" in text
    root = ET.fromstring(text.encode())
    assert root.tag == "skyCastExport"
    assert root.get("totalQueries") == "1"
    assert root.get("totalInsights") == "1"
    assert root.find("weatherQueries/query/location").text == "A & B <Town>"
    assert root.find("weatherQueries/query/metadata/userNotes").text == '5 > 3 & "quoted" \'single\''
    assert root.find("aiInsights/insight").get("queryId") == "q1"


def test_xml_drops_control_characters():
    text = exporters.export([query_dict(notes="bell\x07here")], [], "xml", now=NOW).payload.decode()

    root = ET.fromstring(text.encode())
    assert root.find("weatherQueries/query/metadata/userNotes").text == "bellhere"


def test_xml_fallback_matches_structure():
    q = query_dict(location="A & B", notes='"quoted" \'single\' <tag>')

    with patch.object(exporters.ET, "tostring", side_effect=TypeError("boom")):
        text = exporters.export([q], [insight_dict()], "xml", now=NOW).payload.decode()

    assert "&quot;quoted&quot;" in text
    assert "&apos;single&apos;" in text
    assert "&lt;tag&gt;" in text
    root = ET.fromstring(text.encode())
    assert root.find("weatherQueries/query/location").text == "A & B"
    assert root.find("weatherQueries/query/dateRange/startDate").text == "2026-10-19"
    assert root.get("totalQueries") == "1"


def test_escape_xml():
    assert exporters.escape_xml("a & b < c > d \" e ' f") == "a &amp; b &lt; c &gt; d &quot; e &apos; f"
    assert exporters.escape_xml(None) == ""


def drawn_lines(*args, **kwargs):
    """Run a PDF export and collect every line of text drawn on the canvas."""
    drawn = []
    original = exporters._PdfWriter.line

    def record(self, text, *a, **kw):
        drawn.append(text)
        return original(self, text, *a, **kw)

    with patch.object(exporters._PdfWriter, "line", record):
        payload = exporters.export(*args, **kwargs).payload
    return payload, drawn


def test_pdf_is_a_pdf():
    payload, drawn = drawn_lines([query_dict(notes="n" * 150)], [insight_dict()], "pdf", now=NOW)

    assert payload.startswith(b"%PDF")
    assert drawn[0] == "SkyCast Weather Report"
    assert "Location: London" in drawn
    assert "Notes: " + "n" * 100 in drawn
    assert "• Scarf" in drawn
    assert "• Tea" not in drawn


def test_pdf_truncates_to_limits():
    queries = [query_dict(qid=f"q{i}", location=f"City{i:02d}") for i in range(4)]
    insights = [insight_dict(qid=f"q{i}", location=f"City{i:02d}") for i in range(4)]

    _, drawn = drawn_lines(queries, insights, "pdf", now=NOW, max_pdf_queries=2, max_pdf_insights=1)
    locations = [line for line in drawn if line.startswith("Location: ")]

    assert locations == ["Location: City00", "Location: City01", "Location: City00"]
    assert "Total Queries: 4" in drawn


def test_pdf_paginates_long_reports():
    queries = [query_dict(qid=f"q{i}", location=f"City{i:02d}", notes="n" * 200) for i in range(30)]

    payload = exporters.export(queries, [insight_dict()] * 10, "pdf", now=NOW,
                               max_pdf_queries=30, max_pdf_insights=10).payload

    page_counts = [int(n) for n in re.findall(rb"/Count (\d+)", payload)]
    assert max(page_counts) > 1


def test_pdf_empty_export():
    assert exporters.export([], [], "pdf", now=NOW).payload.startswith(b"%PDF")


def test_markdown_report():
    text = exporters.export(
        [query_dict(notes="Bring boots", tags=["work"]), query_dict(qid="q2", location="Paris")],
        [insight_dict()],
        "markdown",
        now=NOW,
    ).payload.decode()

    assert text.startswith("# SkyCast Weather Report")
    assert "**Generated:** 2026-10-19 14:05:09" in text
    assert "### 1. London" in text
    assert "### 2. Paris" in text
    assert "### 1. London Analysis" in text
    assert "**Notes:** Bring boots" in text
    assert "`work`" in text
    assert "- Tea" in text
    assert "**Travel Advice:** Expect delays" in text
    assert text.count("---") == 3


def test_format_is_case_insensitive():
    assert exporters.export([], [], "JSON", now=NOW).content_type == "application/json"
