import pytest

from crm_search.models import SemanticSearchResult
from crm_search.search import FilterParseError, apply_filters, parse_filters, supported_filter_syntax


def test_parse_filters_normalizes_operators() -> None:
    parsed = parse_filters("status=new, score>=50 and source in (website, 'event')")

    assert [(f.field, f.operator, f.value) for f in parsed] == [
        ("status", "eq", "new"),
        ("score", "gte", 50),
        ("source", "in", ["website", "event"]),
    ]


def test_blank_filters_parse_to_nothing() -> None:
    assert parse_filters(None) == []
    assert parse_filters("   ") == []


@pytest.mark.parametrize(
    "raw",
    ["status", "score>=high", "owner=me", "source in ()"],
)
def test_invalid_filters_raise(raw: str) -> None:
    with pytest.raises(FilterParseError):
        parse_filters(raw)


def test_apply_filters_on_rows_and_results() -> None:
    rows = [
        {"id": "1", "status": "new", "score": 80, "company": "Acme Fintech"},
        {"id": "2", "status": "contacted", "score": 40, "company": "MedCore"},
        {"id": "3", "status": "new", "score": None, "company": None},
    ]
    assert [r["id"] for r in apply_filters(rows, parse_filters("status=NEW, score>50"))] == ["1"]
    assert [r["id"] for r in apply_filters(rows, parse_filters("company~fintech"))] == ["1"]
    assert [r["id"] for r in apply_filters(rows, parse_filters("status!=new"))] == ["2"]

    results = [
        SemanticSearchResult(id="1", type="lead", name="Ada", similarity=0.9, score=70.0),
        SemanticSearchResult(id="2", type="lead", name="Bo", similarity=0.8, score=10.0),
    ]
    assert [r.id for r in apply_filters(results, parse_filters("score<=70"))] == ["1", "2"]
    assert [r.id for r in apply_filters(results, parse_filters("score=70"))] == ["1"]


def test_quoted_values_keep_commas() -> None:
    parsed = parse_filters('company="Acme, Inc", status=new')

    assert parsed[0].value == "Acme, Inc"
    assert len(parsed) == 2


def test_syntax_help_mentions_operators() -> None:
    text = supported_filter_syntax()
    assert "field in (a, b)" in text
    assert "field~text (substring)" in text
    assert "score" in text


def test_missing_field_never_matches() -> None:
    rows = [
        {"id": "1", "company": None, "status": None},
        {"id": "2", "company": "Globex", "status": "new"},
    ]

    assert [r["id"] for r in apply_filters(rows, parse_filters("company!=acme"))] == ["2"]
    assert [r["id"] for r in apply_filters(rows, parse_filters("status in (new, lost)"))] == ["2"]
    assert apply_filters([{"id": "3"}], parse_filters("source!=web")) == []


def test_in_filter_matches_any_listed_value() -> None:
    condition = parse_filters("source in (web, 'trade show')")[0]

    assert condition.matches({"source": "Trade Show"})
    assert not condition.matches({"source": "referral"})
