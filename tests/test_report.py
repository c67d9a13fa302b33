from crm_search.models import SemanticSearchResponse, SemanticSearchResult
from crm_search.search import format_results_for_context, similarity_digest
from crm_search.search.report import RELEVANCE_NOTE


def _response() -> SemanticSearchResponse:
    results = [
        SemanticSearchResult(
            id="deal-1", type="deal", name="Acme cloud renewal", company="Acme Fintech",
            stage="proposal", value=50000.0, similarity=0.91,
        ),
        SemanticSearchResult(
            id="contact-1", type="contact", name="Dana Park", title="CTO",
            company="Acme Fintech", email="dana@acme.io", status="active", similarity=0.62,
        ),
        SemanticSearchResult(
            id="lead-1", type="lead", name="Alice Chen", company="Acme Fintech",
            source="website", status="new", score=80.0, similarity=0.455,
        ),
        SemanticSearchResult(
            id="lead-2", type="lead", name="Bob Smith", score=0.0, similarity=0.1,
        ),
    ]
    return SemanticSearchResponse(results=results, query="acme renewal", total_results=4)


def test_format_results_groups_by_type() -> None:
    text = format_results_for_context(_response())

    assert text.startswith(
        'SEMANTIC SEARCH RESULTS FOR QUERY: "acme renewal"\n\n'
        "I've searched across all CRM data and found 4 items related to your query. "
        "Here are the most relevant matches:\n\n"
        "RELEVANT DEALS:\n"
        "1. Acme cloud renewal (Acme Fintech) | Stage: proposal | Value: $50,000 | Relevance: 91%\n"
    )
    assert (
        "RELEVANT CONTACTS:\n"
        "1. Dana Park | CTO at Acme Fintech | Email: dana@acme.io | Status: active | Relevance: 62%\n"
    ) in text
    assert (
        "RELEVANT LEADS:\n"
        "1. Alice Chen | Company: Acme Fintech | Source: website | Status: new | Score: 80 | "
        "Relevance: 46%\n"
        "2. Bob Smith | Company: N/A | Source: N/A | Status: N/A | Score: N/A | Relevance: 10%\n"
    ) in text
    assert "RELEVANT COMPANIES" not in text
    assert text.endswith(f"\n{RELEVANCE_NOTE}\n")


def test_format_results_caps_each_group() -> None:
    results = [
        SemanticSearchResult(id=f"lead-{i}", type="lead", name=f"Lead {i}", similarity=0.5)
        for i in range(12)
    ]
    text = format_results_for_context(
        SemanticSearchResponse(results=results, query="q", total_results=12)
    )

    assert "10. Lead 9" in text
    assert "11. Lead 10" not in text


def test_format_empty_response_is_blank() -> None:
    assert format_results_for_context(SemanticSearchResponse(query="q")) == ""


def test_similarity_digest() -> None:
    digest = similarity_digest(_response())

    assert digest.total == 4
    assert digest.counts_by_type == {"deal": 1, "contact": 1, "lead": 2}
    assert digest.max_similarity == 0.91
    assert digest.min_similarity == 0.1
    assert digest.top_result.id == "deal-1"
    assert digest.buckets == {"high": 1, "medium": 1, "low": 1, "very_low": 1}


def test_similarity_digest_empty() -> None:
    digest = similarity_digest(SemanticSearchResponse(query="q"))

    assert digest.total == 0
    assert digest.top_result is None
