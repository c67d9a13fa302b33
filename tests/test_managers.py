"""Tests for lead, contact, deal and company writes that maintain embeddings."""

from __future__ import annotations

import pytest

from crm_search.indexing import (
    BatchResult,
    CompanyEmbeddingManager,
    ContactEmbeddingManager,
    DealEmbeddingManager,
    LeadEmbeddingManager,
)
from crm_search.services import Services
from crm_search.storage import RecordNotFoundError


@pytest.fixture()
def leads(services: Services) -> LeadEmbeddingManager:
    return services.leads


@pytest.fixture()
def contacts(services: Services) -> ContactEmbeddingManager:
    return services.contacts


@pytest.fixture()
def deals(services: Services) -> DealEmbeddingManager:
    return services.deals


@pytest.fixture()
def companies(services: Services) -> CompanyEmbeddingManager:
    return services.companies


def test_create_lead_applies_defaults_and_embeds(leads: LeadEmbeddingManager) -> None:
    lead_id = leads.create_lead(
        {"name": "Eve Stone", "company": "Ledger Fintech", "notes": "fintech expansion"},
        user_id="user-1",
    )

    storage = leads.storage
    record = storage.get_record("leads", record_id=lead_id, user_id="user-1")
    assert (record["status"], record["source"], record["score"]) == ("new", "manual", 50)
    assert record["user_id"] == "user-1"
    fields = {
        row["field_name"]
        for row in storage.get_embedding_metadata(table="leads", record_id=lead_id)
    }
    assert fields == {"notes", "composite"}


def test_create_lead_requires_name(leads: LeadEmbeddingManager) -> None:
    with pytest.raises(ValueError, match="name is required"):
        leads.create_lead({"name": "  "}, user_id="user-1")


def test_create_lead_survives_embedding_outage(leads: LeadEmbeddingManager) -> None:
    leads.pipeline.embedding_provider._client.models.fail = True

    lead_id = leads.create_lead({"name": "Eve", "notes": "retail"}, user_id="user-1")

    eve = leads.storage.get_record("leads", record_id=lead_id, user_id="user-1")
    assert eve["name"] == "Eve"
    assert leads.storage.get_embedding_metadata(table="leads", record_id=lead_id) == []


def test_update_lead_reembeds_notes_and_composite(leads: LeadEmbeddingManager) -> None:
    leads.update_lead("lead-bob", {"notes": "now evaluating fintech"}, user_id="user-1")

    storage = leads.storage
    notes = storage.get_embedding_metadata(table="leads", record_id="lead-bob", field_name="notes")
    composite = storage.get_embedding_metadata(
        table="leads", record_id="lead-bob", field_name="composite"
    )
    assert notes[0]["text_content"] == "now evaluating fintech"
    assert "Notes: now evaluating fintech" in composite[0]["text_content"]


def test_update_lead_of_other_user_raises(leads: LeadEmbeddingManager) -> None:
    with pytest.raises(RecordNotFoundError):
        leads.update_lead("lead-zed", {"status": "lost"}, user_id="user-1")


def test_delete_lead_removes_record_and_metadata(leads: LeadEmbeddingManager) -> None:
    leads.delete_lead("lead-alice", user_id="user-1")

    assert leads.storage.get_record("leads", record_id="lead-alice", user_id="user-1") is None
    assert leads.storage.get_embedding_metadata(table="leads", record_id="lead-alice") == []


def test_search_similar_leads(leads: LeadEmbeddingManager) -> None:
    results = leads.search_similar_leads("fintech security", user_id="user-1", max_results=1)

    assert [r.id for r in results] == ["lead-alice"]


def test_lead_batch_process_and_stats(leads: LeadEmbeddingManager) -> None:
    result = leads.batch_process("user-1")

    # Composites already exist; every lead gains a notes vector.
    assert result == BatchResult(processed=3, errors=0)
    stats = leads.stats("user-1")
    assert stats.total == 3
    assert stats.with_embeddings == {"embedding": 3, "notes_vector": 3}
    assert stats.coverage == 100


def test_create_and_update_company(companies: CompanyEmbeddingManager) -> None:
    company_id = companies.create_company(
        {"name": "Ledger", "industry": "Fintech", "description": "fintech ledger"},
        user_id="user-1",
    )
    companies.update_company(company_id, {"notes": "cloud partner"}, user_id="user-1")

    storage = companies.storage
    record = storage.get_record("companies", record_id=company_id, user_id="user-1")
    assert record["status"] == "active"
    fields = [
        row["field_name"]
        for row in storage.get_embedding_metadata(table="companies", record_id=company_id)
    ]
    assert fields == ["description", "notes"]


def test_create_company_requires_name(companies: CompanyEmbeddingManager) -> None:
    with pytest.raises(ValueError, match="name is required"):
        companies.create_company({"industry": "Fintech"}, user_id="user-1")


def test_delete_company(companies: CompanyEmbeddingManager) -> None:
    companies.delete_company("company-nova", user_id="user-1")

    nova = companies.storage.get_record("companies", record_id="company-nova", user_id="user-1")
    assert nova is None
    with pytest.raises(RecordNotFoundError):
        companies.delete_company("company-nova", user_id="user-1")


def test_search_similar_companies(companies: CompanyEmbeddingManager) -> None:
    results = companies.search_similar_companies("healthcare network", user_id="user-1")

    assert results[0].id == "company-medcore"
    assert results[0].industry == "Healthcare"


def test_recommendations_exclude_the_company_itself(companies: CompanyEmbeddingManager) -> None:
    recommendations = companies.recommendations("company-acme", user_id="user-1")

    ids = [c.id for c in recommendations.similar_companies]
    assert "company-acme" not in ids
    assert ids[0] == "company-nova"
    assert recommendations.recommendations[0] == f"Found {len(ids)} similar companies in your CRM"
    assert recommendations.insights.common_industries[0] == "Fintech"
    assert recommendations.insights.market_opportunities == [
        "Expand in Fintech industry",
        "Develop industry-specific solutions",
        "Identify partnership opportunities",
    ]
    assert recommendations.insights.competitor_analysis == (
        f"{len(ids)} similar companies identified for competitive analysis"
    )


def test_recommendations_without_similar_companies(indexed_storage, embedder) -> None:
    services = Services(indexed_storage, embedder, threshold_override=None, batch_pause=0)
    company_id = services.companies.create_company(
        {"name": "Orbit", "industry": "Aerospace", "description": "logistics"},
        user_id="user-1",
    )

    recommendations = services.companies.recommendations(company_id, user_id="user-1")

    assert recommendations.similar_companies == []
    assert recommendations.recommendations == [
        "No similar companies found. This company has a unique profile in your CRM",
        "Consider this as a new market opportunity",
    ]
    assert recommendations.insights.market_opportunities == ["Identify partnership opportunities"]
    assert recommendations.insights.competitor_analysis == "No direct competitors found in CRM"


def test_recommendations_for_unknown_company(companies: CompanyEmbeddingManager) -> None:
    with pytest.raises(RecordNotFoundError, match="Company not found"):
        companies.recommendations("missing", user_id="user-1")
    with pytest.raises(RecordNotFoundError):
        companies.recommendations("company-acme", user_id="user-2")


def test_company_batch_process_and_stats(companies: CompanyEmbeddingManager) -> None:
    companies.storage.update_record(
        "companies", record_id="company-acme", user_id="user-1", values={"notes": "key account"}
    )

    result = companies.batch_process("user-1")

    assert result == BatchResult(processed=1, errors=0)
    stats = companies.stats("user-1")
    assert stats.with_embeddings == {"description_vector": 3, "notes_vector": 1}
    assert stats.coverage == 100


def test_create_contact_applies_defaults_and_embeds(contacts: ContactEmbeddingManager) -> None:
    contact_id = contacts.create_contact(
        {"name": "Lee Wong", "persona": "retail buyer", "notes": "logistics pilot"},
        user_id="user-1",
    )

    storage = contacts.storage
    record = storage.get_record("contacts", record_id=contact_id, user_id="user-1")
    assert record["status"] == "active"
    fields = {
        row["field_name"]
        for row in storage.get_embedding_metadata(table="contacts", record_id=contact_id)
    }
    assert fields == {"persona", "notes", "composite"}


def test_create_contact_requires_name(contacts: ContactEmbeddingManager) -> None:
    with pytest.raises(ValueError, match="Contact name is required"):
        contacts.create_contact({"persona": "buyer"}, user_id="user-1")


def test_update_contact_reembeds_notes_and_composite(contacts: ContactEmbeddingManager) -> None:
    contacts.update_contact("contact-dana", {"notes": "retail expansion"}, user_id="user-1")

    storage = contacts.storage
    notes = storage.get_embedding_metadata(
        table="contacts", record_id="contact-dana", field_name="notes"
    )
    composite = storage.get_embedding_metadata(
        table="contacts", record_id="contact-dana", field_name="composite"
    )
    assert notes[0]["text_content"] == "retail expansion"
    assert "Notes: retail expansion" in composite[0]["text_content"]
    with pytest.raises(RecordNotFoundError):
        contacts.update_contact("contact-dana", {"notes": "x"}, user_id="user-2")


def test_delete_contact(contacts: ContactEmbeddingManager) -> None:
    contacts.delete_contact("contact-dana", user_id="user-1")

    storage = contacts.storage
    assert storage.get_record("contacts", record_id="contact-dana", user_id="user-1") is None
    assert storage.get_embedding_metadata(table="contacts", record_id="contact-dana") == []


def test_search_similar_contacts(contacts: ContactEmbeddingManager) -> None:
    results = contacts.search_similar_contacts("cloud security", user_id="user-1")

    assert [r.id for r in results] == ["contact-dana"]
    assert results[0].title == "CTO"


def test_contact_recommendations(contacts: ContactEmbeddingManager) -> None:
    contacts.create_contact(
        {
            "name": "Lee Wong",
            "title": "CISO",
            "company": "Acme Fintech",
            "persona": "security-focused buyer",
        },
        user_id="user-1",
    )

    result = contacts.recommendations("contact-dana", user_id="user-1")

    assert [c.name for c in result.similar_contacts] == ["Lee Wong"]
    assert result.recommendations == [
        "Found 1 similar contacts in your CRM",
        "Common titles among similar contacts: CISO",
        "Similar contacts work at: Acme Fintech",
        "Consider reaching out to similar contacts for referrals or insights",
    ]
    assert result.insights.common_titles == ["CISO"]
    assert result.insights.average_engagement == "Active"


def test_contact_recommendations_are_scoped_to_the_owner(
    contacts: ContactEmbeddingManager,
) -> None:
    with pytest.raises(RecordNotFoundError, match="Contact not found: contact-dana"):
        contacts.recommendations("contact-dana", user_id="user-2")


def test_contact_batch_process_and_stats(contacts: ContactEmbeddingManager) -> None:
    result = contacts.batch_process("user-1")

    assert result == BatchResult(processed=2, errors=0)
    stats = contacts.stats("user-1")
    assert stats.with_embeddings == {"persona_vector": 1, "notes_vector": 1, "embedding": 1}
    assert stats.coverage == 100


def test_create_deal_applies_defaults_and_embeds(deals: DealEmbeddingManager) -> None:
    deal_id = deals.create_deal(
        {"title": "Retail rollout", "description": "logistics pilot"}, user_id="user-1"
    )

    storage = deals.storage
    record = storage.get_record("deals", record_id=deal_id, user_id="user-1")
    assert (record["stage"], record["close_probability"], record["outcome"]) == (
        "Discovery",
        50,
        "in_progress",
    )
    fields = {
        row["field_name"]
        for row in storage.get_embedding_metadata(table="deals", record_id=deal_id)
    }
    assert fields == {"title", "description", "composite"}


def test_create_deal_requires_title(deals: DealEmbeddingManager) -> None:
    with pytest.raises(ValueError, match="Deal title is required"):
        deals.create_deal({"value": 10}, user_id="user-1")


def test_update_and_delete_deal(deals: DealEmbeddingManager) -> None:
    deals.update_deal("deal-acme", {"next_step": "security review"}, user_id="user-1")

    storage = deals.storage
    next_step = storage.get_embedding_metadata(
        table="deals", record_id="deal-acme", field_name="next_step"
    )
    assert next_step[0]["text_content"] == "security review"

    deals.delete_deal("deal-acme", user_id="user-1")
    assert storage.get_record("deals", record_id="deal-acme", user_id="user-1") is None
    assert storage.get_embedding_metadata(table="deals", record_id="deal-acme") == []


def test_deal_recommendations_flag_low_value(deals: DealEmbeddingManager) -> None:
    deals.create_deal(
        {"title": "Acme cloud expansion", "stage": "proposal", "value": 200000},
        user_id="user-1",
    )

    result = deals.recommendations("deal-acme", user_id="user-1")

    assert [d.name for d in result.similar_deals] == ["Acme cloud expansion"]
    assert result.recommendations == [
        "Consider increasing deal value. Similar deals average $200,000",
        "Found 1 similar deals for pattern analysis",
    ]


def test_deal_recommendations_without_similar_deals(deals: DealEmbeddingManager) -> None:
    result = deals.recommendations("deal-acme", user_id="user-1")

    assert result.similar_deals == []
    assert result.recommendations == [
        "No similar deals found. This appears to be a unique opportunity."
    ]
    with pytest.raises(RecordNotFoundError, match="Deal not found"):
        deals.recommendations("deal-acme", user_id="user-2")


def test_deal_batch_process_and_stats(deals: DealEmbeddingManager) -> None:
    result = deals.batch_process("user-1")

    # Only the title is filled in; the composite already exists.
    assert result == BatchResult(processed=1, errors=0)
    stats = deals.stats("user-1")
    assert stats.with_embeddings == {
        "embedding": 1,
        "title_vector": 1,
        "description_vector": 0,
        "next_step_vector": 0,
    }
    assert stats.coverage == 100
