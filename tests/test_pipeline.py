"""Tests for field, composite and batch embedding."""

from __future__ import annotations

import pytest

from crm_search.indexing import BatchResult, EmbeddingPipeline


def test_embed_field_stores_vector_and_metadata(pipeline: EmbeddingPipeline, vector_for) -> None:
    stored = pipeline.embed_field(
        "contacts", "contact-dana", "persona", "security-focused buyer", "user-1"
    )

    assert stored is True
    storage = pipeline.storage
    assert storage.count_records("contacts", user_id="user-1", with_embedding="persona_vector") == 1
    metadata = storage.get_embedding_metadata(
        table="contacts", record_id="contact-dana", field_name="persona"
    )
    assert metadata[0]["text_content"] == "security-focused buyer"
    assert metadata[0]["embedding_model"] == "fake-embedding"


def test_embed_field_skips_blank_and_rejects_unknown(pipeline: EmbeddingPipeline) -> None:
    assert pipeline.embed_field("leads", "lead-alice", "notes", "   ", "user-1") is False
    assert pipeline.embedding_provider._client.models.calls == []
    with pytest.raises(ValueError, match="Unknown vector column"):
        pipeline.embed_field("leads", "lead-alice", "persona", "text", "user-1")


def test_embed_fields_settled_logs_failures(pipeline: EmbeddingPipeline, monkeypatch) -> None:
    original = pipeline.embed_field

    def flaky(table, record_id, field_name, text, user_id):
        if field_name == "title":
            raise RuntimeError("boom")
        return original(table, record_id, field_name, text, user_id)

    monkeypatch.setattr(pipeline, "embed_field", flaky)

    embedded = pipeline.embed_fields_settled(
        "deals",
        "deal-acme",
        {"title": "Acme cloud renewal", "description": "fintech renewal", "next_step": ""},
        ("title", "description", "next_step"),
        "user-1",
    )

    assert embedded == 1
    assert pipeline.storage.count_records(
        "deals", user_id="user-1", with_embedding="description_vector"
    ) == 1


def test_embed_composite_stores_context(pipeline: EmbeddingPipeline) -> None:
    assert pipeline.embed_composite("lead", "lead-alice", "user-1") is True

    storage = pipeline.storage
    assert storage.count_records("leads", user_id="user-1", with_embedding="embedding") == 1
    metadata = storage.get_embedding_metadata(
        table="leads", record_id="lead-alice", field_name="composite"
    )
    assert metadata[0]["text_content"].startswith("LEAD INFORMATION:\nName: Alice Chen")


def test_embed_composite_without_record_returns_false(pipeline: EmbeddingPipeline) -> None:
    assert pipeline.embed_composite("deal", "missing", "user-1") is False
    with pytest.raises(ValueError, match="Unsupported entity type"):
        pipeline.embed_composite("company", "company-acme", "user-1")


def test_long_context_metadata_is_truncated(pipeline: EmbeddingPipeline) -> None:
    pipeline.storage.update_record(
        "leads", record_id="lead-bob", user_id="user-1", values={"notes": "x" * 3000}
    )

    pipeline.embed_composite("lead", "lead-bob", "user-1")

    text = pipeline.storage.get_embedding_metadata(
        table="leads", record_id="lead-bob", field_name="composite"
    )[0]["text_content"]
    assert len(text) == 1003
    assert text.endswith("...")


def test_batch_embed_field_counts(pipeline: EmbeddingPipeline) -> None:
    result = pipeline.batch_embed_field("companies", "description", "user-1", batch_size=2)

    assert result == BatchResult(processed=2, errors=0)
    assert pipeline.batch_embed_field("companies", "description", "user-1") == BatchResult(1, 0)
    assert pipeline.batch_embed_field("companies", "description", "user-1") == BatchResult()


def test_batch_embed_field_skips_blank_text(pipeline: EmbeddingPipeline) -> None:
    # No company has notes, so nothing is embedded and nothing fails.
    assert pipeline.batch_embed_field("companies", "notes", "user-1") == BatchResult(0, 0)


def test_batch_embed_composite_counts_errors(pipeline: EmbeddingPipeline, monkeypatch) -> None:
    original = pipeline.embed_composite

    def flaky(entity_type, entity_id, user_id):
        if entity_id == "lead-bob":
            raise RuntimeError("quota exceeded")
        return original(entity_type, entity_id, user_id)

    monkeypatch.setattr(pipeline, "embed_composite", flaky)

    result = pipeline.batch_embed_composite("lead", "user-1", batch_size=2)

    assert result == BatchResult(processed=2, errors=1)
    missing = pipeline.storage.records_missing_embedding(
        "leads", user_id="user-1", column="embedding"
    )
    assert [row["id"] for row in missing] == ["lead-bob"]


def test_batch_embed_composite_skipped_records_are_not_processed(
    pipeline: EmbeddingPipeline, monkeypatch
) -> None:
    monkeypatch.setattr(
        pipeline,
        "embed_composite",
        lambda entity_type, entity_id, user_id: entity_id != "lead-carla",
    )

    result = pipeline.batch_embed_composite("lead", "user-1", batch_size=5)

    assert result == BatchResult(processed=2, errors=0)


def test_embedding_stats(pipeline: EmbeddingPipeline) -> None:
    pipeline.embed_composite("lead", "lead-alice", "user-1")

    stats = pipeline.embedding_stats("leads", "user-1", ("embedding", "notes_vector"))

    assert stats.total == 3
    assert stats.with_embeddings == {"embedding": 1, "notes_vector": 0}
    assert stats.coverage == 33


def test_handle_activity_change_refreshes_linked_entities(pipeline: EmbeddingPipeline) -> None:
    refreshed = pipeline.handle_activity_change(
        "create", user_id="user-1", deal_id="deal-acme", contact_id="contact-dana"
    )

    assert refreshed == 2
    storage = pipeline.storage
    assert storage.count_records("deals", user_id="user-1", with_embedding="embedding") == 1
    assert storage.count_records("contacts", user_id="user-1", with_embedding="embedding") == 1


def test_handle_activity_change_without_user_or_targets(pipeline: EmbeddingPipeline) -> None:
    assert pipeline.handle_activity_change("update", user_id=None, lead_id="lead-alice") == 0
    assert pipeline.handle_activity_change("delete", user_id="user-1") == 0


def test_handle_activity_change_ignores_failed_refresh(pipeline: EmbeddingPipeline) -> None:
    # The lead belongs to another user, so there is nothing to refresh.
    refreshed = pipeline.handle_activity_change(
        "update", user_id="user-1", lead_id="lead-zed", deal_id="deal-acme"
    )

    assert refreshed == 1
