"""Tests for the embedding provider."""

from __future__ import annotations

import os

import pytest

from crm_search.embeddings import DOCUMENT_TASK, QUERY_TASK, EmbeddingProvider


@pytest.fixture()
def provider(fake_embed_client) -> EmbeddingProvider:
    return EmbeddingProvider(client=fake_embed_client, dim=8, batch_size=3)


def test_record_texts_use_document_task(provider, fake_embed_client) -> None:
    vectors = provider.embed_texts(["fintech lead", "retail lead"])

    assert len(vectors) == 2
    assert vectors[0] != vectors[1]
    assert all(len(vector) == 8 for vector in vectors)
    config = fake_embed_client.models.calls[0]["config"]
    assert config == {"task_type": DOCUMENT_TASK, "output_dimensionality": 8}


def test_single_record_and_query(provider, fake_embed_client) -> None:
    provider.embed_text("Alice Chen, Acme Fintech")
    provider.embed_query("fintech buyers")

    tasks = [call["config"]["task_type"] for call in fake_embed_client.models.calls]
    assert tasks == [DOCUMENT_TASK, QUERY_TASK]


def test_texts_are_sent_in_batches(provider, fake_embed_client) -> None:
    vectors = provider.embed_texts([f"lead {i}" for i in range(7)])

    assert len(vectors) == 7
    assert [len(call["contents"]) for call in fake_embed_client.models.calls] == [3, 3, 1]
    assert provider.embed_texts([]) == []


def test_settings_from_environment(fake_embed_client, monkeypatch) -> None:
    monkeypatch.setenv("CRM_SEARCH_EMBEDDING_MODEL", "text-embedding-custom")
    monkeypatch.setenv("CRM_SEARCH_EMBEDDING_DIM", "256")
    monkeypatch.setenv("CRM_SEARCH_EMBEDDING_BATCH_SIZE", "10")

    configured = EmbeddingProvider(client=fake_embed_client)
    configured.embed_query("renewals")

    assert (configured.model, configured.dim, configured.batch_size) == (
        "text-embedding-custom",
        256,
        10,
    )
    call = fake_embed_client.models.calls[0]
    assert call["model"] == "text-embedding-custom"
    assert call["config"]["output_dimensionality"] == 256


def test_defaults_match_crm_vector_columns(fake_embed_client, monkeypatch) -> None:
    for suffix in ("MODEL", "DIM", "BATCH_SIZE"):
        monkeypatch.delenv(f"CRM_SEARCH_EMBEDDING_{suffix}", raising=False)

    default = EmbeddingProvider(client=fake_embed_client)

    assert (default.model, default.dim, default.batch_size) == ("gemini-embedding-001", 1536, 50)


def test_api_key_required_without_client(monkeypatch) -> None:
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)

    with pytest.raises(ValueError, match="GOOGLE_API_KEY"):
        EmbeddingProvider()


def test_service_errors_propagate(provider, fake_embed_client) -> None:
    fake_embed_client.models.fail = True

    with pytest.raises(RuntimeError, match="unavailable"):
        provider.embed_query("anything")


def test_short_response_is_an_error(provider, fake_embed_client, monkeypatch) -> None:
    original = fake_embed_client.models.embed_content

    def drop_last(**kwargs):
        result = original(**kwargs)
        result.embeddings.pop()
        return result

    monkeypatch.setattr(fake_embed_client.models, "embed_content", drop_last)

    with pytest.raises(RuntimeError, match="returned 1 vectors for 2 texts"):
        provider.embed_texts(["a", "b"])


@pytest.mark.skipif(
    not os.getenv("GOOGLE_API_KEY"),
    reason="GOOGLE_API_KEY not set, skipping live embedding test",
)
def test_live_embedding_api() -> None:
    live = EmbeddingProvider(dim=128)

    vectors = live.embed_texts(["Fintech buyer evaluating cloud security.", "Retail chain."])
    query = live.embed_query("security buyers")

    assert [len(v) for v in vectors] == [128, 128]
    assert len(query) == 128
    assert all(isinstance(value, float) for value in query)
