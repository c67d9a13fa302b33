"""
FastAPI server for CRM search.

Exposes semantic search, the smart lead query, lead, contact, deal and
company writes with embeddings, and embedding maintenance endpoints.
"""

import asyncio
import threading
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Literal

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .log import configure_logging
from .search.report import similarity_digest
from .services import Services, build_services
from .storage import ENTITY_TABLES, RecordNotFoundError

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # The CLI configures logging before serving; direct uvicorn runs do not.
    if not structlog.is_configured():
        configure_logging()
    logger.info("server.started")
    yield


app = FastAPI(
    title="CRM Search",
    description="Semantic search over CRM records",
    lifespan=lifespan,
)

_services: Services | None = None
_services_lock = threading.Lock()


def get_services() -> Services:
    """Return the process-wide services, building them on first use."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
        return _services


def _error_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, RecordNotFoundError):
        return JSONResponse({"error": str(exc)}, status_code=404)
    if isinstance(exc, ValueError):
        return JSONResponse({"error": str(exc)}, status_code=400)
    logger.error("server.request_failed", exc_info=exc)
    return JSONResponse({"error": str(exc)}, status_code=500)


class SearchRequest(BaseModel):
    """Request model for semantic search."""

    query: str
    user_id: str | None = None
    included_types: list[str] | None = None
    max_results: int = 5
    similarity_threshold: float = 0.5
    debug: bool = False


class LeadQueryRequest(BaseModel):
    """Request model for the smart lead query."""

    query: str
    user_id: str | None = None
    max_results: int = 10
    similarity_threshold: float = 0.3
    filters: str | None = None


class LeadFields(BaseModel):
    name: str | None = None
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    title: str | None = None
    status: str | None = None
    source: str | None = None
    score: int | None = None
    notes: str | None = None
    lead_magnet: str | None = None
    utm_source: str | None = None
    utm_campaign: str | None = None


class LeadCreateRequest(LeadFields):
    user_id: str
    name: str


class LeadUpdateRequest(LeadFields):
    user_id: str


class CompanyFields(BaseModel):
    name: str | None = None
    industry: str | None = None
    description: str | None = None
    notes: str | None = None
    website: str | None = None
    size: str | None = None
    location: str | None = None
    status: str | None = None


class CompanyCreateRequest(CompanyFields):
    user_id: str
    name: str


class CompanyUpdateRequest(CompanyFields):
    user_id: str


class ContactFields(BaseModel):
    name: str | None = None
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    title: str | None = None
    status: str | None = None
    score: int | None = None
    persona: str | None = None
    notes: str | None = None


class ContactCreateRequest(ContactFields):
    user_id: str
    name: str


class ContactUpdateRequest(ContactFields):
    user_id: str


class DealFields(BaseModel):
    title: str | None = None
    company: str | None = None
    value: float | None = None
    stage: str | None = None
    priority: str | None = None
    close_probability: int | None = None
    expected_close_date: str | None = None
    next_step: str | None = None
    description: str | None = None
    outcome: str | None = None
    contact_id: str | None = None
    notes: str | None = None


class DealCreateRequest(DealFields):
    user_id: str
    title: str


class DealUpdateRequest(DealFields):
    user_id: str


class EmbeddingBatchRequest(BaseModel):
    """Backfill embeddings for one entity type, or one field of it."""

    user_id: str
    entity_type: Literal["lead", "contact", "deal", "company"]
    field: str | None = None
    batch_size: int | None = None


class ActivityChangeRequest(BaseModel):
    """An activity was created, updated or deleted."""

    change: Literal["create", "update", "delete"]
    user_id: str | None = None
    deal_id: str | None = None
    contact_id: str | None = None
    lead_id: str | None = None


def _updates(request: BaseModel) -> dict[str, Any]:
    return request.model_dump(exclude_unset=True, exclude={"user_id"})


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.post("/api/search")
async def semantic_search(request: SearchRequest):
    """Search deals, contacts, leads and companies by meaning."""
    try:
        services = get_services()
        kwargs: dict[str, Any] = {}
        if request.included_types is not None:
            kwargs["included_types"] = request.included_types
        response = await asyncio.to_thread(
            services.search_engine.search,
            query=request.query,
            user_id=request.user_id,
            max_results=request.max_results,
            similarity_threshold=request.similarity_threshold,
            **kwargs,
        )
        payload = response.model_dump()
        payload["average_similarity"] = response.average_similarity
        if request.debug:
            digest = similarity_digest(response)
            payload["digest"] = {
                "total": digest.total,
                "counts_by_type": digest.counts_by_type,
                "min_similarity": digest.min_similarity,
                "max_similarity": digest.max_similarity,
                "average_similarity": digest.average_similarity,
                "buckets": digest.buckets,
            }
        return payload
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/leads/query")
async def lead_query(request: LeadQueryRequest):
    """Answer a natural-language question about leads."""
    try:
        services = get_services()
        response = await asyncio.to_thread(
            services.lead_query.query,
            query=request.query,
            user_id=request.user_id,
            max_results=request.max_results,
            similarity_threshold=request.similarity_threshold,
            filters=request.filters,
        )
        return response.model_dump()
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/leads", status_code=201)
async def create_lead(request: LeadCreateRequest):
    try:
        services = get_services()
        lead_id = await asyncio.to_thread(
            services.leads.create_lead, _updates(request), user_id=request.user_id
        )
        return {"id": lead_id}
    except Exception as exc:
        return _error_response(exc)


@app.patch("/api/leads/{lead_id}")
async def update_lead(lead_id: str, request: LeadUpdateRequest):
    try:
        services = get_services()
        await asyncio.to_thread(
            services.leads.update_lead, lead_id, _updates(request), user_id=request.user_id
        )
        return {"id": lead_id, "updated": True}
    except Exception as exc:
        return _error_response(exc)


@app.delete("/api/leads/{lead_id}")
async def delete_lead(lead_id: str, user_id: str):
    try:
        services = get_services()
        await asyncio.to_thread(services.leads.delete_lead, lead_id, user_id=user_id)
        return {"id": lead_id, "deleted": True}
    except Exception as exc:
        return _error_response(exc)


@app.get("/api/leads/similar")
async def similar_leads(
    query: str,
    user_id: str,
    threshold: float = 0.7,
    max_results: int = 10,
):
    try:
        services = get_services()
        results = await asyncio.to_thread(
            services.leads.search_similar_leads,
            query,
            user_id=user_id,
            threshold=threshold,
            max_results=max_results,
        )
        return {"results": [result.model_dump() for result in results]}
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/contacts", status_code=201)
async def create_contact(request: ContactCreateRequest):
    try:
        services = get_services()
        contact_id = await asyncio.to_thread(
            services.contacts.create_contact, _updates(request), user_id=request.user_id
        )
        return {"id": contact_id}
    except Exception as exc:
        return _error_response(exc)


@app.patch("/api/contacts/{contact_id}")
async def update_contact(contact_id: str, request: ContactUpdateRequest):
    try:
        services = get_services()
        await asyncio.to_thread(
            services.contacts.update_contact,
            contact_id,
            _updates(request),
            user_id=request.user_id,
        )
        return {"id": contact_id, "updated": True}
    except Exception as exc:
        return _error_response(exc)


@app.delete("/api/contacts/{contact_id}")
async def delete_contact(contact_id: str, user_id: str):
    try:
        services = get_services()
        await asyncio.to_thread(services.contacts.delete_contact, contact_id, user_id=user_id)
        return {"id": contact_id, "deleted": True}
    except Exception as exc:
        return _error_response(exc)


@app.get("/api/contacts/similar")
async def similar_contacts(
    query: str,
    user_id: str,
    threshold: float = 0.7,
    max_results: int = 10,
):
    try:
        services = get_services()
        results = await asyncio.to_thread(
            services.contacts.search_similar_contacts,
            query,
            user_id=user_id,
            threshold=threshold,
            max_results=max_results,
        )
        return {"results": [result.model_dump() for result in results]}
    except Exception as exc:
        return _error_response(exc)


@app.get("/api/contacts/{contact_id}/recommendations")
async def contact_recommendations(contact_id: str, user_id: str, max_recommendations: int = 5):
    try:
        services = get_services()
        recommendations = await asyncio.to_thread(
            services.contacts.recommendations,
            contact_id,
            user_id=user_id,
            max_recommendations=max_recommendations,
        )
        return recommendations.model_dump()
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/deals", status_code=201)
async def create_deal(request: DealCreateRequest):
    try:
        services = get_services()
        deal_id = await asyncio.to_thread(
            services.deals.create_deal, _updates(request), user_id=request.user_id
        )
        return {"id": deal_id}
    except Exception as exc:
        return _error_response(exc)


@app.patch("/api/deals/{deal_id}")
async def update_deal(deal_id: str, request: DealUpdateRequest):
    try:
        services = get_services()
        await asyncio.to_thread(
            services.deals.update_deal, deal_id, _updates(request), user_id=request.user_id
        )
        return {"id": deal_id, "updated": True}
    except Exception as exc:
        return _error_response(exc)


@app.delete("/api/deals/{deal_id}")
async def delete_deal(deal_id: str, user_id: str):
    try:
        services = get_services()
        await asyncio.to_thread(services.deals.delete_deal, deal_id, user_id=user_id)
        return {"id": deal_id, "deleted": True}
    except Exception as exc:
        return _error_response(exc)


@app.get("/api/deals/similar")
async def similar_deals(
    query: str,
    user_id: str,
    threshold: float = 0.7,
    max_results: int = 10,
):
    try:
        services = get_services()
        results = await asyncio.to_thread(
            services.deals.search_similar_deals,
            query,
            user_id=user_id,
            threshold=threshold,
            max_results=max_results,
        )
        return {"results": [result.model_dump() for result in results]}
    except Exception as exc:
        return _error_response(exc)


@app.get("/api/deals/{deal_id}/recommendations")
async def deal_recommendations(deal_id: str, user_id: str, max_recommendations: int = 5):
    try:
        services = get_services()
        recommendations = await asyncio.to_thread(
            services.deals.recommendations,
            deal_id,
            user_id=user_id,
            max_recommendations=max_recommendations,
        )
        return recommendations.model_dump()
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/companies", status_code=201)
async def create_company(request: CompanyCreateRequest):
    try:
        services = get_services()
        company_id = await asyncio.to_thread(
            services.companies.create_company, _updates(request), user_id=request.user_id
        )
        return {"id": company_id}
    except Exception as exc:
        return _error_response(exc)


@app.patch("/api/companies/{company_id}")
async def update_company(company_id: str, request: CompanyUpdateRequest):
    try:
        services = get_services()
        await asyncio.to_thread(
            services.companies.update_company,
            company_id,
            _updates(request),
            user_id=request.user_id,
        )
        return {"id": company_id, "updated": True}
    except Exception as exc:
        return _error_response(exc)


@app.delete("/api/companies/{company_id}")
async def delete_company(company_id: str, user_id: str):
    try:
        services = get_services()
        await asyncio.to_thread(services.companies.delete_company, company_id, user_id=user_id)
        return {"id": company_id, "deleted": True}
    except Exception as exc:
        return _error_response(exc)


@app.get("/api/companies/similar")
async def similar_companies(
    query: str,
    user_id: str,
    threshold: float = 0.7,
    max_results: int = 10,
):
    try:
        services = get_services()
        results = await asyncio.to_thread(
            services.companies.search_similar_companies,
            query,
            user_id=user_id,
            threshold=threshold,
            max_results=max_results,
        )
        return {"results": [result.model_dump() for result in results]}
    except Exception as exc:
        return _error_response(exc)


@app.get("/api/companies/{company_id}/recommendations")
async def company_recommendations(company_id: str, user_id: str, max_recommendations: int = 5):
    try:
        services = get_services()
        recommendations = await asyncio.to_thread(
            services.companies.recommendations,
            company_id,
            user_id=user_id,
            max_recommendations=max_recommendations,
        )
        return recommendations.model_dump()
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/embeddings/batch")
async def batch_embeddings(request: EmbeddingBatchRequest):
    """Backfill missing embeddings."""
    try:
        services = get_services()
        result = await asyncio.to_thread(_run_batch, services, request)
        return {"entity_type": request.entity_type, "field": request.field, **asdict(result)}
    except Exception as exc:
        return _error_response(exc)


def _run_batch(services: Services, request: EmbeddingBatchRequest):
    if request.field is not None:
        return services.pipeline.batch_embed_field(
            ENTITY_TABLES[request.entity_type],
            request.field,
            request.user_id,
            batch_size=request.batch_size or 10,
        )
    if request.entity_type == "lead":
        return services.leads.batch_process(request.user_id)
    manager = {
        "contact": services.contacts,
        "deal": services.deals,
        "company": services.companies,
    }[request.entity_type]
    return manager.batch_process(request.user_id, batch_size=request.batch_size or 10)


@app.get("/api/embeddings/stats")
async def embedding_stats(user_id: str):
    try:
        services = get_services()
        managers = {
            "leads": services.leads,
            "contacts": services.contacts,
            "deals": services.deals,
            "companies": services.companies,
        }
        payload = {}
        for table, manager in managers.items():
            payload[table] = asdict(await asyncio.to_thread(manager.stats, user_id))
        return payload
    except Exception as exc:
        return _error_response(exc)


@app.get("/api/context/{entity_type}/{entity_id}")
async def entity_context(
    entity_type: Literal["lead", "contact", "deal"], entity_id: str, user_id: str
):
    """Composed context text of a user's entity, as it is embedded."""
    try:
        services = get_services()
        text = await asyncio.to_thread(
            services.pipeline.entity_context, entity_type, entity_id, user_id
        )
        if not text:
            raise RecordNotFoundError(f"{entity_type} not found: {entity_id}")
        return {"entity_type": entity_type, "entity_id": entity_id, "context": text}
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/activities/changed")
async def activity_changed(request: ActivityChangeRequest):
    """Refresh composite embeddings of the entities linked to an activity."""
    try:
        services = get_services()
        refreshed = await asyncio.to_thread(
            services.pipeline.handle_activity_change,
            request.change,
            user_id=request.user_id,
            deal_id=request.deal_id,
            contact_id=request.contact_id,
            lead_id=request.lead_id,
        )
        return {"refreshed": refreshed}
    except Exception as exc:
        return _error_response(exc)


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the FastAPI server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
