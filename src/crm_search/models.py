from pydantic import BaseModel, Field
from typing import Any, Literal, TypeAlias

ResultType: TypeAlias = Literal["deal", "contact", "lead", "company"]
MatchSource: TypeAlias = Literal["semantic", "keyword", "semantic+keyword"]

# Plural table name -> singular result type.
RESULT_TYPES: dict[str, ResultType] = {
    "deals": "deal",
    "contacts": "contact",
    "leads": "lead",
    "companies": "company",
}


class SemanticSearchResult(BaseModel):
    """A CRM record matched by a search, with its similarity to the query"""

    id: str = Field(description="Record id")
    type: ResultType = Field(description="Kind of CRM record")
    name: str = Field(description="Display name (deal title for deals)")
    similarity: float = Field(description="Cosine similarity to the query, 0-1")
    title: str | None = None
    company: str | None = None
    stage: str | None = None
    value: float | None = None
    status: str | None = None
    email: str | None = None
    source: str | None = None
    score: float | None = None
    persona: str | None = None
    industry: str | None = None
    website: str | None = None
    description: str | None = None
    matched_by: MatchSource = "semantic"

    @classmethod
    def from_row(
        cls,
        entity_type: str,
        row: dict[str, Any],
        *,
        similarity: float | None = None,
        matched_by: MatchSource = "semantic",
    ) -> "SemanticSearchResult":
        result_type = RESULT_TYPES[entity_type]
        if result_type == "deal":
            name = row.get("title") or ""
        else:
            name = row.get("name") or ""
        score = row.get("score")
        value = row.get("value")
        return cls(
            id=str(row["id"]),
            type=result_type,
            name=str(name),
            similarity=float(row["similarity"] if similarity is None else similarity),
            title=row.get("title"),
            company=row.get("company"),
            stage=row.get("stage"),
            value=float(value) if value is not None else None,
            status=row.get("status"),
            email=row.get("email"),
            source=row.get("source"),
            score=float(score) if score is not None else None,
            persona=row.get("persona"),
            industry=row.get("industry"),
            website=row.get("website"),
            description=row.get("description"),
            matched_by=matched_by,
        )


class SemanticSearchResponse(BaseModel):
    """Ranked results of a semantic search"""

    results: list[SemanticSearchResult] = Field(default_factory=list)
    query: str
    total_results: int = 0
    search_time_ms: float = 0.0

    @property
    def average_similarity(self) -> float:
        if not self.results:
            return 0.0
        return sum(r.similarity for r in self.results) / len(self.results)


class TopLead(BaseModel):
    """Lead summary returned with an answer; similarity is a 0-100 percentage"""

    id: str
    name: str
    company: str | None = None
    email: str | None = None
    status: str | None = None
    source: str | None = None
    score: float | None = None
    similarity: int


class LeadQueryResponse(BaseModel):
    """Natural-language answer to a lead question"""

    answer: str = Field(description="Answer text for the user")
    top_leads: list[TopLead] = Field(default_factory=list)
    query: str
    sources: list[str] = Field(default_factory=list)
    confidence: int = Field(description="Confidence in the answer, 0-100")


class CompanyInsights(BaseModel):
    common_industries: list[str] = Field(default_factory=list)
    market_opportunities: list[str] = Field(default_factory=list)
    competitor_analysis: str = ""


class CompanyRecommendations(BaseModel):
    """Similar companies and the suggestions derived from them"""

    similar_companies: list[SemanticSearchResult] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    insights: CompanyInsights = Field(default_factory=CompanyInsights)


class ContactInsights(BaseModel):
    common_titles: list[str] = Field(default_factory=list)
    common_companies: list[str] = Field(default_factory=list)
    average_engagement: str = "Unknown"


class ContactRecommendations(BaseModel):
    """Similar contacts and outreach suggestions"""

    similar_contacts: list[SemanticSearchResult] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    insights: ContactInsights = Field(default_factory=ContactInsights)


class DealRecommendations(BaseModel):
    """Similar deals and the value and stage patterns they suggest"""

    similar_deals: list[SemanticSearchResult] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
