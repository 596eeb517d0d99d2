from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from config import settings

SearchType = Literal["name_search", "specialty_search", "location_search", "combined"]


class PersonName(BaseModel):
    first: Optional[str] = None
    last: Optional[str] = None
    middle: Optional[str] = None

    @property
    def full(self) -> str:
        return " ".join(p for p in [self.first, self.last] if p)


class LocationIntent(BaseModel):
    city: Optional[str] = None
    state: Optional[str] = None
    full: Optional[str] = None


class SearchIntent(BaseModel):
    name: Optional[PersonName] = None
    specialty: Optional[str] = None
    location: Optional[LocationIntent] = None
    search_type: SearchType = "specialty_search"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    source: Literal["nlp", "fallback"] = "fallback"

    @property
    def has_name(self) -> bool:
        return bool(self.name and (self.name.first or self.name.last))

    @property
    def has_specialty(self) -> bool:
        return bool(self.specialty)

    @property
    def has_location(self) -> bool:
        return bool(self.location and (self.location.city or self.location.state))

    @property
    def field_count(self) -> int:
        return sum([self.has_name, self.has_specialty, self.has_location])


def derive_search_type(has_name: bool, has_specialty: bool, has_location: bool) -> SearchType:
    if sum([has_name, has_specialty, has_location]) >= 2:
        return "combined"
    if has_name:
        return "name_search"
    if has_location:
        return "location_search"
    return "specialty_search"


class ProviderRecord(BaseModel):
    npi: str
    name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    credential: Optional[str] = None
    specialty: str = "General Practice"
    taxonomy_codes: List[str] = Field(default_factory=list)
    location: str = "Address not available"
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    phone: str = "Not available"
    rating: float = 0.0
    years_experience: int = 10
    place_id: Optional[str] = None
    website: Optional[str] = None
    photo_url: Optional[str] = None
    sources: List[str] = Field(default_factory=lambda: ["nppes"])

    @property
    def multi_source(self) -> bool:
        return "nppes" in self.sources and "places" in self.sources


class Confidence(BaseModel):
    name_score: float = Field(default=0, ge=0, le=100)
    specialty_score: float = Field(default=0, ge=0, le=100)
    location_score: float = Field(default=0, ge=0, le=100)
    source_bonus: float = Field(default=0, ge=0, le=100)
    total: float = Field(default=0, ge=0, le=100)


class RankedResult(ProviderRecord):
    confidence: Confidence


class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_more: bool


class SearchRequest(BaseModel):
    query: str = Field(..., description="Free-text search, e.g. 'retina surgeon in Tacoma, WA'")
    radius: Optional[int] = Field(default=None, description="Search radius in meters")
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=settings.DEFAULT_PAGE_SIZE)

    @field_validator("query")
    @classmethod
    def normalize_query(cls, v: str) -> str:
        return v.strip()


class SearchResponse(BaseModel):
    query: str
    specialty: str = "Not specified"
    location: Optional[str] = None
    intent: Optional[SearchIntent] = None
    strategy: Optional[str] = None
    fallback_step: Optional[str] = None
    results: List[RankedResult] = Field(default_factory=list)
    results_count: int = 0
    pagination: Optional[Pagination] = None
    search_radius: Optional[int] = None
    error: Optional[str] = None
    suggestions: Optional[List[str]] = None
