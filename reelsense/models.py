"""Pydantic models describing catalog entries and user signals."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .utils import utcnow

ContentType = Literal["movie", "series"]
Priority = Literal["low", "medium", "high"]
IdentityKey = tuple[int, ContentType]

TMDB_MEDIA_TYPES: dict[str, ContentType] = {"movie": "movie", "tv": "series"}


class CatalogItem(BaseModel):
    """A title as returned by the catalog service."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    type: ContentType
    title: str = Field(
        default="",
        validation_alias=AliasChoices("title", "name", "original_title", "original_name"),
    )
    overview: str | None = None
    genre_ids: list[int] = Field(default_factory=list)
    rating: float = Field(
        default=0.0,
        ge=0,
        le=10,
        validation_alias=AliasChoices("rating", "vote_average"),
    )
    popularity: float = 0.0
    poster_path: str | None = None
    release_date: str | None = Field(
        default=None,
        validation_alias=AliasChoices("release_date", "first_air_date"),
    )

    @field_validator("rating", "popularity", mode="before")
    @classmethod
    def _coerce_missing_number(cls, value: object) -> object:
        return 0.0 if value is None else value

    @field_validator("genre_ids", mode="before")
    @classmethod
    def _coerce_missing_genres(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def identity(self) -> IdentityKey:
        return (self.id, self.type)

    @classmethod
    def from_tmdb(
        cls, payload: dict[str, Any], *, content_type: ContentType | None = None
    ) -> "CatalogItem | None":
        """Build an item from a TMDB result, skipping people and unknown media.

        ``content_type`` is used for endpoints whose results omit
        ``media_type`` (discover, popular, similar).
        """

        media_type = payload.get("media_type")
        if isinstance(media_type, str):
            resolved = TMDB_MEDIA_TYPES.get(media_type)
        else:
            resolved = content_type
        if resolved is None or payload.get("id") is None:
            return None
        return cls.model_validate({**payload, "type": resolved})


class ConsumptionRecord(BaseModel):
    """A title the user has watched."""

    content_id: int
    content_type: ContentType
    title: str = ""
    genre_ids: list[int] = Field(default_factory=list)
    catalog_rating: float = Field(default=0.0, ge=0, le=10)
    consumed_at: datetime = Field(default_factory=utcnow)
    user_rating: float | None = Field(default=None, ge=1, le=5)
    completion_pct: float | None = Field(default=None, ge=0, le=100)

    @property
    def identity(self) -> IdentityKey:
        return (self.content_id, self.content_type)


class SavedItem(BaseModel):
    """A title the user has queued for later."""

    content_id: int
    content_type: ContentType
    title: str = ""
    genre_ids: list[int] = Field(default_factory=list)
    added_at: datetime = Field(default_factory=utcnow)
    priority: Priority | None = "medium"

    @property
    def identity(self) -> IdentityKey:
        return (self.content_id, self.content_type)


class RatingRange(BaseModel):
    min: float
    max: float

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


class TasteProfile(BaseModel):
    """Taste summary derived from the consumption history."""

    genre_affinity: dict[int, float] = Field(default_factory=dict)
    disliked_genres: set[int] = Field(default_factory=set)
    rating_range: RatingRange
    movie_to_series_ratio: float = Field(ge=0, le=1)
    binge_tendency: bool = False

    def top_genres(self, count: int) -> list[int]:
        """Return the ``count`` highest affinity genres, ties by id."""

        ranked = sorted(
            self.genre_affinity.items(), key=lambda entry: (-entry[1], entry[0])
        )
        return [genre_id for genre_id, _ in ranked[:count]]


class RecommendationCandidate(BaseModel):
    """A scored title with human readable reasons."""

    content: CatalogItem
    score: float
    reasons: list[str] = Field(default_factory=list)


class RecommendationReport(BaseModel):
    """Result of one aggregation call with the status of every source."""

    items: list[RecommendationCandidate] = Field(default_factory=list)
    sources: dict[str, str] = Field(default_factory=dict)
    used_fallback: bool = False


class StatsSummary(BaseModel):
    total_consumed: int = 0
    movie_count: int = 0
    series_count: int = 0
    saved_count: int = 0
    watch_time_minutes: int = 0
    genre_affinity: dict[int, float] = Field(default_factory=dict)
    binge_tendency: bool = False


class AccountLink(BaseModel):
    """TMDB v4 user credentials enabling account recommendations."""

    access_token: str
    account_id: str


class ConsumptionRequest(BaseModel):
    """Payload of a mark-watched action."""

    item: CatalogItem
    user_rating: float | None = Field(
        default=None,
        ge=1,
        le=5,
        validation_alias=AliasChoices("user_rating", "userRating", "rating"),
    )
    completion_pct: float | None = Field(
        default=None,
        ge=0,
        le=100,
        validation_alias=AliasChoices("completion_pct", "completionPct", "completion"),
    )


class SaveRequest(BaseModel):
    """Payload of an add-to-watchlist action."""

    item: CatalogItem
    priority: Priority = "medium"
