"""Candidate generation strategies that query the catalog."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

from ..models import (
    AccountLink,
    CatalogItem,
    ConsumptionRecord,
    ContentType,
    RecommendationCandidate,
    TasteProfile,
)
from ..utils import format_rating, genre_name
from .tmdb import CatalogBatch, TMDBClient

logger = logging.getLogger(__name__)

TOP_GENRE_COUNT = 3
TOP_LOVED_COUNT = 3
LOVED_RATING = 4.0
ITEMS_PER_SEED = 2
TRENDING_GENRE_WEIGHT = 5.0
TRENDING_RANGE_BONUS = 10.0
ACCOUNT_BASE_SCORE = 100.0


@dataclass(slots=True)
class GenerationContext:
    """Inputs shared by all generators for one recommendation request."""

    catalog: TMDBClient
    limit: int
    profile: TasteProfile | None = None
    history: Sequence[ConsumptionRecord] = ()
    account: AccountLink | None = None


@dataclass(slots=True)
class GeneratorOutcome:
    """Candidates produced by one generator and how its catalog calls went."""

    source: str
    candidates: list[RecommendationCandidate] = field(default_factory=list)
    failed_calls: int = 0
    skipped: bool = False
    crashed: bool = False

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        if self.crashed:
            return "failed"
        if self.candidates:
            return "partial" if self.failed_calls else "ok"
        return "failed" if self.failed_calls else "empty"

    def accept(self, batch: CatalogBatch) -> list[CatalogItem]:
        """Return the batch items, counting the call as failed when needed."""

        if not batch.fetched:
            self.failed_calls += 1
            logger.info("%s generator lost a catalog call: %s", self.source, batch.error)
        return batch.items


class CandidateGenerator(ABC):
    """Base class for a candidate generation strategy.

    ``share`` divides the request limit into this generator's quota.
    """

    source: str = "base"
    share: int = 4

    def quota(self, context: GenerationContext) -> int:
        return max(1, context.limit // self.share)

    @abstractmethod
    async def generate(self, context: GenerationContext) -> GeneratorOutcome:
        """Produce this source's candidates for one request."""


class GenreAffinityGenerator(CandidateGenerator):
    """Top rated titles from the user's favourite genres."""

    source = "genre"
    share = 2

    async def generate(self, context: GenerationContext) -> GeneratorOutcome:
        outcome = GeneratorOutcome(self.source)
        profile = context.profile
        if profile is None or not profile.genre_affinity:
            return outcome

        top_genres = profile.top_genres(TOP_GENRE_COUNT)
        batches = await asyncio.gather(
            *(
                context.catalog.search_by_genre(genre_id, content_type)
                for genre_id in top_genres
                for content_type in ("movie", "series")
            )
        )

        for index, genre_id in enumerate(top_genres):
            affinity = profile.genre_affinity[genre_id]
            for batch in batches[index * 2 : index * 2 + 2]:
                for item in outcome.accept(batch)[:ITEMS_PER_SEED]:
                    outcome.candidates.append(
                        RecommendationCandidate(
                            content=item,
                            score=affinity * 10 + item.rating,
                            reasons=[
                                f"Favourite genre: {genre_name(genre_id)}",
                                f"Rated {format_rating(item.rating)}/10",
                            ],
                        )
                    )

        outcome.candidates = outcome.candidates[: self.quota(context)]
        return outcome


class SimilarityGenerator(CandidateGenerator):
    """Titles similar to the ones the user rated highly."""

    source = "similar"

    async def generate(self, context: GenerationContext) -> GeneratorOutcome:
        outcome = GeneratorOutcome(self.source)
        loved = sorted(
            (
                record
                for record in context.history
                if record.user_rating is not None and record.user_rating >= LOVED_RATING
            ),
            key=lambda record: record.user_rating or 0,
            reverse=True,
        )[:TOP_LOVED_COUNT]
        if not loved:
            return outcome

        batches = await asyncio.gather(
            *(
                context.catalog.get_similar(record.content_id, record.content_type)
                for record in loved
            )
        )
        for record, batch in zip(loved, batches):
            user_rating = record.user_rating or 0
            for item in outcome.accept(batch)[:ITEMS_PER_SEED]:
                outcome.candidates.append(
                    RecommendationCandidate(
                        content=item,
                        score=user_rating * 10 + item.rating,
                        reasons=[
                            f'Similar to "{record.title}"',
                            f"You rated it {user_rating:g}/5",
                        ],
                    )
                )

        outcome.candidates = outcome.candidates[: self.quota(context)]
        return outcome


class TrendingGenerator(CandidateGenerator):
    """This week's trending titles, boosted by the profile when present."""

    source = "trending"

    async def generate(self, context: GenerationContext) -> GeneratorOutcome:
        outcome = GeneratorOutcome(self.source)
        quota = self.quota(context)
        batch = await context.catalog.get_trending("week")
        profile = context.profile

        scored: list[RecommendationCandidate] = []
        for item in outcome.accept(batch)[: quota * 2]:
            score = item.popularity
            reasons = ["Trending this week"]
            if profile is not None:
                genre_bonus = sum(
                    profile.genre_affinity.get(genre_id, 0.0) for genre_id in item.genre_ids
                )
                score += genre_bonus * TRENDING_GENRE_WEIGHT
                if genre_bonus > 0:
                    reasons.append("Matches your favourite genres")
                if profile.rating_range.contains(item.rating):
                    score += TRENDING_RANGE_BONUS
                    reasons.append("Rated within your preferred range")
            scored.append(RecommendationCandidate(content=item, score=score, reasons=reasons))

        scored.sort(key=lambda candidate: candidate.score, reverse=True)
        outcome.candidates = scored[:quota]
        return outcome


class AccountGenerator(CandidateGenerator):
    """Recommendations computed by TMDB for a linked account."""

    source = "account"

    async def generate(self, context: GenerationContext) -> GeneratorOutcome:
        outcome = GeneratorOutcome(self.source)
        account = context.catalog.resolve_account(context.account)
        if account is None:
            outcome.skipped = True
            return outcome

        per_type = max(1, self.quota(context) // 2)
        content_types: tuple[ContentType, ...] = ("movie", "series")
        batches = await asyncio.gather(
            *(
                context.catalog.get_account_recommendations(content_type, account=account)
                for content_type in content_types
            )
        )
        for batch in batches:
            for item in outcome.accept(batch)[:per_type]:
                outcome.candidates.append(
                    RecommendationCandidate(
                        content=item,
                        score=ACCOUNT_BASE_SCORE + item.rating,
                        reasons=["Recommended by TMDB", "Based on your TMDB activity"],
                    )
                )
        return outcome


def default_generators() -> list[CandidateGenerator]:
    """Return the generators in the order that decides duplicate ties."""

    return [
        GenreAffinityGenerator(),
        SimilarityGenerator(),
        TrendingGenerator(),
        AccountGenerator(),
    ]
