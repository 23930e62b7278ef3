"""Recommendation aggregation and user statistics."""

from __future__ import annotations

import asyncio
import logging
import math
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Iterable, Sequence

from ..config import Settings
from ..models import (
    AccountLink,
    CatalogItem,
    ConsumptionRecord,
    IdentityKey,
    RecommendationCandidate,
    RecommendationReport,
    SavedItem,
    StatsSummary,
    TasteProfile,
)
from ..profile import build_profile
from ..utils import utcnow
from .generators import (
    CandidateGenerator,
    GenerationContext,
    GeneratorOutcome,
    default_generators,
)
from .repository import SignalRepository
from .signal_store import SignalStore
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

MOVIE_MINUTES = 120
EPISODE_MINUTES = 45
FALLBACK_REASONS = ("Currently popular", "Well rated by the community")
FALLBACK_SOURCE = "fallback"


class RecommendationService:
    """Turns a user's stored signals into ranked recommendations.

    Profiles are cached per user, least recently used first out, and dropped
    whenever that user's signal store reports a successful write. A profile
    built from reads that overlapped any write is returned but not cached.
    """

    def __init__(
        self,
        settings: Settings,
        catalog: TMDBClient,
        repository: SignalRepository,
        *,
        generators: Sequence[CandidateGenerator] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = settings
        self._catalog = catalog
        self._repository = repository
        self._generators = list(generators) if generators is not None else default_generators()
        self._clock = clock
        self._profiles: OrderedDict[str, TasteProfile | None] = OrderedDict()
        self._write_serial = 0

    def store_for(self, user_id: str) -> SignalStore:
        """Return the signal store of one user, wired to the profile cache."""

        return SignalStore(
            self._repository,
            user_id,
            capacity=self._settings.consumption_capacity,
            clock=self._clock,
            on_change=self.invalidate_profile,
        )

    def invalidate_profile(self, user_id: str) -> None:
        self._write_serial += 1
        self._profiles.pop(user_id, None)

    def _profile_for(
        self,
        user_id: str,
        history: Sequence[ConsumptionRecord],
        *,
        available: bool,
        serial: int,
    ) -> TasteProfile | None:
        """Return the cached profile or build one from ``history``.

        ``serial`` is the write serial observed before ``history`` was read.
        """

        if user_id in self._profiles:
            self._profiles.move_to_end(user_id)
            return self._profiles[user_id]
        profile = build_profile(history)
        if available and serial == self._write_serial:
            self._profiles[user_id] = profile
            while len(self._profiles) > self._settings.profile_cache_size:
                self._profiles.popitem(last=False)
        return profile

    async def get_profile(self, user_id: str) -> TasteProfile | None:
        serial = self._write_serial
        read = await self.store_for(user_id).load_consumption()
        return self._profile_for(
            user_id, read.items, available=read.available, serial=serial
        )

    async def generate_recommendations(
        self,
        user_id: str,
        limit: int | None = None,
        *,
        account: AccountLink | None = None,
    ) -> list[RecommendationCandidate]:
        report = await self.recommend(user_id, limit, account=account)
        return report.items

    async def recommend(
        self,
        user_id: str,
        limit: int | None = None,
        *,
        account: AccountLink | None = None,
    ) -> RecommendationReport:
        """Rank candidates from every generator, or popular titles as a fallback."""

        resolved_limit = self._settings.recommendation_limit if limit is None else limit
        if resolved_limit <= 0:
            return RecommendationReport()

        store = self.store_for(user_id)
        serial = self._write_serial
        history_read, saved_read = await asyncio.gather(
            store.load_consumption(), store.load_saved()
        )
        history = history_read.items
        excluded = self._identity_keys(history, saved_read.items)

        profile = self._profile_for(
            user_id, history, available=history_read.available, serial=serial
        )
        sources: dict[str, str] = {}
        ranked: list[RecommendationCandidate] = []

        if profile is not None or history:
            context = GenerationContext(
                catalog=self._catalog,
                limit=resolved_limit,
                profile=profile,
                history=history,
                account=account,
            )
            outcomes = await asyncio.gather(
                *(self._run_generator(generator, context) for generator in self._generators)
            )
            sources = {outcome.source: outcome.status for outcome in outcomes}
            merged = [
                candidate for outcome in outcomes for candidate in outcome.candidates
            ]
            ranked = self._rank(self._filter(merged, excluded), resolved_limit)

        if ranked:
            return RecommendationReport(items=ranked, sources=sources, used_fallback=False)

        logger.info("Using popularity fallback for user %s", user_id)
        fallback, status = await self._fallback_candidates(resolved_limit)
        sources[FALLBACK_SOURCE] = status
        return RecommendationReport(
            items=self._rank(self._filter(fallback, excluded), resolved_limit),
            sources=sources,
            used_fallback=True,
        )

    async def get_stats(self, user_id: str) -> StatsSummary:
        """Summarise the user's signals and current profile."""

        store = self.store_for(user_id)
        serial = self._write_serial
        history_read, saved_read = await asyncio.gather(
            store.load_consumption(), store.load_saved()
        )
        history = history_read.items
        profile = self._profile_for(
            user_id, history, available=history_read.available, serial=serial
        )

        movie_count = sum(1 for record in history if record.content_type == "movie")
        watch_time = 0.0
        for record in history:
            minutes = MOVIE_MINUTES if record.content_type == "movie" else EPISODE_MINUTES
            completion = 100.0 if record.completion_pct is None else record.completion_pct
            watch_time += minutes * completion / 100

        return StatsSummary(
            total_consumed=len(history),
            movie_count=movie_count,
            series_count=len(history) - movie_count,
            saved_count=len(saved_read.items),
            watch_time_minutes=round(watch_time),
            genre_affinity=dict(profile.genre_affinity) if profile else {},
            binge_tendency=profile.binge_tendency if profile else False,
        )

    async def _run_generator(
        self, generator: CandidateGenerator, context: GenerationContext
    ) -> GeneratorOutcome:
        try:
            outcome = await generator.generate(context)
        except Exception:
            logger.exception("%s generator failed", generator.source)
            return GeneratorOutcome(generator.source, crashed=True)
        logger.debug(
            "%s generator produced %s candidates (%s)",
            outcome.source,
            len(outcome.candidates),
            outcome.status,
        )
        return outcome

    async def _fallback_candidates(
        self, limit: int
    ) -> tuple[list[RecommendationCandidate], str]:
        per_source = math.ceil(limit / 3)
        batches = await asyncio.gather(
            self._catalog.get_popular("movie"),
            self._catalog.get_popular("series"),
            self._catalog.get_trending("day"),
        )

        items: list[CatalogItem] = []
        failures = 0
        for batch in batches:
            if not batch.fetched:
                failures += 1
            items.extend(batch.items[:per_source])

        candidates = [
            RecommendationCandidate(
                content=item,
                score=item.rating + item.popularity / 100,
                reasons=list(FALLBACK_REASONS),
            )
            for item in items
        ]
        if failures == len(batches):
            logger.warning("All fallback catalog calls failed")
            status = "failed"
        elif failures:
            status = "partial"
        else:
            status = "ok" if candidates else "empty"
        return candidates, status

    @staticmethod
    def _identity_keys(
        history: Iterable[ConsumptionRecord], saved: Iterable[SavedItem]
    ) -> set[IdentityKey]:
        keys: set[IdentityKey] = {record.identity for record in history}
        keys.update(item.identity for item in saved)
        return keys

    @staticmethod
    def _filter(
        candidates: Iterable[RecommendationCandidate], excluded: set[IdentityKey]
    ) -> list[RecommendationCandidate]:
        """Keep the first candidate per title and drop anything already known."""

        seen: set[IdentityKey] = set()
        kept: list[RecommendationCandidate] = []
        for candidate in candidates:
            key = candidate.content.identity
            if key in seen:
                continue
            seen.add(key)
            if key in excluded:
                continue
            kept.append(candidate)
        return kept

    @staticmethod
    def _rank(
        candidates: list[RecommendationCandidate], limit: int
    ) -> list[RecommendationCandidate]:
        # sorted() is stable, so equal scores keep generator order.
        return sorted(candidates, key=lambda candidate: candidate.score, reverse=True)[:limit]
