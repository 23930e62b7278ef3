"""Taste profile inference from a user's consumption history."""

from __future__ import annotations

from collections import defaultdict
from datetime import timedelta
from typing import Sequence

from .models import ConsumptionRecord, RatingRange, TasteProfile
from .utils import ensure_aware

AFFINITY_THRESHOLD = 3.5
DISLIKE_THRESHOLD = 2.5
RATING_FLOOR_PADDING = 1.0
RATING_CEILING_PADDING = 0.5
BINGE_WINDOW = timedelta(hours=4)
BINGE_RATIO = 0.3


def normalized_score(record: ConsumptionRecord) -> float:
    """Return the record's value on a 0-5 scale.

    An explicit user rating wins over the catalog rating, which is halved.
    """

    if record.user_rating is not None:
        return record.user_rating
    return record.catalog_rating / 2


def build_profile(records: Sequence[ConsumptionRecord]) -> TasteProfile | None:
    """Derive a taste profile from scratch, or ``None`` for an empty history."""

    if not records:
        return None

    totals: dict[int, float] = defaultdict(float)
    counts: dict[int, int] = defaultdict(int)
    for record in records:
        score = normalized_score(record)
        for genre_id in record.genre_ids:
            totals[genre_id] += score
            counts[genre_id] += 1

    genre_affinity: dict[int, float] = {}
    disliked_genres: set[int] = set()
    for genre_id, total in totals.items():
        mean = total / counts[genre_id]
        if mean >= AFFINITY_THRESHOLD:
            genre_affinity[genre_id] = mean
        elif mean < DISLIKE_THRESHOLD:
            disliked_genres.add(genre_id)

    ratings = [record.catalog_rating for record in records]
    rating_range = RatingRange(
        min=max(0.0, min(ratings) - RATING_FLOOR_PADDING),
        max=min(10.0, max(ratings) + RATING_CEILING_PADDING),
    )

    movie_count = sum(1 for record in records if record.content_type == "movie")
    series_count = len(records) - movie_count
    if movie_count + series_count:
        ratio = movie_count / (movie_count + series_count)
    else:  # pragma: no cover - unreachable with a non-empty history
        ratio = 0.5

    return TasteProfile(
        genre_affinity=genre_affinity,
        disliked_genres=disliked_genres,
        rating_range=rating_range,
        movie_to_series_ratio=ratio,
        binge_tendency=detect_binge_tendency(records),
    )


def detect_binge_tendency(records: Sequence[ConsumptionRecord]) -> bool:
    """Return whether close-together viewings dominate the history."""

    if not records:
        return False
    timestamps = sorted(ensure_aware(record.consumed_at) for record in records)
    close_pairs = sum(
        1
        for previous, current in zip(timestamps, timestamps[1:])
        if current - previous < BINGE_WINDOW
    )
    return close_pairs / len(records) > BINGE_RATIO
