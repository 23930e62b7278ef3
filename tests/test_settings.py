"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from reelsense.config import Settings


def test_defaults() -> None:
    """Settings should provide working defaults without an environment."""

    settings = Settings(_env_file=None)

    assert settings.app_name == "ReelSense"
    assert settings.tmdb_language == "en-US"
    assert settings.consumption_capacity == 500
    assert settings.recommendation_limit == 20
    assert settings.profile_cache_size == 1024
    assert str(settings.tmdb_api_url).startswith("https://api.themoviedb.org/3")


def test_language_is_normalised() -> None:
    """Underscore locales should be converted to TMDB's format."""

    assert Settings(_env_file=None, TMDB_LANGUAGE="fr_fr").tmdb_language == "fr-FR"
    assert Settings(_env_file=None, TMDB_LANGUAGE="DE").tmdb_language == "de"
    assert Settings(_env_file=None, TMDB_LANGUAGE="  ").tmdb_language == "en-US"


def test_blank_credentials_are_missing() -> None:
    """Blank credentials should not count as configured."""

    settings = Settings(_env_file=None, TMDB_API_KEY="   ", TMDB_READ_ACCESS_TOKEN="")

    assert settings.tmdb_api_key is None
    assert settings.tmdb_read_access_token is None
    assert settings.has_tmdb_credentials is False


def test_either_credential_is_enough() -> None:
    assert Settings(_env_file=None, TMDB_API_KEY="key").has_tmdb_credentials is True
    assert Settings(_env_file=None, TMDB_READ_ACCESS_TOKEN="token").has_tmdb_credentials is True


def test_capacity_must_be_positive() -> None:
    """Capacity and limits should be validated."""

    with pytest.raises(ValidationError):
        Settings(_env_file=None, CONSUMPTION_CAPACITY=0)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, RECOMMENDATION_LIMIT=101)
