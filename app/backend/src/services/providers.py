"""Collaborator wiring shared by the API and the worker.

FastAPI routes depend on these functions so tests can swap them through
``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from app.backend.src.core.config import get_settings
from app.backend.src.core.storage import ObjectStorage, StagingArea

from .classification import OpenAIContextClassifier
from .google_drive import FolderResolver, GoogleDriveStaging
from .ocr import PlaceholderExtractor
from .recommendations import PerplexityRecommender
from .s3 import S3Storage


@lru_cache()
def get_staging() -> StagingArea:
    return GoogleDriveStaging(settings=get_settings())


@lru_cache()
def get_storage() -> ObjectStorage:
    return S3Storage(get_settings())


@lru_cache()
def get_folder_resolver() -> FolderResolver:
    settings = get_settings()
    return FolderResolver(
        get_staging(),
        base_folder_id=settings.google_drive_base_folder_id,
        folder_map=settings.drive_folder_map,
    )


def get_extractor() -> PlaceholderExtractor:
    return PlaceholderExtractor()


def get_classifier() -> OpenAIContextClassifier:
    settings = get_settings()
    return OpenAIContextClassifier(api_key=settings.openai_api_key, model=settings.openai_model)


def get_recommender() -> PerplexityRecommender:
    settings = get_settings()
    return PerplexityRecommender(
        api_key=settings.perplexity_api_key,
        model=settings.perplexity_model,
        timeout=settings.perplexity_timeout_seconds,
    )


__all__ = [
    "get_classifier",
    "get_extractor",
    "get_folder_resolver",
    "get_recommender",
    "get_staging",
    "get_storage",
]
