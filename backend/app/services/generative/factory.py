"""Generative backend factory."""
from __future__ import annotations

import logging
from typing import Optional

from app.core.config import settings
from app.services.generative.openai_proposer import OpenAIActivityProposer
from app.services.scheduling.candidates import ActivityProposer

logger = logging.getLogger(__name__)


def get_activity_proposer() -> Optional[ActivityProposer]:
    """Return the configured proposer, or None to use rule-based activities only."""
    provider = settings.generation_provider.lower()
    if provider in ("", "none", "disabled"):
        return None
    if provider != "openai":
        logger.warning("Unknown generation provider %r; using rule-based activities", provider)
        return None
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY missing; using rule-based activities.")
        return None
    return OpenAIActivityProposer(
        settings.openai_api_key,
        model=settings.openai_model,
        timeout_seconds=settings.generation_timeout_seconds,
    )
