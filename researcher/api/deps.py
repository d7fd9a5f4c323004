from __future__ import annotations

from researcher.config import settings
from researcher.services.broadcaster import TraceBroadcaster
from researcher.services.quota import QuotaTracker
from researcher.services.research_service import ResearchService
from researcher.services.session_store import get_session_store

_service: ResearchService | None = None


def get_research_service() -> ResearchService:
    """Process-wide research service (FastAPI dependency)."""
    global _service
    if _service is None:
        _service = ResearchService(
            store=get_session_store(settings),
            broadcaster=TraceBroadcaster(max_queue=settings.subscriber_queue_size),
            quota=QuotaTracker(settings.daily_completion_limit),
            config=settings,
        )
    return _service


def set_research_service(service: ResearchService | None) -> None:
    """Swap the process-wide service (tests, alternative wiring)."""
    global _service
    _service = service
