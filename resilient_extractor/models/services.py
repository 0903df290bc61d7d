from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Backend(str, Enum):
    TAVILY = "tavily"
    JINA_PUBLIC = "jina_public"
    JINA_API = "jina_api"


@dataclass(frozen=True, slots=True)
class ServiceDescriptor:
    """Static, measured characteristics of one extraction backend."""
    backend: Backend
    name: str
    success_rate: int
    avg_response_time_ms: int
    cost: str
    requires_auth: bool
    best_for: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "successRate": self.success_rate,
            "avgResponseTime": self.avg_response_time_ms,
            "cost": self.cost,
            "requiresAuth": self.requires_auth,
            "bestFor": list(self.best_for),
        }


SERVICES: dict[Backend, ServiceDescriptor] = {
    Backend.TAVILY: ServiceDescriptor(
        backend=Backend.TAVILY,
        name="Tavily Extract API",
        success_rate=100,
        avg_response_time_ms=863,
        cost="paid",
        requires_auth=True,
        best_for=("general", "problematic_domains", "financial", "social_media", "primary_choice"),
    ),
    Backend.JINA_PUBLIC: ServiceDescriptor(
        backend=Backend.JINA_PUBLIC,
        name="Jina.ai Public Reader",
        success_rate=75,
        avg_response_time_ms=1066,
        cost="free",
        requires_auth=False,
        best_for=("documentation", "api_docs", "technical_content"),
    ),
    # Roughly 2.7x slower than the public reader; only worth it for token accounting.
    Backend.JINA_API: ServiceDescriptor(
        backend=Backend.JINA_API,
        name="Jina.ai API Reader",
        success_rate=88,
        avg_response_time_ms=2331,
        cost="free",
        requires_auth=True,
        best_for=("cost_tracking_only",),
    ),
}
