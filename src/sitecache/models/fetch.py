from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel


class FetchResult(BaseModel):
    """Uniform outcome of the fetch strategy chain."""

    success: bool
    url: str
    display_name: str = "Unknown"
    normalized_text: str | None = None
    length: int | None = None
    method_used: str | None = None
    error: str | None = None


@dataclass
class NormalizedPage:
    """Output of the markup normalizer."""

    normalized_text: str
    display_name: str
    # description / og_title / og_description / keywords, when present
    metadata: dict[str, str] = field(default_factory=dict)
