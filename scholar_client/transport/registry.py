"""Service profile configuration.

The same streaming mechanism sits behind several front-ends that talk to
slightly different endpoints. A profile captures what differs between them:

- path: endpoint path appended to the configured base URL.
- prompt_key: JSON key carrying the prompt ("question" or "message").
- framing: how the response body is framed ("raw" or "line").
- which optional parameters the endpoint understands.

Callers pick a profile by name; everything wire-specific is resolved here.
"""

from dataclasses import dataclass
from typing import Literal, Mapping

from scholar_client.domain.exceptions import ValidationError


FramingName = Literal["raw", "line"]


@dataclass(frozen=True)
class ServiceProfile:
    """Wire conventions of one endpoint."""

    name: str
    path: str
    prompt_key: Literal["question", "message"]
    framing: FramingName
    supports_frameworks: bool = False
    supports_deep_analysis: bool = False
    frameworks_key: str = "frameworks"
    deep_analysis_key: str = "deep_analysis"


# Usuli framework scholar: plain concatenated text, optional framework subset
SCHOLAR_PROFILE = ServiceProfile(
    name="scholar",
    path="/ai-fiqh-scholar/generate",
    prompt_key="question",
    framing="raw",
    supports_frameworks=True,
)

# Chat assistant: "data: {...}" event lines, optional deep multi-framework analysis
ASSISTANT_PROFILE = ServiceProfile(
    name="assistant",
    path="/ai-fiqh-scholar/chat",
    prompt_key="message",
    framing="line",
    supports_deep_analysis=True,
)


PROFILE_REGISTRY: Mapping[str, ServiceProfile] = {
    "scholar": SCHOLAR_PROFILE,
    "assistant": ASSISTANT_PROFILE,
}


def get_profile(name: str) -> ServiceProfile:
    """Look up a profile by name, case-insensitively."""

    key = name.lower()
    for k, profile in PROFILE_REGISTRY.items():
        if k.lower() == key:
            return profile
    raise ValidationError(code="UNKNOWN_PROFILE", message=f"Unknown service profile: {name!r}")
