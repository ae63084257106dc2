"""Domain models for caller identity."""

from dataclasses import dataclass

from tutor_sessions.domain.statuses import ActorRole


@dataclass(frozen=True)
class Caller:
    """Resolved identity supplied by the authentication layer."""

    user_id: str
    role: ActorRole
