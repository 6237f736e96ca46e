"""Error kinds raised by the Nova services.

Mandatory-path failures (session resolution, generation, final persistence)
abort a chat turn. Optional enrichment failures (one retrieval source, memory
consolidation) are logged and degrade gracefully.
"""

from uuid import UUID


class NovaError(Exception):
    """Base class for all Nova domain errors."""

    kind = "internal"


class NotFoundError(NovaError):
    """A session or memory does not exist (or was soft-deleted)."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: UUID):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class AccessDeniedError(NovaError):
    """The resource belongs to another profile."""

    kind = "access_denied"

    def __init__(self, entity: str, entity_id: UUID, profile_id: UUID):
        super().__init__(f"Profile {profile_id} cannot access {entity} {entity_id}")
        self.entity = entity
        self.entity_id = entity_id
        self.profile_id = profile_id


class UpstreamTimeoutError(NovaError):
    """A model or retrieval call exceeded its time budget."""

    kind = "upstream_timeout"


class GenerationError(NovaError):
    """The language model failed to produce a response."""

    kind = "generation_failure"


class PersistenceError(NovaError):
    """A store write failed."""

    kind = "persistence_failure"


class ExtractionError(NovaError):
    """A memory consolidation pass failed; retried on the next trigger."""

    kind = "extraction_failure"
