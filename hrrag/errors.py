"""Exception hierarchy for the HR RAG pipeline.

    HRRagError
    +-- ConfigurationError       (missing credentials, unknown models)
    +-- SearchUnavailableError   (every primary search strategy failed)
    +-- TenantValidationError    (tenant missing or inactive)
    +-- DocumentNotFoundError
    +-- DocumentExtractionError  (unreadable PDF / no text)
    +-- LLMOutputError           (malformed completion output)

Optional stages never let these escape: LLM and reranker failures are
mapped to their fallbacks inside the owning module.  Only the primary
search path and tenant validation abort a retrieval request.
"""

from __future__ import annotations


class HRRagError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(HRRagError, ValueError):
    """A required credential or model setting is missing or unknown."""


class SearchUnavailableError(HRRagError):
    """Raised when both the hybrid and vector search RPCs fail.

    *tokens* and *cost* carry the query embedding that was already paid
    for before the RPCs failed.
    """

    def __init__(self, message: str, *, tokens: int = 0, cost: float = 0.0) -> None:
        self.tokens = tokens
        self.cost = cost
        super().__init__(message)


class TenantValidationError(HRRagError):
    def __init__(self, tenant_id: str, reason: str) -> None:
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__(f"Tenant {tenant_id!r} {reason}")


class DocumentNotFoundError(HRRagError):
    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"Document {document_id!r} not found")


class DocumentExtractionError(HRRagError):
    """The uploaded file yielded no usable text."""


class LLMOutputError(HRRagError):
    """A completion could not be parsed into the expected structure."""
