from fastapi import HTTPException, status


class RecoError(Exception):
    """Base class for anticipated failures of the answering pipeline."""


class EmbeddingError(RecoError):
    """Embedding call failed or returned an empty vector."""


class RetrievalError(RecoError):
    """Vector search or review lookup failed."""


class GenerationError(RecoError):
    """A single generation call failed (transport, HTTP status or timeout)."""


class SynthesisEmpty(RecoError):
    """Every model-backed synthesis tier produced empty text."""


class PersistenceError(RecoError):
    """A conversation, message or research write failed."""


class SuggestionError(RecoError):
    """Follow-up generation or parsing produced nothing usable."""


class NotFoundException(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
        )
