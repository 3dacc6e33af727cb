from __future__ import annotations


class RagError(Exception):
    """Base class for every error raised by the retrieval core."""


class ConfigurationError(RagError, ValueError):
    pass


# --- search engine ---

class EngineError(RagError):
    reason = "engine_error"


class EngineUnavailableError(EngineError):
    """Connection refused, timeout or failed health check."""

    reason = "engine_unavailable"


class EngineHTTPError(EngineError):
    def __init__(self, status: int, message: str):
        self.status = int(status)
        self.message = message
        super().__init__(f"HTTP error {status}: {message}")


class ResponseParseError(EngineError):
    pass


# --- pdf parsing ---

class PdfParseError(RagError):
    pass


class PdfFileNotFoundError(PdfParseError):
    pass


class InvalidPdfError(PdfParseError):
    pass


class UnreadablePdfError(PdfParseError):
    pass


class EmptyDocumentError(PdfParseError):
    pass


# --- indexing ---

class IndexingError(RagError):
    pass


class IndexingInProgressError(IndexingError):
    pass


# --- query time ---

class SearchError(RagError):
    reason = "search_failed"


class InvalidQueryError(SearchError, ValueError):
    reason = "invalid_query"


class NoIndexError(SearchError):
    reason = "no_index"

    def __init__(self, message: str = "No folder has been indexed yet"):
        super().__init__(message)


class NoRelevantContentError(SearchError):
    reason = "no_relevant_content"

    def __init__(self, message: str = "No relevant content found for the query"):
        super().__init__(message)


class ModelNotReadyError(SearchError):
    reason = "model_not_ready"

    def __init__(self, message: str = "Language model is not ready"):
        super().__init__(message)
