from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from deepfind.config import settings
from deepfind.rag.errors import (
    EngineHTTPError,
    EngineUnavailableError,
    ResponseParseError,
)
from deepfind.rag.types import DocumentChunk, SearchOptions, SearchResponse
from deepfind.utils.logging import get_logger, truncate


class SearchEngineClient:
    """Thin client for a Meilisearch-compatible full-text engine.

    Every request has a finite timeout. Transport failures and timeouts
    surface as EngineUnavailableError, non-2xx statuses as EngineHTTPError
    and undecodable bodies as ResponseParseError, so callers can decide
    what is retryable.
    """

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:7700",
        api_key: str = "",
        timeout_s: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)
        self.log = logger or get_logger("engine")
        self._http = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(self.timeout_s),
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "SearchEngineClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # --- transport ---

    def _request(self, method: str, path: str, body: Any = None) -> httpx.Response:
        try:
            resp = self._http.request(method, path, json=body)
        except httpx.TimeoutException as e:
            raise EngineUnavailableError(f"{method} {path} timed out after {self.timeout_s}s") from e
        except httpx.TransportError as e:
            raise EngineUnavailableError(f"{method} {path} failed: {type(e).__name__}: {e}") from e

        if resp.status_code >= 400:
            raise EngineHTTPError(resp.status_code, truncate(resp.text or "Unknown error"))
        return resp

    def _json(self, resp: httpx.Response, what: str) -> Any:
        try:
            return resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self.log.warning("ENGINE bad json | call=%s | sample=%s", what, truncate(resp.text))
            raise ResponseParseError(f"Failed to decode {what} response: {e}") from e

    # --- API ---

    def health_check(self) -> bool:
        try:
            self._request("GET", "/health")
            return True
        except (EngineUnavailableError, EngineHTTPError) as e:
            self.log.info("ENGINE health fail | url=%s | err=%s", self.base_url, e)
            return False

    def create_index(self, uid: str, primary_key: str = "id") -> Dict[str, Any]:
        resp = self._request("POST", "/indexes", {"uid": uid, "primaryKey": primary_key})
        return self._json(resp, "create_index")

    def delete_index(self, uid: str) -> Dict[str, Any]:
        resp = self._request("DELETE", f"/indexes/{uid}")
        return self._json(resp, "delete_index")

    def get_index(self, uid: str) -> Dict[str, Any]:
        resp = self._request("GET", f"/indexes/{uid}")
        return self._json(resp, "get_index")

    def add_documents(self, uid: str, documents: Sequence[DocumentChunk | Dict[str, Any]]) -> Dict[str, Any]:
        payload: List[Dict[str, Any]] = [
            d.to_document() if isinstance(d, DocumentChunk) else dict(d) for d in documents
        ]
        resp = self._request("POST", f"/indexes/{uid}/documents", payload)
        return self._json(resp, "add_documents")

    def search(self, uid: str, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        body = (options or SearchOptions()).to_body(query)
        resp = self._request("POST", f"/indexes/{uid}/search", body)

        if not resp.content:
            raise ResponseParseError("Empty search response")
        try:
            parsed = SearchResponse.model_validate_json(resp.content)
        except ValidationError as e:
            self.log.warning(
                "ENGINE bad search response | index=%s | sample=%s", uid, truncate(resp.text)
            )
            raise ResponseParseError(f"Failed to parse search response: {e.error_count()} errors") from e

        self.log.debug(
            "ENGINE search ok | index=%s | q=%r | hits=%s | took_ms=%s",
            uid, query, len(parsed.hits), parsed.processing_time_ms,
        )
        return parsed


def build_engine(logger: Optional[logging.Logger] = None) -> SearchEngineClient:
    return SearchEngineClient(
        base_url=settings.MEILI_URL,
        api_key=settings.MEILI_API_KEY,
        timeout_s=settings.MEILI_TIMEOUT_S,
        logger=logger,
    )
