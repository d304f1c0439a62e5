"""Document context providers: grounding snippets for prompt assembly.

Search is scoped by a folder id. Results are additive only; a failed or empty
search yields no snippets and never blocks prompt assembly.
"""

import logging
import os
from abc import ABC, abstractmethod

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class DocumentSnippet(BaseModel):
    source_name: str
    content: str


class DocumentContextProvider(ABC):
    """Returns zero or more snippets relevant to a query within a scope."""

    @abstractmethod
    async def search(self, query: str, scope_id: str) -> list[DocumentSnippet]:
        ...


class SearchDocumentsClient(DocumentContextProvider):
    """Calls a remote search-documents endpoint.

    The endpoint takes {query, folderId, matchCount, threshold} and returns
    {results: [...]}, each result carrying the chunk content and the name of
    the document it came from.
    """

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        match_count: int = 5,
        threshold: float = 0.5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._match_count = match_count
        self._threshold = threshold
        self._client = client or httpx.AsyncClient(timeout=10.0)

    @classmethod
    def from_env(cls) -> "SearchDocumentsClient | None":
        url = os.environ.get("YTANGENT_DOCUMENT_SEARCH_URL")
        if not url:
            return None
        return cls(url, api_key=os.environ.get("YTANGENT_DOCUMENT_SEARCH_KEY"))

    async def search(self, query: str, scope_id: str) -> list[DocumentSnippet]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        body = {
            "query": query,
            "folderId": scope_id,
            "matchCount": self._match_count,
            "threshold": self._threshold,
        }
        try:
            response = await self._client.post(self._url, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Document search failed for folder %s: %s", scope_id, e)
            return []

        if not isinstance(data, dict):
            logger.warning(
                "Document search for folder %s returned a %s, expected an object",
                scope_id, type(data).__name__,
            )
            return []

        snippets = []
        results = data.get("results")
        for result in results if isinstance(results, list) else []:
            if not isinstance(result, dict):
                continue
            content = result.get("content")
            if not content or not isinstance(content, str):
                continue
            source = result.get("document_name") or result.get("file_name") or "document"
            snippets.append(DocumentSnippet(source_name=str(source), content=content))
        logger.debug("Document search returned %d snippets", len(snippets))
        return snippets

    async def close(self) -> None:
        await self._client.aclose()
