"""
Minimal Jira Cloud REST v3 client used by the report generator.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

SEARCH_FIELDS = [
    "summary",
    "status",
    "assignee",
    "priority",
    "created",
    "updated",
    "duedate",
    "labels",
]


class JiraClient:
    """Issue tracker client for a single Jira site"""

    def __init__(
        self,
        domain: str,
        email: str,
        api_token: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.domain = domain.rstrip("/")
        self.auth = (email, api_token)
        self.headers = {"Accept": "application/json"}
        self.timeout = timeout
        self._transport = transport

    def _url(self, endpoint: str) -> str:
        return f"{self.domain}/rest/api/3/{endpoint}"

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def test_connection(self) -> bool:
        """Check that the credentials are accepted"""
        if not self.domain or not self.auth[1]:
            return False
        try:
            with self._client() as client:
                response = client.get(self._url("myself"), auth=self.auth, headers=self.headers)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Failed to connect to Jira: {e}")
            return False

    def search(self, query: str, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Run a JQL search and return the raw issue documents.

        Raises:
            httpx.HTTPError: on transport failures or non-2xx responses
        """
        payload = {
            "jql": query,
            "fields": SEARCH_FIELDS,
            "maxResults": limit,
        }
        with self._client() as client:
            response = client.post(
                self._url("search"),
                json=payload,
                auth=self.auth,
                headers=self.headers,
            )
            response.raise_for_status()
            data = response.json()

        return data.get("issues") or []
