"""
Microsoft Graph Client Module

Thin Microsoft Graph REST client on top of requests, authenticated with an
azure-identity credential.
"""

import logging
import time
from typing import Dict, Any, List, Optional

import requests

from .exceptions import GraphApiError

logger = logging.getLogger(__name__)

GRAPH_ENDPOINT = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"


class GraphClient:
    """Issue Microsoft Graph requests with a cached bearer token."""

    def __init__(self, credential, base_url: str = GRAPH_ENDPOINT,
                 session: Optional[requests.Session] = None, timeout: int = 60):
        """
        Initialize the GraphClient.

        Args:
            credential: azure-identity credential (anything with get_token)
            base_url: Graph endpoint including API version
            session: Optional requests session to reuse
            timeout: Per-request timeout in seconds
        """
        self.credential = credential
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout
        self._token = None

    def _get_access_token(self) -> str:
        """Return a cached token, refreshing it five minutes before expiry."""
        if self._token is None or self._token.expires_on - 300 <= time.time():
            self._token = self.credential.get_token(GRAPH_SCOPE)
        return self._token.token

    def _url(self, path: str) -> str:
        if path.startswith('https://'):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 body: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        request_headers = {
            "Authorization": f"Bearer {self._get_access_token()}",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)

        url = self._url(path)
        logger.debug("Graph %s %s", method, url)
        response = self.session.request(
            method,
            url,
            params=params,
            json=body,
            headers=request_headers,
            timeout=self.timeout,
        )

        if response.status_code >= 400:
            raise GraphApiError(
                f"Graph {method} {path} failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        # PATCH and DELETE answer 204 No Content
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def get(self, path: str, params: Optional[Dict[str, Any]] = None,
            headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """GET a single Graph resource."""
        return self._request('GET', path, params=params, headers=headers)

    def get_all(self, path: str, params: Optional[Dict[str, Any]] = None,
                headers: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """
        GET a collection and follow @odata.nextLink until exhausted.

        Args:
            path: Collection path relative to the Graph endpoint
            params: Query parameters for the first page

        Returns:
            All items across pages
        """
        items: List[Dict[str, Any]] = []
        page = self.get(path, params=params, headers=headers)
        items.extend(page.get('value', []))

        next_link = page.get('@odata.nextLink')
        while next_link:
            # nextLink already carries the query string
            page = self.get(next_link, headers=headers)
            items.extend(page.get('value', []))
            next_link = page.get('@odata.nextLink')

        return items

    def post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST a new Graph resource."""
        return self._request('POST', path, body=body)

    def patch(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """PATCH an existing Graph resource."""
        return self._request('PATCH', path, body=body)
