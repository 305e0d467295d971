"""
Base API client class for Manga Sync Service.
"""

from typing import Optional, Dict, Any
from dataclasses import dataclass
import requests

USER_AGENT = "MangaSync/1.0"


@dataclass
class APIError(Exception):
    """Custom exception for API errors."""
    message: str
    status_code: Optional[int] = None
    response_data: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        if self.status_code:
            return f"API Error {self.status_code}: {self.message}"
        return f"API Error: {self.message}"


class BaseClient:
    """
    Base class for API clients with common functionality.

    Requests are attempted once; retrying is left to the caller so that
    rate limits and transient failures can be told apart.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from endpoint."""
        return f"{self.base_url}{endpoint}"

    def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Make an HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint
            **kwargs: Additional arguments for requests

        Returns:
            Response JSON data

        Raises:
            APIError: If the request fails
        """
        url = self._build_url(endpoint)

        kwargs.setdefault("timeout", self.timeout)

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.ConnectionError as e:
            raise APIError(f"Connection error: {str(e)}")
        except requests.exceptions.Timeout as e:
            raise APIError(f"Request timeout: {str(e)}")
        except requests.exceptions.RequestException as e:
            raise APIError(f"Request failed: {str(e)}")

        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {"error": response.text}

            raise APIError(
                message=_error_message(error_data, response.text),
                status_code=response.status_code,
                response_data=error_data,
            )

        try:
            return response.json()
        except ValueError:
            raise APIError(
                f"Invalid JSON response from {endpoint}",
                status_code=response.status_code,
            )

    def get(self, endpoint: str, **kwargs) -> Dict[str, Any]:
        """Make a GET request."""
        return self._request("GET", endpoint, **kwargs)

    def close(self) -> None:
        """Close the session."""
        self.session.close()


def _error_message(error_data: Any, fallback: str) -> str:
    """Pull a readable message out of an error body."""
    if isinstance(error_data, dict):
        # MangaDex: {"result": "error", "errors": [{"title": ..., "detail": ...}]}
        errors = error_data.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0] or {}
            return first.get("detail") or first.get("title") or fallback
        if error_data.get("error"):
            return str(error_data["error"])
    return fallback
