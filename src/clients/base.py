from __future__ import annotations

from typing import Any, ClassVar

import requests
from requests import Response
from urllib3.exceptions import MaxRetryError, ReadTimeoutError

RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429")


class ApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, payload: Any | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload

    @property
    def is_rate_limited(self) -> bool:
        if self.status_code == 429:
            return True
        message = str(self).lower()
        return any(marker in message for marker in RATE_LIMIT_MARKERS)

    @property
    def is_timeout(self) -> bool:
        cause = self.__cause__
        if isinstance(cause, requests.Timeout):
            return True
        # Exhausted urllib3 retries surface as ConnectionError(MaxRetryError(reason=...)).
        if isinstance(cause, requests.ConnectionError) and cause.args:
            wrapped = cause.args[0]
            return isinstance(wrapped, MaxRetryError) and isinstance(wrapped.reason, ReadTimeoutError)
        return False


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, ApiError):
        return exc.is_rate_limited
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


class JsonHttpClient:
    """Shared request/decode/error-wrapping logic for the JSON APIs we consume."""

    error_class: ClassVar[type[ApiError]] = ApiError
    service_name: ClassVar[str] = "API"

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json,
                timeout=self.timeout,
                headers={"Accept": "application/json", **(headers or {})},
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            resp = exc.response
            status_code = getattr(resp, "status_code", None)
            message, payload = self._extract_error(resp)
            raise self.error_class(message, status_code=status_code, payload=payload) from exc
        except requests.RequestException as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            raise self.error_class(f"{self.service_name} request failed", status_code=status_code) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise self.error_class(f"{self.service_name} returned invalid JSON", payload=response.text) from exc

    def _extract_error(self, response: Response | None) -> tuple[str, Any | None]:
        message = f"{self.service_name} request failed"
        payload: Any | None = None
        if response is None:
            return message, payload

        try:
            payload = response.json()
            if isinstance(payload, dict):
                detail = payload.get("message") or payload.get("error")
                if isinstance(detail, str) and detail:
                    message = detail
        except ValueError:
            payload = response.text
        return message, payload


__all__ = ["ApiError", "JsonHttpClient", "is_rate_limit_error"]
