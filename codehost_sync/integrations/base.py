"""Base HTTP client for remote integrations and the integration error types."""

from typing import Optional, Dict, Any, List, AsyncIterator, Awaitable, Callable, Protocol, TypeVar
import json as jsonlib
import logging
import httpx


logger = logging.getLogger(__name__)

T = TypeVar("T")


class IntegrationError(Exception):
    """Base integration error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_body = response_body


class ConfigurationError(IntegrationError):
    """Required configuration is missing or unusable."""
    pass


class AuthenticationError(IntegrationError):
    """Authentication failed."""
    pass


class OAuthNotSupportedError(IntegrationError):
    """The integration type does not authenticate through OAuth."""
    pass


class RemoteAPIError(IntegrationError):
    """The remote API answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        response_body: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message, status_code=status_code, response_body=response_body)
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}

    @classmethod
    def from_response(cls, response: httpx.Response) -> "RemoteAPIError":
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        return cls(
            f"{response.request.method} {response.request.url.path} "
            f"failed with status {response.status_code}",
            status_code=response.status_code,
            response_body=body,
            headers=dict(response.headers.items()),
        )

    @property
    def retry_after(self) -> Optional[str]:
        return self.headers.get("retry-after")


class NetworkError(IntegrationError):
    """The request never produced a response."""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code


class WebhookVerificationError(IntegrationError):
    """Webhook signature verification failed."""
    pass


class IntegrationNotFoundError(IntegrationError):
    """No integration matches the given id."""
    pass


class RetryExecutor(Protocol):
    async def execute_with_retry(
        self, operation: Callable[[], Awaitable[T]], options: Optional[Any] = None
    ) -> T:
        ...

    async def wait_if_approaching_limit(self, headers: Any) -> None:
        ...


class BaseIntegrationClient:
    """Thin wrapper around ``httpx.AsyncClient``.

    Every failure leaves this class as either ``RemoteAPIError`` (the server
    answered with an error status) or ``NetworkError`` (no answer at all), so
    the retry executor only has two shapes to classify.
    """

    default_headers: Dict[str, str] = {}
    auth_scheme = "Bearer"

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryExecutor] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self.retry = retry

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    def build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, Any]],
        json: Optional[Dict[str, Any]],
        data: Optional[Dict[str, Any]],
    ) -> httpx.Response:
        try:
            response = await self.http_client.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json,
                data=data,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {url} timed out", code="ETIMEDOUT") from e
        except httpx.NetworkError as e:
            raise NetworkError(f"{method} {url} connection failed: {e}", code="ECONNRESET") from e
        except httpx.HTTPError as e:
            raise IntegrationError(f"{method} {url} failed: {e}") from e

        if response.is_error:
            raise RemoteAPIError.from_response(response)
        return response

    async def make_api_request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an API request, retried through the executor when one is set."""
        url = self.build_url(path)
        request_headers = {**self.default_headers, **(headers or {})}
        if token:
            request_headers["Authorization"] = f"{self.auth_scheme} {token}"

        async def operation() -> httpx.Response:
            return await self._send(method, url, request_headers, params, json, data)

        if self.retry is None:
            return await operation()
        return await self.retry.execute_with_retry(operation)

    async def paginate_api_results(
        self,
        path: str,
        token: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        per_page: int = 100,
        max_pages: Optional[int] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield items page by page until an empty or short page."""
        page = 1

        while True:
            request_params = dict(params or {})
            request_params.update({"per_page": per_page, "page": page})

            response = await self.make_api_request("GET", path, token=token, params=request_params)
            results = self.extract_results_from_response(response.json())
            for result in results:
                yield result

            if len(results) < per_page:
                break

            if max_pages and page >= max_pages:
                logger.warning(f"Stopped paginating {path} after {max_pages} pages")
                break

            page += 1

            if self.retry is not None:
                await self.retry.wait_if_approaching_limit(response.headers)

    def extract_results_from_response(self, data: Any) -> List[Dict[str, Any]]:
        """Extract results from paginated response (override if needed)."""
        if isinstance(data, list):
            return data
        elif isinstance(data, dict) and "items" in data:
            return data["items"]
        return []


def parse_json_body(body: bytes) -> Dict[str, Any]:
    """Decode a webhook body, raising ``ValueError`` on anything but a JSON object."""
    payload = jsonlib.loads(body)
    if not isinstance(payload, dict):
        raise ValueError("Webhook payload must be a JSON object")
    return payload
