"""GitHub REST API client."""

from datetime import datetime
from typing import Dict, Any, List, Optional, AsyncIterator
import logging
import httpx

from codehost_sync.integrations.base import BaseIntegrationClient, RetryExecutor
from codehost_sync.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class GitHubClient(BaseIntegrationClient):
    """GitHub API access for one token at a time.

    The token is passed per call; the same client serves app JWTs,
    installation tokens and OAuth tokens.
    """

    default_headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryExecutor] = None,
    ):
        settings = settings or get_settings()
        super().__init__(
            settings.github_api_base_url,
            http_client=http_client,
            retry=retry,
            timeout=settings.http_timeout,
        )
        self.max_pages = settings.sync_max_pages

    def extract_results_from_response(self, data: Any) -> List[Dict[str, Any]]:
        # /installation/repositories wraps the list
        if isinstance(data, dict) and "repositories" in data:
            return data["repositories"]
        return super().extract_results_from_response(data)

    async def get_repository(self, full_name: str, token: str) -> Dict[str, Any]:
        response = await self.make_api_request("GET", f"/repos/{full_name}", token=token)
        return response.json()

    def iter_issues(
        self,
        full_name: str,
        token: str,
        since: Optional[datetime] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        params: Dict[str, Any] = {"state": "all", "sort": "updated", "direction": "desc"}
        if since:
            params["since"] = since.isoformat()
        return self.paginate_api_results(
            f"/repos/{full_name}/issues", token=token, params=params, max_pages=self.max_pages
        )

    def iter_pull_requests(self, full_name: str, token: str) -> AsyncIterator[Dict[str, Any]]:
        return self.paginate_api_results(
            f"/repos/{full_name}/pulls",
            token=token,
            params={"state": "all", "sort": "updated", "direction": "desc"},
            max_pages=self.max_pages,
        )

    def iter_commits(
        self,
        full_name: str,
        token: str,
        branch: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if branch:
            params["sha"] = branch
        return self.paginate_api_results(
            f"/repos/{full_name}/commits", token=token, params=params, max_pages=self.max_pages
        )
