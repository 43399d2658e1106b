"""Synchronization of GitHub repositories, issues, pull requests and commits."""

import asyncio
from typing import Dict, Any, List, Optional, Type, TypeVar
from datetime import datetime
import logging

from codehost_sync.core.database import Database, COLLECTIONS
from codehost_sync.integrations.base import (
    AuthenticationError,
    ConfigurationError,
    IntegrationError,
    IntegrationNotFoundError,
)
from codehost_sync.integrations.github import GitHubClient
from codehost_sync.models import (
    Integration,
    IntegrationType,
    GitHubRepository,
    GitHubIssue,
    GitHubPullRequest,
    GitHubCommit,
    SyncJob,
    SyncResource,
    SyncStatus,
    utcnow,
)
from codehost_sync.models.github import GitHubModel
from codehost_sync.services.external_data_service import ExternalDataService
from codehost_sync.services.integration_service import IntegrationService
from codehost_sync.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=GitHubModel)

# Credential and setup failures abort the whole call
FATAL_ERRORS = (AuthenticationError, ConfigurationError, IntegrationNotFoundError)


class GitHubSyncService:
    """Pulls remote entities, normalizes them and upserts them with their search entries."""

    def __init__(
        self,
        db: Database,
        integration_service: IntegrationService,
        external_data_service: ExternalDataService,
        token_manager: TokenManager,
        client: GitHubClient,
    ):
        self.db = db
        self.integration_service = integration_service
        self.external_data_service = external_data_service
        self.token_manager = token_manager
        self.client = client

    async def _load_integration(self, integration_id: str) -> Integration:
        integration = await self.integration_service.require_integration(integration_id)
        if integration.integration_type != IntegrationType.GITHUB:
            raise IntegrationNotFoundError(
                f"GitHub integration {integration_id} not found", status_code=404
            )
        return integration

    async def _store(self, integration_id: str, entity: GitHubModel, raw: Dict[str, Any]) -> None:
        await self.external_data_service.upsert(
            integration_id,
            entity.external_type,
            entity.external_id,
            raw_data=raw,
            mapped_data=entity.normalize(),
        )

    async def _store_items(
        self,
        integration_id: str,
        model: Type[M],
        items: List[Dict[str, Any]],
        **extra: Any,
    ) -> List[M]:
        stored: List[M] = []
        for item in items:
            try:
                entity = model.model_validate({**item, **extra})
                await self._store(integration_id, entity, {**item, **extra})
                stored.append(entity)
            except Exception as e:
                logger.error(f"Error storing {model.__name__} for integration {integration_id}: {e}")
        return stored

    async def _fetch_all(self, integration: Integration, iterate) -> List[Dict[str, Any]]:
        async def fetch(token: str) -> List[Dict[str, Any]]:
            return [item async for item in iterate(token)]

        return await self.token_manager.execute_with_token(integration, fetch)

    async def sync_repositories(self, integration_id: str) -> List[GitHubRepository]:
        """Sync every tracked repository; one failing repository does not stop the rest."""
        integration = await self._load_integration(integration_id)
        repositories = integration.config.repositories
        batch_size = max(integration.config.sync_settings.batch_size, 1)

        logger.info(
            f"Syncing {len(repositories)} repositories for integration {integration_id} "
            f"(batch size: {batch_size})"
        )

        synced: List[GitHubRepository] = []
        for start in range(0, len(repositories), batch_size):
            batch = repositories[start:start + batch_size]
            results = await self._sync_repository_batch(integration, batch)
            synced.extend(repo for repo in results if repo is not None)

        await self.integration_service.mark_synced(integration_id)
        logger.info(
            f"Successfully synced {len(synced)}/{len(repositories)} repositories "
            f"for integration {integration_id}"
        )
        return synced

    async def _sync_repository_batch(
        self, integration: Integration, batch: List[str]
    ) -> List[Optional[GitHubRepository]]:
        """Sync a batch concurrently. A fatal error cancels the repositories still in flight."""
        tasks = [asyncio.create_task(self._sync_repository(integration, name)) for name in batch]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        return [task.result() for task in tasks]

    async def _sync_repository(self, integration: Integration, full_name: str) -> Optional[GitHubRepository]:
        try:
            data = await self.token_manager.execute_with_token(
                integration, lambda token: self.client.get_repository(full_name, token)
            )
            repo = GitHubRepository.model_validate(data)
            await self._store(integration.id, repo, data)
            return repo
        except FATAL_ERRORS:
            raise
        except Exception as e:
            message = f"Failed to sync repository {full_name}: {e}"
            logger.error(message)
            await self.integration_service.record_error(integration.id, message)
            return None

    async def sync_issues(
        self,
        integration_id: str,
        repository: str,
        since: Optional[datetime] = None,
        full_sync: bool = False,
    ) -> List[GitHubIssue]:
        """Sync issues changed since the last sync, skipping pull requests."""
        integration = await self._load_integration(integration_id)
        if since is None and not full_sync:
            since = integration.last_sync_at

        logger.info(
            f"Syncing issues from {repository}"
            + (f" since {since.isoformat()}" if since else " (full sync)")
        )

        items = await self._fetch_all(
            integration, lambda token: self.client.iter_issues(repository, token, since=since)
        )
        # The issues endpoint lists pull requests too
        issue_items = [item for item in items if "pull_request" not in item]

        issues = await self._store_items(
            integration.id, GitHubIssue, issue_items, repository=repository
        )
        await self.integration_service.mark_synced(integration.id)

        logger.info(f"Successfully synced {len(issues)} issues from {repository}")
        return issues

    async def sync_pull_requests(self, integration_id: str, repository: str) -> List[GitHubPullRequest]:
        integration = await self._load_integration(integration_id)

        items = await self._fetch_all(
            integration, lambda token: self.client.iter_pull_requests(repository, token)
        )
        pull_requests = await self._store_items(
            integration.id, GitHubPullRequest, items, repository=repository
        )
        await self.integration_service.mark_synced(integration.id)

        logger.info(f"Successfully synced {len(pull_requests)} pull requests from {repository}")
        return pull_requests

    async def sync_commits(
        self,
        integration_id: str,
        repository: str,
        branch: Optional[str] = None,
    ) -> List[GitHubCommit]:
        integration = await self._load_integration(integration_id)

        items = await self._fetch_all(
            integration, lambda token: self.client.iter_commits(repository, token, branch=branch)
        )
        commits = await self._store_items(
            integration.id, GitHubCommit, items, repository=repository, branch=branch
        )
        await self.integration_service.mark_synced(integration.id)

        logger.info(f"Successfully synced {len(commits)} commits from {repository}")
        return commits

    async def handle_issue_event(self, integration_id: str, payload: Dict[str, Any]) -> Optional[GitHubIssue]:
        """Upsert the issue carried by an ``issues`` webhook."""
        item = payload["issue"]
        if "pull_request" in item:
            return None
        repository = payload["repository"]["full_name"]
        issue = GitHubIssue.model_validate({**item, "repository": repository})
        await self._store(integration_id, issue, {**item, "repository": repository})
        logger.info(f"Stored issue #{issue.number} from {repository} webhook")
        return issue

    async def handle_pull_request_event(
        self, integration_id: str, payload: Dict[str, Any]
    ) -> GitHubPullRequest:
        """Upsert the pull request carried by a ``pull_request`` webhook."""
        item = payload["pull_request"]
        repository = payload["repository"]["full_name"]
        pull_request = GitHubPullRequest.model_validate({**item, "repository": repository})
        await self._store(integration_id, pull_request, {**item, "repository": repository})
        logger.info(f"Stored pull request #{pull_request.number} from {repository} webhook")
        return pull_request

    async def _save_job(self, job: SyncJob) -> None:
        collection = self.db.get_collection(COLLECTIONS["sync_jobs"])
        await collection.replace_one({"_id": job.id}, job.to_document(), upsert=True)

    async def run_sync_job(self, job: SyncJob) -> SyncJob:
        """Execute a background sync job and persist its outcome.

        A repository job syncs that repository's issues, pull requests and
        commits; any other job syncs every tracked repository.
        """
        job.status = SyncStatus.RUNNING
        job.started_at = utcnow()
        await self._save_job(job)
        logger.info(f"Running sync job {job.id} ({job.resource.value}) for integration {job.integration_id}")

        try:
            if job.resource == SyncResource.REPOSITORY:
                if not job.resource_id:
                    raise IntegrationError("Repository sync jobs need a resource_id (owner/name)")
                integration = await self._load_integration(job.integration_id)
                since = integration.last_sync_at
                issues = await self.sync_issues(job.integration_id, job.resource_id, since=since)
                pull_requests = await self.sync_pull_requests(job.integration_id, job.resource_id)
                commits = await self.sync_commits(job.integration_id, job.resource_id)
                job.counts = {
                    "issues": len(issues),
                    "pull_requests": len(pull_requests),
                    "commits": len(commits),
                }
            else:
                repositories = await self.sync_repositories(job.integration_id)
                job.counts = {"repositories": len(repositories)}

            job.processed_records = sum(job.counts.values())
            job.status = SyncStatus.COMPLETED
        except IntegrationError as e:
            job.status = SyncStatus.FAILED
            job.error_message = str(e)
            job.errors.append({"type": type(e).__name__, "message": str(e)})
            job.error_records += 1
            logger.error(f"Sync job {job.id} failed: {e}")
            raise
        finally:
            job.completed_at = utcnow()
            await self._save_job(job)

        logger.info(f"Sync job {job.id} completed: {job.counts}")
        return job
