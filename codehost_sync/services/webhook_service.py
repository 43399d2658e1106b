"""Routing of GitHub webhook deliveries."""

from typing import Dict, Any, List, Optional
import logging

from codehost_sync.integrations.base import WebhookVerificationError, parse_json_body
from codehost_sync.models import GitHubCommit, Integration
from codehost_sync.services.github_app_service import GitHubAppService
from codehost_sync.services.integration_service import IntegrationService
from codehost_sync.services.issue_link_service import IssueLinkService
from codehost_sync.services.sync_service import GitHubSyncService

logger = logging.getLogger(__name__)

ENTITY_ACTIONS = {"opened", "closed", "reopened", "edited"}


class WebhookService:
    """Authenticates a delivery, then hands it to the service that owns the event."""

    def __init__(
        self,
        github_app_service: GitHubAppService,
        integration_service: IntegrationService,
        sync_service: GitHubSyncService,
        issue_link_service: IssueLinkService,
    ):
        self.github_app_service = github_app_service
        self.integration_service = integration_service
        self.sync_service = sync_service
        self.issue_link_service = issue_link_service

    async def handle_github_webhook(
        self,
        body: bytes,
        signature: Optional[str],
        event_type: str,
    ) -> Dict[str, Any]:
        """Verify and route one delivery.

        Raises WebhookVerificationError before the body is parsed when the
        signature does not match, and ValueError when the body is not JSON.
        """
        if not self.github_app_service.verify_webhook_signature(body, signature):
            raise WebhookVerificationError("Invalid webhook signature", status_code=401)

        payload = parse_json_body(body)
        logger.info(f"Received GitHub webhook: {event_type} ({payload.get('action')})")

        if event_type == "installation":
            return await self._handle_installation(payload)
        if event_type == "installation_repositories":
            integration = await self.github_app_service.handle_installation_repositories_event(payload)
            return {"event": event_type, "handled": integration is not None}
        if event_type == "push":
            return await self._handle_push(payload)
        if event_type == "issues":
            return await self._handle_issues(payload)
        if event_type == "pull_request":
            return await self._handle_pull_request(payload)

        logger.info(f"Unhandled GitHub webhook event: {event_type}")
        return {"event": event_type, "handled": False}

    async def _handle_installation(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        action = payload.get("action")
        installation_id = str(payload["installation"]["id"])

        organization_id = None
        if action == "created":
            # The organization is only known once the install callback ran
            existing = await self.integration_service.find_by_installation_id(installation_id)
            if existing is None:
                logger.info(
                    f"Installation {installation_id} created; awaiting callback with organization context"
                )
                return {"event": "installation", "action": action, "handled": False}
            organization_id = existing.organization_id

        integration = await self.github_app_service.handle_installation_event(payload, organization_id)
        return {
            "event": "installation",
            "action": action,
            "handled": integration is not None,
            "integration_id": integration.id if integration else None,
        }

    async def _tracking_integrations(self, payload: Dict[str, Any], event_type: str) -> List[Integration]:
        repository = (payload.get("repository") or {}).get("full_name")
        if not repository:
            logger.warning(f"GitHub {event_type} webhook without a repository")
            return []

        integrations = await self.integration_service.find_by_repository(repository)
        if not integrations:
            logger.info(f"Ignoring {event_type} webhook for untracked repository {repository}")
        return integrations

    async def _handle_push(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        integrations = await self._tracking_integrations(payload, "push")
        repository = (payload.get("repository") or {}).get("full_name")
        ref = payload.get("ref") or ""
        branch = ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref or None

        linked: List[str] = []
        closed: List[str] = []
        for integration in integrations:
            project_key = integration.project_key_for(repository)
            for entry in payload.get("commits") or []:
                commit = GitHubCommit.from_push_payload(entry, repository=repository, branch=branch)
                committer = commit.commit.committer or commit.commit.author

                linked.extend(
                    await self.issue_link_service.link_commit_to_issues(integration.id, commit)
                )
                closed.extend(
                    await self.issue_link_service.handle_commit_magic_words(
                        integration.id, commit, project_key, committer.name
                    )
                )

        return {
            "event": "push",
            "handled": bool(integrations),
            "linked_issues": linked,
            "closed_issues": closed,
        }

    async def _handle_issues(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        action = payload.get("action")
        if action not in ENTITY_ACTIONS:
            logger.info(f"Unhandled issues action: {action}")
            return {"event": "issues", "action": action, "handled": False}

        integrations = await self._tracking_integrations(payload, "issues")
        for integration in integrations:
            await self.sync_service.handle_issue_event(integration.id, payload)

        return {"event": "issues", "action": action, "handled": bool(integrations)}

    async def _handle_pull_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        action = payload.get("action")
        if action not in ENTITY_ACTIONS:
            logger.info(f"Unhandled pull_request action: {action}")
            return {"event": "pull_request", "action": action, "handled": False}

        integrations = await self._tracking_integrations(payload, "pull_request")
        repository = (payload.get("repository") or {}).get("full_name")

        links: List[Dict[str, Any]] = []
        merged_issue_closed = False
        for integration in integrations:
            pr = await self.sync_service.handle_pull_request_event(integration.id, payload)

            if action == "opened":
                link = await self.issue_link_service.link_pr_to_issue(integration.id, pr, repository)
                if link:
                    links.append(link)
            elif action == "closed" and pr.merged:
                if await self.issue_link_service.handle_pr_merged(integration.id, pr, repository):
                    merged_issue_closed = True

        return {
            "event": "pull_request",
            "action": action,
            "handled": bool(integrations),
            "links": links,
            "merged_issue_closed": merged_issue_closed,
        }
