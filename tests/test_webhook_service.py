"""Tests for GitHub webhook routing."""

import hashlib
import hmac
from unittest.mock import Mock

import pytest
import pytest_asyncio

from codehost_sync.integrations.base import WebhookVerificationError
from codehost_sync.integrations.github import GitHubClient
from codehost_sync.models import ExternalType, Integration, IntegrationConfig, IntegrationType
from codehost_sync.services.event_bus import EventBus, ISSUE_CLOSED_BY_COMMIT
from codehost_sync.services.external_data_service import ExternalDataService
from codehost_sync.services.github_app_service import GitHubAppService, InstallationTokenCache
from codehost_sync.services.integration_service import IntegrationService
from codehost_sync.services.issue_link_service import IssueLinkService
from codehost_sync.services.issue_store import MongoIssueStore
from codehost_sync.services.sync_service import GitHubSyncService
from codehost_sync.services.webhook_service import WebhookService
from tests.conftest import sign_github_payload


@pytest.fixture
def events():
    return []


@pytest.fixture
def integration_service(fake_db):
    return IntegrationService(fake_db)


@pytest.fixture
def external_data_service(fake_db):
    return ExternalDataService(fake_db)


@pytest.fixture
def webhook_service(fake_db, settings, integration_service, external_data_service, rate_limit_service, events):
    app_service = GitHubAppService(
        integration_service,
        settings=settings,
        rate_limit_service=rate_limit_service,
        token_cache=InstallationTokenCache(),
    )
    sync_service = GitHubSyncService(
        fake_db,
        integration_service,
        external_data_service,
        Mock(),
        GitHubClient(settings, retry=rate_limit_service),
    )
    bus = EventBus()
    bus.subscribe(ISSUE_CLOSED_BY_COMMIT, events.append)
    link_service = IssueLinkService(MongoIssueStore(fake_db), external_data_service, bus)
    return WebhookService(app_service, integration_service, sync_service, link_service)


@pytest_asyncio.fixture
async def integration(integration_service, fake_db):
    fake_db.get_collection("issues").documents.extend(
        [
            {"_id": "issue-9", "number": 9, "status": "todo", "project": {"key": "PROJ", "organization_id": "org-1"}},
            {"_id": "issue-42", "number": 42, "status": "todo", "project": {"key": "PROJ", "organization_id": "org-1"}},
        ]
    )
    return await integration_service.save(
        Integration(
            organization_id="org-1",
            integration_type=IntegrationType.GITHUB,
            name="GitHub (acme)",
            installation_id="42",
            config=IntegrationConfig(repositories=["acme/api", "acme/unmapped"], repository_projects={"acme/api": "PROJ"}),
        )
    )


def _push(repository, *messages):
    return {
        "ref": "refs/heads/main",
        "repository": {"full_name": repository},
        "commits": [
            {
                "id": f"{index:040d}",
                "message": message,
                "url": f"https://github.com/{repository}/commit/{index}",
                "author": {"name": "Dev", "username": "dev"},
                "committer": {"name": "Committer"},
            }
            for index, message in enumerate(messages, start=1)
        ],
    }


def _pull_request_payload(action, branch="PROJ-9-login", merged=False):
    return {
        "action": action,
        "repository": {"full_name": "acme/api"},
        "pull_request": {
            "id": 777,
            "number": 3,
            "title": "Login fix",
            "state": "closed" if action == "closed" else "open",
            "head": {"ref": branch},
            "base": {"ref": "main"},
            "merged": merged,
            "merged_by": {"login": "lead"} if merged else None,
        },
    }


async def _deliver(service, event_type, payload):
    body, signature = sign_github_payload(payload)
    return await service.handle_github_webhook(body, signature, event_type)


class TestAuthenticity:

    @pytest.mark.asyncio
    async def test_bad_signature_is_rejected_before_parsing(self, webhook_service, fake_db):
        with pytest.raises(WebhookVerificationError):
            await webhook_service.handle_github_webhook(b"not json", "sha256=" + "0" * 64, "push")

        assert fake_db.get_collection("external_data").documents == []

    @pytest.mark.asyncio
    async def test_tampered_body_is_rejected(self, webhook_service, integration, fake_db):
        body, signature = sign_github_payload(_push("acme/api", "Fixes PROJ-9"))
        tampered = body.replace(b"PROJ-9", b"PROJ-42")

        with pytest.raises(WebhookVerificationError):
            await webhook_service.handle_github_webhook(tampered, signature, "push")

        assert fake_db.get_collection("issues").documents[1]["status"] == "todo"

    @pytest.mark.asyncio
    async def test_invalid_json_after_valid_signature(self, webhook_service):
        body = b"[1, 2"
        signature = "sha256=" + hmac.new(b"webhook-secret", body, hashlib.sha256).hexdigest()
        with pytest.raises(ValueError):
            await webhook_service.handle_github_webhook(body, signature, "push")


class TestPush:

    @pytest.mark.asyncio
    async def test_magic_words_close_issues(self, webhook_service, integration, fake_db, events):
        result = await _deliver(webhook_service, "push", _push("acme/api", "Fixes #42", "Touches PROJ-9"))

        assert result["closed_issues"] == ["PROJ-42"]
        assert result["linked_issues"] == ["PROJ-9"]
        assert fake_db.get_collection("issues").documents[1]["status"] == "done"
        assert events[0]["committer_name"] == "Committer"

    @pytest.mark.asyncio
    async def test_unmapped_repository_cannot_close_by_number(self, webhook_service, integration, fake_db, events):
        result = await _deliver(webhook_service, "push", _push("acme/unmapped", "Fixes #42"))

        assert result["closed_issues"] == []
        assert fake_db.get_collection("issues").documents[1]["status"] == "todo"
        assert events == []

    @pytest.mark.asyncio
    async def test_unmapped_repository_can_close_by_key(self, webhook_service, integration, fake_db):
        result = await _deliver(webhook_service, "push", _push("acme/unmapped", "closes PROJ-9"))

        assert result["closed_issues"] == ["PROJ-9"]

    @pytest.mark.asyncio
    async def test_untracked_repository_is_ignored(self, webhook_service, integration, fake_db):
        result = await _deliver(webhook_service, "push", _push("someone/else", "Fixes PROJ-9"))

        assert result["handled"] is False
        assert fake_db.get_collection("issues").documents[0]["status"] == "todo"


class TestEntities:

    @pytest.mark.asyncio
    async def test_issue_opened_is_stored(self, webhook_service, integration, external_data_service):
        payload = {
            "action": "opened",
            "repository": {"full_name": "acme/api"},
            "issue": {"id": 901, "number": 4, "title": "Crash", "state": "open"},
        }

        result = await _deliver(webhook_service, "issues", payload)

        assert result["handled"] is True
        assert await external_data_service.get(integration.id, ExternalType.ISSUE, "901") is not None

    @pytest.mark.asyncio
    async def test_unhandled_issue_action(self, webhook_service, integration, fake_db):
        payload = {
            "action": "labeled",
            "repository": {"full_name": "acme/api"},
            "issue": {"id": 901, "number": 4, "title": "Crash"},
        }

        result = await _deliver(webhook_service, "issues", payload)

        assert result["handled"] is False
        assert fake_db.get_collection("external_data").documents == []

    @pytest.mark.asyncio
    async def test_pull_request_opened_links_issue(self, webhook_service, integration, fake_db):
        result = await _deliver(webhook_service, "pull_request", _pull_request_payload("opened"))

        assert result["links"] == [{"issue_key": "PROJ-9", "linked": True}]
        types = {doc["external_type"] for doc in fake_db.get_collection("external_data").documents}
        assert types == {"pull_request", "pr_issue_link"}
        assert fake_db.get_collection("issues").documents[0]["status"] == "todo"

    @pytest.mark.asyncio
    async def test_merged_pull_request_closes_issue(self, webhook_service, integration, fake_db):
        result = await _deliver(webhook_service, "pull_request", _pull_request_payload("closed", merged=True))

        assert result["merged_issue_closed"] is True
        assert fake_db.get_collection("issues").documents[0]["status"] == "done"

    @pytest.mark.asyncio
    async def test_closed_without_merge_leaves_issue(self, webhook_service, integration, fake_db):
        result = await _deliver(webhook_service, "pull_request", _pull_request_payload("closed"))

        assert result["merged_issue_closed"] is False
        assert fake_db.get_collection("issues").documents[0]["status"] == "todo"

    @pytest.mark.asyncio
    async def test_unknown_event(self, webhook_service):
        assert await _deliver(webhook_service, "star", {"action": "created"}) == {"event": "star", "handled": False}


class TestInstallation:

    def _payload(self, action, installation_id=42):
        return {
            "action": action,
            "installation": {"id": installation_id, "account": {"login": "acme", "type": "Organization"}},
            "repositories": [{"full_name": "acme/api"}],
        }

    @pytest.mark.asyncio
    async def test_created_before_callback_waits(self, webhook_service, fake_db):
        result = await _deliver(webhook_service, "installation", self._payload("created", 99))

        assert result["handled"] is False
        assert fake_db.get_collection("integrations").documents == []

    @pytest.mark.asyncio
    async def test_created_after_callback_fills_account(self, webhook_service, integration, integration_service):
        result = await _deliver(webhook_service, "installation", self._payload("created"))

        assert result["integration_id"] == integration.id
        stored = await integration_service.get_integration(integration.id)
        assert stored.account_login == "acme"

    @pytest.mark.asyncio
    async def test_deleted_deactivates(self, webhook_service, integration, integration_service):
        await _deliver(webhook_service, "installation", self._payload("deleted"))

        assert (await integration_service.get_integration(integration.id)).is_active is False

    @pytest.mark.asyncio
    async def test_repositories_event(self, webhook_service, integration, integration_service):
        payload = {
            "action": "added",
            "installation": {"id": 42},
            "repositories_added": [{"full_name": "acme/web"}],
        }

        result = await _deliver(webhook_service, "installation_repositories", payload)

        assert result["handled"] is True
        stored = await integration_service.get_integration(integration.id)
        assert "acme/web" in stored.config.repositories
