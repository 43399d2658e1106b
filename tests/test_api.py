"""HTTP surface tests with the service dependencies swapped for in-memory ones."""

import asyncio
import urllib.parse
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi.testclient import TestClient

from codehost_sync import main
from codehost_sync.api import dependencies
from codehost_sync.integrations.base import IntegrationError, WebhookVerificationError
from codehost_sync.main import app
from codehost_sync.models import Integration, IntegrationConfig, IntegrationType, SyncStatus
from codehost_sync.services.github_app_service import GitHubAppService, InstallationTokenCache
from codehost_sync.services.integration_service import IntegrationService
from codehost_sync.services.oauth_service import OAuthService
from codehost_sync.services.webhook_service import WebhookService
from codehost_sync.utils.crypto import decrypt_token
from tests.conftest import make_http_client, sign_github_payload

USER = {"id": "user-1", "organization_id": "org-1"}


@pytest.fixture
def integration_service(fake_db):
    return IntegrationService(fake_db)


@pytest.fixture
def app_service(integration_service, settings, rate_limit_service):
    return GitHubAppService(
        integration_service,
        settings=settings,
        rate_limit_service=rate_limit_service,
        token_cache=InstallationTokenCache(),
    )


@pytest.fixture
def sync_service():
    return Mock()


@pytest.fixture
def webhook_service():
    service = Mock(spec=WebhookService)
    service.handle_github_webhook = AsyncMock(return_value={"event": "push", "handled": True})
    return service


@pytest.fixture
def client(settings, integration_service, app_service, sync_service, webhook_service, rate_limit_service):
    oauth_service = OAuthService(settings, httpx.AsyncClient(), rate_limit_service)
    app.dependency_overrides = {
        dependencies.get_current_user: lambda: USER,
        dependencies.get_integration_service: lambda: integration_service,
        dependencies.get_github_app_service: lambda: app_service,
        dependencies.get_oauth_service: lambda: oauth_service,
        dependencies.get_sync_service: lambda: sync_service,
        dependencies.get_webhook_service: lambda: webhook_service,
    }
    # No context manager: the lifespan would connect to MongoDB
    yield TestClient(app)
    app.dependency_overrides = {}


def _integration(organization_id="org-1", **kwargs):
    return Integration(
        organization_id=organization_id,
        integration_type=IntegrationType.GITHUB,
        name="GitHub (acme)",
        installation_id="42",
        config=IntegrationConfig(repositories=["acme/api"]),
        **kwargs,
    )


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestWebhookEndpoint:

    def test_processed(self, client, webhook_service):
        body, signature = sign_github_payload({"ref": "refs/heads/main"})

        response = client.post(
            "/api/v1/webhooks/github",
            content=body,
            headers={
                "X-Hub-Signature-256": signature,
                "X-GitHub-Event": "push",
                "X-GitHub-Delivery": "delivery-1",
            },
        )

        assert response.status_code == 200
        assert response.json() == {
            "status": "processed",
            "delivery": "delivery-1",
            "result": {"event": "push", "handled": True},
        }
        webhook_service.handle_github_webhook.assert_awaited_once_with(body, signature, "push")

    def test_missing_event_header(self, client, webhook_service):
        response = client.post("/api/v1/webhooks/github", content=b"{}")

        assert response.status_code == 400
        webhook_service.handle_github_webhook.assert_not_awaited()

    def test_bad_signature_is_401(self, client, webhook_service):
        webhook_service.handle_github_webhook.side_effect = WebhookVerificationError(
            "Invalid webhook signature", status_code=401
        )

        response = client.post(
            "/api/v1/webhooks/github",
            content=b"{}",
            headers={"X-Hub-Signature-256": "sha256=bad", "X-GitHub-Event": "push"},
        )

        assert response.status_code == 401

    def test_invalid_json_is_400(self, client, webhook_service):
        webhook_service.handle_github_webhook.side_effect = ValueError("not json")

        response = client.post(
            "/api/v1/webhooks/github",
            content=b"{",
            headers={"X-Hub-Signature-256": "sha256=ok", "X-GitHub-Event": "push"},
        )

        assert response.status_code == 400


class TestOAuthEndpoints:

    def test_authorize_url(self, client):
        response = client.get("/api/v1/integrations/oauth/github/authorize")

        assert response.status_code == 200
        data = response.json()
        assert data["authorization_url"].startswith("https://github.com/login/oauth/authorize?")
        assert f"state={data['state']}" in data["authorization_url"]

    def test_api_key_integration_cannot_use_oauth(self, client):
        response = client.get("/api/v1/integrations/oauth/trello/authorize")

        assert response.status_code == 400

    def test_authorize_needs_organization(self, client):
        app.dependency_overrides[dependencies.get_current_user] = lambda: {"id": "user-2"}

        response = client.get("/api/v1/integrations/oauth/github/authorize")

        assert response.status_code == 400

    def test_callback_completes_flow(self, client, settings, rate_limit_service, fake_db):
        def handler(request: httpx.Request) -> httpx.Response:
            form = urllib.parse.parse_qs(request.content.decode())
            assert form["code"] == ["auth-code"]
            return httpx.Response(
                200,
                json={"access_token": "gho_secret", "refresh_token": "ghr_secret", "expires_in": 28800, "scope": "repo,read:user"},
            )

        authorize = client.get("/api/v1/integrations/oauth/github/authorize").json()
        query = urllib.parse.parse_qs(urllib.parse.urlparse(authorize["authorization_url"]).query)
        redirect_path = urllib.parse.urlparse(query["redirect_uri"][0]).path
        app.dependency_overrides[dependencies.get_oauth_service] = lambda: OAuthService(
            settings, make_http_client(handler), rate_limit_service
        )

        response = client.get(redirect_path, params={"code": "auth-code", "state": authorize["state"]})

        assert response.status_code == 200
        data = response.json()
        assert data["integration_type"] == "github"
        assert "gho_secret" not in response.text
        stored = fake_db.get_collection("integrations").documents[0]
        assert stored["organization_id"] == "org-1"
        assert stored["is_legacy_oauth"] is True
        assert stored["auth_config"]["access_token"] != "gho_secret"
        assert decrypt_token(stored["auth_config"]["access_token"]) == "gho_secret"
        assert decrypt_token(stored["auth_config"]["refresh_token"]) == "ghr_secret"
        assert stored["auth_config"]["scopes"] == ["repo", "read:user"]

    def test_oauth_callback_rejects_forged_state(self, client, fake_db):
        response = client.get(
            "/api/v1/integrations/oauth/github/callback",
            params={"code": "auth-code", "state": "not-a-token"},
        )

        assert response.status_code == 400
        assert fake_db.get_collection("integrations").documents == []

    def test_callback_for_api_key_integration(self, client):
        response = client.get(
            "/api/v1/integrations/oauth/trello/callback",
            params={"code": "auth-code", "state": "x"},
        )

        assert response.status_code == 400


class TestGitHubAppEndpoints:

    def test_install_url_carries_signed_state(self, client, app_service):
        response = client.get("/api/v1/integrations/github-app/install-url")

        assert response.status_code == 200
        data = response.json()
        assert data["install_url"].startswith("https://github.com/apps/codehost-sync-test/installations/new")
        assert app_service.decode_install_state(data["state"])["organization_id"] == "org-1"

    def test_install_url_needs_organization(self, client):
        app.dependency_overrides[dependencies.get_current_user] = lambda: {"id": "user-2"}

        response = client.get("/api/v1/integrations/github-app/install-url")

        assert response.status_code == 400

    def test_callback_rejects_forged_state(self, client):
        response = client.get(
            "/api/v1/integrations/github-app/callback",
            params={"installation_id": "42", "state": "not-a-token"},
        )

        assert response.status_code == 400


class TestIntegrationEndpoints:

    def test_get_and_list_hide_credentials(self, client, integration_service, fake_db):
        integration = _integration()
        fake_db.get_collection("integrations").documents.append(integration.to_document())

        response = client.get(f"/api/v1/integrations/{integration.id}")
        assert response.status_code == 200
        assert "auth_config" not in response.json()

        listing = client.get("/api/v1/integrations/")
        assert [item["id"] for item in listing.json()["items"]] == [integration.id]

    def test_other_organization_is_forbidden(self, client, fake_db):
        integration = _integration(organization_id="org-2")
        fake_db.get_collection("integrations").documents.append(integration.to_document())

        assert client.get(f"/api/v1/integrations/{integration.id}").status_code == 403

    def test_sync_unknown_integration(self, client, sync_service):
        response = client.post("/api/v1/integrations/missing/sync", json={})

        assert response.status_code == 404

    def test_sync_inactive_integration(self, client, fake_db):
        integration = _integration(is_active=False)
        fake_db.get_collection("integrations").documents.append(integration.to_document())

        response = client.post(f"/api/v1/integrations/{integration.id}/sync", json={})

        assert response.status_code == 400

    def test_sync_reports_completed_job(self, client, fake_db, sync_service):
        integration = _integration()
        fake_db.get_collection("integrations").documents.append(integration.to_document())

        async def run(job):
            job.status = SyncStatus.COMPLETED
            job.counts = {"repositories": 1}
            job.processed_records = 1
            return job

        sync_service.run_sync_job = AsyncMock(side_effect=run)

        response = client.post(f"/api/v1/integrations/{integration.id}/sync", json={})

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["counts"] == {"repositories": 1}

    def test_sync_reports_failed_job(self, client, fake_db, sync_service):
        integration = _integration()
        fake_db.get_collection("integrations").documents.append(integration.to_document())

        async def run(job):
            job.status = SyncStatus.FAILED
            job.error_message = "Bad credentials"
            raise IntegrationError("Bad credentials", status_code=401)

        sync_service.run_sync_job = AsyncMock(side_effect=run)

        response = client.post(f"/api/v1/integrations/{integration.id}/sync", json={})

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert response.json()["message"] == "Bad credentials"

    def test_link_and_unlink_repository(self, client, fake_db):
        integration = _integration()
        fake_db.get_collection("integrations").documents.append(integration.to_document())

        response = client.post(
            f"/api/v1/integrations/{integration.id}/repositories/link",
            json={"repository": "acme/api", "project_key": "proj"},
        )
        assert response.status_code == 200
        assert response.json()["config"]["repository_projects"] == {"acme/api": "PROJ"}

        response = client.post(
            f"/api/v1/integrations/{integration.id}/repositories/unlink",
            json={"repository": "acme/api"},
        )
        assert response.json()["config"]["repository_projects"] == {}

    def test_link_rejects_bad_project_key(self, client, fake_db):
        integration = _integration()
        fake_db.get_collection("integrations").documents.append(integration.to_document())

        response = client.post(
            f"/api/v1/integrations/{integration.id}/repositories/link",
            json={"repository": "acme/api", "project_key": "PROJ-1"},
        )

        assert response.status_code == 422


class TestLifespan:

    @pytest.fixture
    def stubbed_resources(self, monkeypatch):
        monkeypatch.setattr(main, "database", Mock(connect=AsyncMock(), disconnect=AsyncMock()))
        monkeypatch.setattr(main, "http_client_manager", Mock(close=AsyncMock()))
        monkeypatch.setattr(main, "event_bus", Mock(drain=AsyncMock()))

    @pytest.mark.asyncio
    async def test_token_refresh_sweep_is_cancelled_on_shutdown(self, monkeypatch, stubbed_resources):
        started = asyncio.Event()
        cancelled = []

        async def sweep(interval):
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.append(interval)
                raise

        monkeypatch.setattr(main, "create_token_manager", lambda: Mock(refresh_tokens_periodically=sweep))
        monkeypatch.setattr(main.settings, "token_refresh_interval", 60.0)

        async with main.lifespan(main.app):
            await asyncio.wait_for(started.wait(), timeout=1)

        assert cancelled == [60.0]
        main.database.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sweep_disabled(self, monkeypatch, stubbed_resources):
        create_token_manager = Mock()
        monkeypatch.setattr(main, "create_token_manager", create_token_manager)
        monkeypatch.setattr(main.settings, "token_refresh_interval", 0)

        async with main.lifespan(main.app):
            pass

        create_token_manager.assert_not_called()
