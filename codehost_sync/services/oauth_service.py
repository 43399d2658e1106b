"""OAuth 2.0 flows for third-party integrations."""

from typing import Optional, Dict, Any, List, Union
import logging
import secrets
import time
import urllib.parse

import httpx
import jwt
from pydantic import BaseModel, ConfigDict, Field

from codehost_sync.core.config import Settings, get_settings, INTEGRATION_CONFIGS
from codehost_sync.integrations.base import (
    BaseIntegrationClient,
    AuthenticationError,
    ConfigurationError,
    OAuthNotSupportedError,
    RemoteAPIError,
)
from codehost_sync.models import IntegrationType
from codehost_sync.services.rate_limit_service import RateLimitService

logger = logging.getLogger(__name__)

OAUTH_STATE_TTL_SECONDS = 600


def _kind_key(kind: Union[IntegrationType, str]) -> str:
    return kind.value if isinstance(kind, IntegrationType) else str(kind)


class OAuthConfig(BaseModel):
    client_id: str
    client_secret: str
    redirect_uri: str
    authorize_url: str
    token_url: str
    scopes: List[str] = Field(default_factory=list)
    extra_authorize_params: Dict[str, str] = Field(default_factory=dict)


class OAuthTokens(BaseModel):
    model_config = ConfigDict(extra="allow")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    token_type: Optional[str] = None


class OAuthService:
    """Builds authorize URLs and exchanges or refreshes tokens.

    Redirect URIs default to
    ``{api_base_url}/api/v1/integrations/oauth/{slug}/callback`` unless a
    ``<kind>_redirect_uri`` setting overrides them. Missing client
    credentials only warn when the configuration is read; starting a flow
    with them raises ``ConfigurationError``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limit_service: Optional[RateLimitService] = None,
    ):
        self.settings = settings or get_settings()
        self.client = BaseIntegrationClient(
            "",
            http_client=http_client,
            retry=rate_limit_service or RateLimitService(),
            timeout=self.settings.http_timeout,
        )
        self.client.default_headers = {"Accept": "application/json"}

    def _integration_config(self, kind: Union[IntegrationType, str]) -> Dict[str, Any]:
        key = _kind_key(kind)
        config = INTEGRATION_CONFIGS.get(key)
        if config is None:
            raise OAuthNotSupportedError(f"OAuth not supported for integration type: {key}")
        if config["type"] != "oauth2":
            raise OAuthNotSupportedError(
                f"{config['name']} uses API key authentication, not OAuth. "
                f"Connect it with an API key and token instead."
            )
        return config

    def _get_credential(self, name: str) -> str:
        value = getattr(self.settings, name, None)
        if not value:
            logger.warning(
                f"Missing OAuth configuration: {name.upper()}. "
                f"OAuth flow for this integration will fail until configured."
            )
            return ""
        return value

    def kind_for_slug(self, slug: str) -> str:
        """Integration type whose callback path uses ``slug`` (``google`` -> ``google_workspace``)."""
        for key, config in INTEGRATION_CONFIGS.items():
            if config.get("slug") == slug:
                self._integration_config(key)
                return key
        raise OAuthNotSupportedError(f"OAuth not supported for integration type: {slug}")

    def get_redirect_uri(self, kind: Union[IntegrationType, str]) -> str:
        config = self._integration_config(kind)
        explicit = getattr(self.settings, f"{config['settings_prefix']}_redirect_uri", None)
        if explicit:
            return explicit
        base_url = self.settings.api_base_url.rstrip("/")
        return f"{base_url}/api/v1/integrations/oauth/{config['slug']}/callback"

    def get_oauth_config(self, kind: Union[IntegrationType, str]) -> OAuthConfig:
        config = self._integration_config(kind)
        prefix = config["settings_prefix"]
        return OAuthConfig(
            client_id=self._get_credential(f"{prefix}_client_id"),
            client_secret=self._get_credential(f"{prefix}_client_secret"),
            redirect_uri=self.get_redirect_uri(kind),
            authorize_url=config["auth_url"],
            token_url=config["token_url"],
            scopes=list(config.get("scopes", [])),
            extra_authorize_params=dict(config.get("extra_authorize_params", {})),
        )

    def _require_credentials(self, kind: Union[IntegrationType, str], config: OAuthConfig) -> None:
        if not config.client_id or not config.client_secret:
            raise ConfigurationError(
                f"OAuth client credentials for {kind} are not configured"
            )

    def build_authorize_url(self, kind: Union[IntegrationType, str], state: str) -> str:
        """URL the user is redirected to in order to grant access."""
        kind = _kind_key(kind)
        config = self.get_oauth_config(kind)
        self._require_credentials(kind, config)

        params = {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "scope": " ".join(config.scopes),
            "state": state,
            "response_type": "code",
        }
        params.update(config.extra_authorize_params)

        return f"{config.authorize_url}?{urllib.parse.urlencode(params)}"

    async def _request_tokens(
        self,
        kind: Union[IntegrationType, str],
        config: OAuthConfig,
        form: Dict[str, str],
        action: str,
    ) -> OAuthTokens:
        try:
            response = await self.client.make_api_request(
                "POST",
                config.token_url,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data=form,
            )
        except RemoteAPIError as e:
            logger.error(f"Token {action} failed for {kind}: {e.status_code}")
            raise AuthenticationError(
                f"Failed to {action} tokens: {e.status_code}",
                status_code=e.status_code,
                response_body=e.response_body,
            ) from e

        body = response.json()
        if "error" in body:
            # GitHub reports a bad code with a 200
            logger.error(f"Token {action} rejected for {kind}: {body['error']}")
            raise AuthenticationError(
                f"Failed to {action} tokens: {body.get('error_description') or body['error']}",
                status_code=response.status_code,
                response_body=body,
            )

        logger.info(f"Successfully completed token {action}: {kind}")
        return OAuthTokens.model_validate(body)

    async def exchange_code_for_tokens(
        self, kind: Union[IntegrationType, str], code: str
    ) -> OAuthTokens:
        """Exchange an authorization code from the callback for tokens."""
        kind = _kind_key(kind)
        config = self.get_oauth_config(kind)
        self._require_credentials(kind, config)
        return await self._request_tokens(
            kind,
            config,
            {
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "code": code,
                "redirect_uri": config.redirect_uri,
                "grant_type": "authorization_code",
            },
            "exchange",
        )

    async def refresh_access_token(
        self, kind: Union[IntegrationType, str], refresh_token: str
    ) -> OAuthTokens:
        kind = _kind_key(kind)
        config = self.get_oauth_config(kind)
        self._require_credentials(kind, config)
        return await self._request_tokens(
            kind,
            config,
            {
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            "refresh",
        )

    @staticmethod
    def generate_state() -> str:
        return secrets.token_urlsafe(32)

    def create_state(
        self,
        kind: Union[IntegrationType, str],
        organization_id: str,
        user_id: str,
    ) -> str:
        """Signed state that carries the caller's organization to the callback."""
        now = int(time.time())
        return jwt.encode(
            {
                "kind": _kind_key(kind),
                "org": organization_id,
                "sub": user_id,
                "nonce": self.generate_state(),
                "iat": now,
                "exp": now + OAUTH_STATE_TTL_SECONDS,
            },
            self.settings.encryption_key,
            algorithm="HS256",
        )

    def decode_state(self, state: str, kind: Union[IntegrationType, str]) -> Dict[str, str]:
        """Verify a callback's state; it must be unexpired and issued for ``kind``."""
        try:
            claims = jwt.decode(state, self.settings.encryption_key, algorithms=["HS256"])
        except jwt.PyJWTError as e:
            raise AuthenticationError("Invalid or expired OAuth state", status_code=400) from e

        if not self.validate_state(claims.get("kind"), _kind_key(kind)):
            logger.warning(f"OAuth state issued for {claims.get('kind')} used on {_kind_key(kind)} callback")
            raise AuthenticationError("OAuth state does not match integration type", status_code=400)

        return {"organization_id": claims["org"], "user_id": claims["sub"]}

    @staticmethod
    def validate_state(received_state: Optional[str], expected_state: Optional[str]) -> bool:
        """Constant-time CSRF state check."""
        if not received_state or not expected_state:
            return False
        return secrets.compare_digest(received_state, expected_state)
