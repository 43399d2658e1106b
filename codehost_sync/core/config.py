"""Configuration settings for the codehost sync service."""

from typing import Optional, Dict, Any
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Configuration
    service_name: str = "codehost-sync"
    port: int = 8000
    environment: str = "development"
    debug: bool = False

    # Security
    encryption_key: str = "change-me"
    encryption_salt: str = "codehost-sync"

    # Database
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "codehost_sync"

    # Public base URL used to derive OAuth callback URLs
    api_base_url: str = "http://localhost:8000"

    # Auth Service
    auth_service_url: str = "http://localhost:8001"

    # OAuth Credentials
    # GitHub
    github_client_id: Optional[str] = None
    github_client_secret: Optional[str] = None
    github_redirect_uri: Optional[str] = None

    # Slack
    slack_client_id: Optional[str] = None
    slack_client_secret: Optional[str] = None
    slack_redirect_uri: Optional[str] = None

    # Jira
    jira_client_id: Optional[str] = None
    jira_client_secret: Optional[str] = None
    jira_redirect_uri: Optional[str] = None

    # Google Workspace
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: Optional[str] = None

    # Microsoft Teams
    microsoft_client_id: Optional[str] = None
    microsoft_client_secret: Optional[str] = None
    microsoft_redirect_uri: Optional[str] = None

    # GitHub App
    github_app_id: Optional[str] = None
    github_app_private_key: Optional[str] = None
    github_app_webhook_secret: Optional[str] = None
    github_app_slug: str = "codehost-sync"
    github_api_base_url: str = "https://api.github.com"

    # Remote calls
    http_timeout: float = 30.0
    retry_max_retries: int = 3
    retry_initial_delay: float = 1.0  # seconds
    retry_max_delay: float = 30.0  # seconds
    sync_max_pages: int = 50
    token_refresh_interval: float = 900.0  # seconds, 0 disables the sweep

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8080"]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Static OAuth endpoint data per integration type. Client credentials and
# redirect URIs come from Settings.
INTEGRATION_CONFIGS: Dict[str, Dict[str, Any]] = {
    "github": {
        "name": "GitHub",
        "type": "oauth2",
        "slug": "github",
        "settings_prefix": "github",
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "scopes": ["repo", "read:user", "user:email"],
    },
    "slack": {
        "name": "Slack",
        "type": "oauth2",
        "slug": "slack",
        "settings_prefix": "slack",
        "auth_url": "https://slack.com/oauth/v2/authorize",
        "token_url": "https://slack.com/api/oauth.v2.access",
        "scopes": [
            "channels:history",
            "channels:read",
            "chat:write",
            "commands",
            "users:read",
        ],
    },
    "jira": {
        "name": "Jira",
        "type": "oauth2",
        "slug": "jira",
        "settings_prefix": "jira",
        "auth_url": "https://auth.atlassian.com/authorize",
        "token_url": "https://auth.atlassian.com/oauth/token",
        "scopes": [
            "read:jira-work",
            "write:jira-work",
            "read:jira-user",
            "offline_access",
        ],
        "extra_authorize_params": {
            "audience": "api.atlassian.com",
            "prompt": "consent",
        },
    },
    "google_workspace": {
        "name": "Google Workspace",
        "type": "oauth2",
        "slug": "google",
        "settings_prefix": "google",
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "scopes": [
            "https://www.googleapis.com/auth/calendar",
            "https://www.googleapis.com/auth/drive.readonly",
            "https://www.googleapis.com/auth/gmail.send",
        ],
        "extra_authorize_params": {
            "access_type": "offline",
            "prompt": "consent",
        },
    },
    "microsoft_teams": {
        "name": "Microsoft Teams",
        "type": "oauth2",
        "slug": "microsoft",
        "settings_prefix": "microsoft",
        "auth_url": "https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        "token_url": "https://login.microsoftonline.com/common/oauth2/v2.0/token",
        "scopes": [
            "https://graph.microsoft.com/Channel.ReadBasic.All",
            "https://graph.microsoft.com/Chat.Read",
            "https://graph.microsoft.com/OnlineMeetings.ReadWrite",
        ],
    },
    "trello": {
        "name": "Trello",
        "type": "api_key",
        "slug": "trello",
    },
}
