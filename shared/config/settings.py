"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# Development placeholders that must never sign production tokens
WEAK_SECRETS = frozenset(
    {
        "dev-secret-change-me-in-production",
        "secret",
        "changeme",
        "password",
    }
)
MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Gateway and client settings. Defaults suit local development."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    # Environment
    environment: str = "development"
    debug: bool = True

    # Database (only used by the SQLAlchemy status store adapter)
    database_url: str = "sqlite:///./restaurant_os.db"

    # JWT Configuration
    # Tokens are issued by the auth service; the gateway only verifies them.
    jwt_secret: str = "dev-secret-change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_leeway_seconds: int = 0
    # Lifetime used by the development signer (CLI issue-token, tests)
    jwt_access_token_expire_minutes: int = 60

    # CORS / Origin checks: comma-separated list (empty uses default localhost list)
    allowed_origins: str = ""

    # Server
    ws_gateway_host: str = "0.0.0.0"
    ws_gateway_port: int = 3001

    # WebSocket gateway
    ws_auth_timeout: float = 5.0  # Handshake verification bound in seconds
    ws_receive_timeout: float = 90.0  # Close connections idle for longer than this
    ws_max_message_size: int = 64 * 1024  # 64 KB
    ws_outbox_size: int = 256  # Pending frames per connection before it is dropped

    # Client connection manager
    client_ws_url: str = "ws://localhost:3001/ws"
    client_initial_delay: float = 1.0
    client_max_delay: float = 30.0
    client_max_attempts: int = 5  # Reported in diagnostics, not enforced
    client_connect_timeout: float = 10.0
    client_ack_timeout: float = 10.0
    client_heartbeat_interval: float = 30.0  # Below ws_receive_timeout so idle clients stay open

    # Fallback poller
    api_base_url: str = "http://localhost:3000"
    poll_interval: float = 10.0
    poll_request_timeout: float = 5.0  # Must stay below poll_interval
    poll_grace_period: float = 3.0

    def validate_production_secrets(self) -> list[str]:
        """
        List configuration problems. Empty means the settings are usable.

        The secret, debug and origin checks only apply in production; the
        timeout ordering checks apply everywhere.
        """
        problems: list[str] = []

        if self.environment == "production":
            if self.jwt_secret in WEAK_SECRETS or len(self.jwt_secret) < MIN_SECRET_LENGTH:
                problems.append(
                    f"JWT_SECRET must be at least {MIN_SECRET_LENGTH} characters and not a placeholder in production"
                )
            if self.debug:
                problems.append("DEBUG must be False in production")
            if not self.allowed_origins:
                problems.append("ALLOWED_ORIGINS must list the dashboard origins in production")

        if self.poll_request_timeout >= self.poll_interval:
            problems.append("POLL_REQUEST_TIMEOUT must be shorter than POLL_INTERVAL")
        if self.client_heartbeat_interval >= self.ws_receive_timeout:
            problems.append("CLIENT_HEARTBEAT_INTERVAL must be shorter than WS_RECEIVE_TIMEOUT")

        return problems


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
