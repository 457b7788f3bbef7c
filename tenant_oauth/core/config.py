from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------
    APP_NAME: str = "Tenant OAuth2 Authorization Server"
    DEBUG: bool = False
    ENV: str = "development"
    PROTOCOL: str = "http"
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    @property
    def BASE_URL(self) -> str:
        return f"{self.PROTOCOL}://{self.HOST}:{self.PORT}"

    # Overrides BASE_URL in metadata and the `iss` claim (e.g. behind a proxy)
    PUBLIC_URL: Optional[str] = None

    @property
    def ISSUER(self) -> str:
        return (self.PUBLIC_URL or self.BASE_URL).rstrip("/")

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------
    DATABASE_URL: str = "sqlite+aiosqlite:///./oauth.db"
    DATABASE_ECHO: bool = False

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------
    SUPPORTED_SCOPES: List[str] = [
        "orders:read",
        "orders:write",
        "products:read",
        "products:write",
        "customers:read",
        "customers:write",
        "inventory:read",
        "inventory:write",
        "analytics:read",
    ]

    @property
    def SUPPORTED_SCOPES_STR(self) -> str:
        return " ".join(self.SUPPORTED_SCOPES)

    TOKEN_BYTES: int = 32
    CLIENT_ID_BYTES: int = 16

    RESPONSE_TYPES_SUPPORTED: List[str] = ["code"]
    GRANT_TYPES_SUPPORTED: List[str] = ["authorization_code", "refresh_token"]
    CODE_CHALLENGE_METHODS_SUPPORTED: List[str] = ["S256", "plain"]
    TOKEN_ENDPOINT_AUTH_METHODS_SUPPORTED: List[str] = [
        "client_secret_post",
        "client_secret_basic",
    ]
    # /revoke and /introspect do not authenticate the caller
    REVOCATION_ENDPOINT_AUTH_METHODS_SUPPORTED: List[str] = ["none"]
    INTROSPECTION_ENDPOINT_AUTH_METHODS_SUPPORTED: List[str] = ["none"]
    PKCE_REQUIRED: bool = False

    AUTH_CODE_TTL: int = 600  # 10 minutes
    ACCESS_TOKEN_TTL: int = 3600  # 1 hour
    REFRESH_TOKEN_TTL: int = 30 * 86400  # 30 days
    REFRESH_TOKEN_ROTATION: bool = True
    PURGE_RETENTION_DAYS: int = 30

    # jwt
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"

    # ------------------------------------------------------------------
    # Client secrets
    # ------------------------------------------------------------------
    SECRET_HASHER: str = "bcrypt"  # "bcrypt" | "sha256"
    BCRYPT_ROUNDS: int = 12

    # ------------------------------------------------------------------
    # Collaborators (upstream auth layer / feature flags)
    # ------------------------------------------------------------------
    OAUTH_ENABLED_TENANTS: List[str] = ["*"]
    SESSION_USER_HEADER: str = "X-User-Id"
    ADMIN_TENANT_HEADER: str = "X-Tenant-Id"
    LOGIN_URL: str = "/login"

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # ------------------------------------------------------------------
    # CORS
    # ------------------------------------------------------------------
    CORS_ALLOW_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    # ------------------------------------------------------------------
    # Meta
    # ------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# Singleton settings object (import this everywhere)
settings = Settings()
