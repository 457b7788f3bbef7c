import uuid

from sqlalchemy import (
    Boolean,
    ForeignKey,
    String,
    Integer,
    Text,
    JSON,
)
from sqlalchemy.orm import Mapped, mapped_column

from tenant_oauth.core.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class OAuthApplication(Base):
    __tablename__ = "oauth_applications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)

    tenant_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    # OAuth identifiers
    client_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
    )

    client_secret_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Metadata
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    logo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    website_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    privacy_policy_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    terms_of_service_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # OAuth configuration
    redirect_uris: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
    )

    allowed_scopes: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
    )

    grant_types: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
    )

    # Status
    is_trusted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[int] = mapped_column(Integer, nullable=False)


class OAuthAuthorizationCode(Base):
    __tablename__ = "oauth_authorization_codes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)

    # sha256 of the code handed to the client
    code_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
    )

    application_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("oauth_applications.id"),
        nullable=False,
        index=True,
    )

    subject_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Authorization details
    scopes: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    redirect_uri: Mapped[str] = mapped_column(Text, nullable=False)
    code_challenge: Mapped[str | None] = mapped_column(String(255), nullable=True)
    code_challenge_method: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # Status
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[int] = mapped_column(Integer, nullable=False)


class OAuthAccessToken(Base):
    """Issuance record backing one access token and its refresh token."""

    __tablename__ = "oauth_access_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)

    jti: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
    )

    application_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("oauth_applications.id"),
        nullable=False,
        index=True,
    )

    subject_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Token details
    scopes: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[int] = mapped_column(Integer, nullable=False)

    # Refresh token (sha256), absent when the app may not refresh
    refresh_token_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
        index=True,
    )
    refresh_token_expires_at: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Record this one was rotated from
    parent_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("oauth_access_tokens.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Status
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revoked_at: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[int] = mapped_column(Integer, nullable=False)
