from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


# ----- Health -----
class HealthResponse(BaseModel):
    status: str
    app: str
    env: str


# ----- Well-known -----
class AuthorizationServerMetadata(BaseModel):
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    revocation_endpoint: str
    introspection_endpoint: str
    scopes_supported: List[str]
    response_types_supported: List[str]
    grant_types_supported: List[str]
    code_challenge_methods_supported: List[str]
    token_endpoint_auth_methods_supported: List[str]
    revocation_endpoint_auth_methods_supported: List[str]
    introspection_endpoint_auth_methods_supported: List[str]


# ----- Application registry -----
class ApplicationCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    redirect_uris: List[str]
    allowed_scopes: List[str]
    grant_types: List[str] = ["authorization_code", "refresh_token"]
    is_trusted: bool = False
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    privacy_policy_url: Optional[str] = None
    terms_of_service_url: Optional[str] = None


class ApplicationUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    redirect_uris: Optional[List[str]] = None
    allowed_scopes: Optional[List[str]] = None
    grant_types: Optional[List[str]] = None
    is_trusted: Optional[bool] = None
    is_active: Optional[bool] = None
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    privacy_policy_url: Optional[str] = None
    terms_of_service_url: Optional[str] = None


class ApplicationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    client_id: str
    tenant_id: str
    name: str
    description: Optional[str] = None
    redirect_uris: List[str]
    allowed_scopes: List[str]
    grant_types: List[str]
    is_trusted: bool
    is_active: bool
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    privacy_policy_url: Optional[str] = None
    terms_of_service_url: Optional[str] = None
    created_at: int
    updated_at: int


class ApplicationCreatedResponse(ApplicationResponse):
    # Only ever returned here and on rotation
    client_secret: str


class SecretRotationResponse(BaseModel):
    client_id: str
    client_secret: str


class PurgeResponse(BaseModel):
    authorization_codes: int
    access_tokens: int


# ----- Authorization / consent -----
class ConsentApplication(BaseModel):
    name: str
    description: Optional[str] = None
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    privacy_policy_url: Optional[str] = None
    terms_of_service_url: Optional[str] = None


class ConsentResponse(BaseModel):
    consent_required: bool = True
    application: ConsentApplication
    requested_scopes: List[str]
    client_id: str
    redirect_uri: str
    state: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


class ConsentDecision(BaseModel):
    client_id: Optional[str] = None
    redirect_uri: Optional[str] = None
    response_type: str = "code"
    scope: Optional[str] = None
    state: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    approved: bool = False
    # Subset of the requested scopes the user ticked; None means all
    approved_scopes: Optional[List[str]] = None


# ----- Token -----
class GrantType(str, Enum):
    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"


class TokenRequest(BaseModel):
    grant_type: GrantType
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: Optional[str] = None
    scope: str


# ----- Revocation / introspection -----
class RevocationResponse(BaseModel):
    success: bool = True


class IntrospectionResponse(BaseModel):
    active: bool
    scope: Optional[str] = None
    client_id: Optional[str] = None
    sub: Optional[str] = None
    tenant_id: Optional[str] = None
    exp: Optional[int] = None
    iat: Optional[int] = None
    token_type: Optional[str] = None
