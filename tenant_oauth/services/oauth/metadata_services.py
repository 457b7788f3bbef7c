from tenant_oauth.core.config import settings


def health():
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "env": settings.ENV,
    }


def authorization_server_metadata():
    issuer = settings.ISSUER
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/authorize",
        "token_endpoint": f"{issuer}/token",
        "revocation_endpoint": f"{issuer}/revoke",
        "introspection_endpoint": f"{issuer}/introspect",
        "scopes_supported": settings.SUPPORTED_SCOPES,
        "response_types_supported": settings.RESPONSE_TYPES_SUPPORTED,
        "grant_types_supported": settings.GRANT_TYPES_SUPPORTED,
        "code_challenge_methods_supported": settings.CODE_CHALLENGE_METHODS_SUPPORTED,
        "token_endpoint_auth_methods_supported": settings.TOKEN_ENDPOINT_AUTH_METHODS_SUPPORTED,
        "revocation_endpoint_auth_methods_supported": (
            settings.REVOCATION_ENDPOINT_AUTH_METHODS_SUPPORTED
        ),
        "introspection_endpoint_auth_methods_supported": (
            settings.INTROSPECTION_ENDPOINT_AUTH_METHODS_SUPPORTED
        ),
    }
