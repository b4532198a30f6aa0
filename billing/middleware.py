"""Middleware for authentication and tenant context."""
from functools import wraps

import jwt
from flask import g, request, current_app

from billing.exceptions import AuthenticationError


def _bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def load_user_and_tenant():
    """
    Load current user and tenant into g (Flask's per-request global).

    Called before each request. Decodes the bearer token issued by the auth
    service; claims 'id' (user) and 'company_id' (tenant). Sets g.user_id and
    g.tenant_id when the token is valid, leaves them None otherwise.
    """
    g.user_id = None
    g.tenant_id = None
    g.auth_error = None

    token = _bearer_token()
    if token is None:
        return

    try:
        claims = jwt.decode(
            token,
            current_app.config['JWT_SECRET_KEY'],
            algorithms=[current_app.config.get('JWT_ALGORITHM', 'HS256')]
        )
    except jwt.ExpiredSignatureError:
        g.auth_error = 'Token has expired'
        return
    except jwt.InvalidTokenError as e:
        current_app.logger.warning(f"Rejected bearer token: {e}")
        g.auth_error = 'Invalid token'
        return

    try:
        g.user_id = int(claims['id']) if claims.get('id') is not None else None
        g.tenant_id = int(claims['company_id']) if claims.get('company_id') is not None else None
    except (TypeError, ValueError):
        g.user_id = None
        g.tenant_id = None
        g.auth_error = 'Invalid token claims'


def require_tenant(f):
    """
    Decorator: Require an authenticated user with a tenant.

    Raises AuthenticationError (401) so the app's error handler renders it.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('tenant_id') is None:
            raise AuthenticationError(g.get('auth_error') or 'Authentication required')
        return f(*args, **kwargs)
    return decorated_function
