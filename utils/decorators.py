from __future__ import annotations
from functools import wraps
from flask import request, g, abort

from models.token import TokenKind
from services.container import current_services
from utils.exceptions import TokenInvalidError


def bearer_token() -> str | None:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def access_token_required():
    """
    Verify the bearer JWT, then check the token store still holds it.
    A signed but revoked token is rejected.
    """
    def decorator(fn):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            token = bearer_token()
            if not token:
                abort(401, description="Missing or invalid Authorization header")

            services = current_services()
            try:
                claims = services.token_factory.decode_access_token(token)
            except TokenInvalidError as e:
                abort(401, description=str(e))

            user = await services.token_store.validate_token(token, TokenKind.ACCESS)
            if user is None or str(user.id) != str(claims.get("sub")):
                abort(401, description="Token is not valid or has been revoked")

            g.current_user = user
            g.current_user_role = user.role
            g.access_token = token
            g.current_token_jti = claims.get("jti")
            return await fn(*args, **kwargs)

        return wrapper

    return decorator


def roles_required(required_roles: list[str]):
    """
    Allow access if the user's role is one of the required roles.
    """
    req = set(required_roles or [])
    def decorator(fn):
        @wraps(fn)
        @access_token_required()
        async def wrapper(*args, **kwargs):
            if g.current_user_role not in req:
                abort(403, description="Insufficient role")
            return await fn(*args, **kwargs)

        return wrapper

    return decorator
