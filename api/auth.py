"""
Authentication blueprint:
- POST /auth/login
- POST /auth/refresh
- POST /auth/logout
- GET  /auth/me

The implementation:
- Checks credentials against the seeded user repository
- Issues short-lived JWT access tokens and opaque refresh tokens
- Stores only token hashes in the key-value store so tokens can be revoked / rotated
"""
from __future__ import annotations

import logging

from flask import Blueprint, request, g, abort

from models.schemas.user import (
    LogoutSchema,
    RefreshTokenSchema,
    TokenPairOutSchema,
    UserLoginSchema,
    UserOutSchema,
)
from models.token import TokenKind
from services.container import current_services
from utils.decorators import access_token_required

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__, url_prefix="/auth")

user_login_schema = UserLoginSchema()
refresh_token_schema = RefreshTokenSchema()
logout_schema = LogoutSchema()
token_pair_out_schema = TokenPairOutSchema()
user_out_schema = UserOutSchema()


async def _issue_tokens(user):
    services = current_services()
    pair = services.token_factory.create_token_pair(user)
    await services.token_store.store_token_pair(user.username, pair)
    return token_pair_out_schema.dump(pair)


@bp.post("/login")
async def login():
    """
    Log in and receive an access/refresh token pair.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          required: [username, password]
          properties:
            username: { type: string, example: admin }
            password: { type: string, example: "111" }
    responses:
      200:
        description: Token pair
      401:
        description: Invalid credentials
      422:
        description: Validation error
    """
    data = user_login_schema.load(request.get_json(silent=True) or {})

    user = current_services().users.get_user(data["username"], data["password"])
    if user is None:
        logger.info("Failed login for %s", data["username"])
        abort(401, description="Invalid username or password")

    return await _issue_tokens(user), 200


@bp.post("/refresh")
async def refresh():
    """
    Rotate a refresh token: the presented one is revoked and a new pair issued.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          required: [refresh_token]
          properties:
            refresh_token: { type: string }
    responses:
      200:
        description: New token pair
      401:
        description: Invalid or expired refresh token
    """
    data = refresh_token_schema.load(request.get_json(silent=True) or {})
    token = data["refresh_token"].strip()

    store = current_services().token_store
    user = await store.validate_token(token, TokenKind.REFRESH)
    if user is None:
        abort(401, description="Invalid or expired refresh token")

    await store.revoke_token(token, TokenKind.REFRESH, user.username)
    return await _issue_tokens(user), 200


@bp.post("/logout")
@access_token_required()
async def logout():
    """
    Revoke the current access token and, optionally, a refresh token.
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: false
        schema:
          type: object
          properties:
            refresh_token: { type: string }
    responses:
      204:
        description: Logged out
      401:
        description: Unauthorized
    """
    data = logout_schema.load(request.get_json(silent=True) or {})
    store = current_services().token_store
    username = g.current_user.username

    refresh_token = (data.get("refresh_token") or "").strip()
    if refresh_token:
        owner = await store.get_user_by_token(refresh_token, TokenKind.REFRESH)
        if owner is not None and owner.username == username:
            await store.revoke_token(refresh_token, TokenKind.REFRESH, username)
        else:
            logger.info("Ignoring unknown refresh token on logout for %s", username)

    await store.revoke_token(g.access_token, TokenKind.ACCESS, username)
    return "", 204


@bp.get("/me")
@access_token_required()
async def me():
    """
    Current user
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: The authenticated user
      401:
        description: Unauthorized
    """
    return user_out_schema.dump(g.current_user), 200
