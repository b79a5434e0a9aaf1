"""
Header authentication for requests forwarded by the trusted gateway.

The identity provider sits in front of this service. The gateway
authenticates the user and forwards the identity in request headers:

    X-User-Id:           stable user ID (required)
    X-User-Display-Name: display name (optional)
    X-User-Roles:        comma-separated roles, e.g. "arbiter" (optional)

This service never checks credentials itself; it trusts these headers.

Usage (settings.py):
    REST_FRAMEWORK = {
        "DEFAULT_AUTHENTICATION_CLASSES": [
            "agreements.authentication.GatewayHeaderAuthentication",
        ],
    }
"""

from __future__ import annotations

from rest_framework import authentication, exceptions

from agreements.types import CallerIdentity

USER_ID_HEADER = "HTTP_X_USER_ID"
DISPLAY_NAME_HEADER = "HTTP_X_USER_DISPLAY_NAME"
ROLES_HEADER = "HTTP_X_USER_ROLES"

MAX_USER_ID_LENGTH = 128


class GatewayHeaderAuthentication(authentication.BaseAuthentication):
    """
    Build a CallerIdentity from gateway headers.

    Returns None when X-User-Id is absent so the request stays anonymous
    and IsAuthenticated rejects it with 401.
    """

    def authenticate(self, request):
        user_id = request.META.get(USER_ID_HEADER, "").strip()
        if not user_id:
            return None
        if len(user_id) > MAX_USER_ID_LENGTH:
            raise exceptions.AuthenticationFailed("X-User-Id is too long.")

        roles = frozenset(
            role.strip().lower()
            for role in request.META.get(ROLES_HEADER, "").split(",")
            if role.strip()
        )
        caller = CallerIdentity(
            user_id=user_id,
            display_name=request.META.get(DISPLAY_NAME_HEADER, "").strip(),
            roles=roles,
        )
        return (caller, None)

    def authenticate_header(self, request):
        return "X-User-Id"
