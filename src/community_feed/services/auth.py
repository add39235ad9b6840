"""Auth providers that tell the feed who the viewer is."""

from __future__ import annotations

import logging

from jose import ExpiredSignatureError, JWTError, jwt

from community_feed.core.settings import Settings, settings
from community_feed.schemas import Viewer
from community_feed.services.backend import AuthProvider
from community_feed.services.errors import AuthError

logger = logging.getLogger(__name__)


class StaticAuthProvider:
    """Holds a viewer set by the surrounding app's sign-in flow."""

    def __init__(self, viewer: Viewer | None = None) -> None:
        self._viewer = viewer

    def current_user(self) -> Viewer | None:
        return self._viewer

    def sign_in(self, viewer: Viewer) -> None:
        self._viewer = viewer

    def sign_out(self) -> None:
        self._viewer = None


class JwtAuthProvider:
    """Derives the viewer from the auth service's ID token.

    The token is decoded once per :meth:`sign_in`; an expired or forged token
    raises :class:`AuthError` and leaves the provider signed out.
    """

    def __init__(self, config: Settings | None = None) -> None:
        self.config = config or settings
        self._viewer: Viewer | None = None
        self.access_token: str | None = None

    def sign_in(self, id_token: str) -> Viewer:
        if not self.config.auth_jwt_secret:
            raise AuthError("auth/invalid-api-key", "No ID token verification key configured")
        try:
            claims = jwt.decode(
                id_token,
                self.config.auth_jwt_secret,
                algorithms=[self.config.auth_jwt_algorithm],
                audience=self.config.auth_jwt_audience,
                options={"verify_aud": self.config.auth_jwt_audience is not None},
            )
        except ExpiredSignatureError as err:
            self.sign_out()
            raise AuthError("auth/user-token-expired") from err
        except JWTError as err:
            self.sign_out()
            raise AuthError("auth/invalid-credential") from err

        if not (claims.get("sub") or claims.get("user_id")):
            self.sign_out()
            raise AuthError("auth/invalid-credential", "ID token has no subject")
        if claims.get("disabled"):
            self.sign_out()
            raise AuthError("auth/user-disabled")

        self._viewer = Viewer.from_claims(claims)
        self.access_token = id_token
        logger.info("Signed in as %s", self._viewer.id)
        return self._viewer

    def sign_out(self) -> None:
        self._viewer = None
        self.access_token = None

    def access_token_getter(self) -> str | None:
        return self.access_token

    def current_user(self) -> Viewer | None:
        return self._viewer


def require_viewer(provider: AuthProvider) -> Viewer:
    """Return the signed-in viewer or raise ``auth/login-required``."""
    viewer = provider.current_user()
    if viewer is None:
        raise AuthError("auth/login-required")
    return viewer
