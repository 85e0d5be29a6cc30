"""
Credential provider contract consumed by connectors.

Token acquisition and refresh live outside the sync engine; a connector
only asks for a bearer token before each run.
"""

from abc import ABC, abstractmethod
from enum import Enum

from docsync.logic.cancellation import CancellationToken
from docsync.logic.exceptions import AuthRequiredError


class AuthMethod(str, Enum):
    """How a source authenticates with its provider."""

    NONE = "none"
    OAUTH = "oauth"
    PAT = "pat"
    API_KEY = "api_key"


class CredentialProvider(ABC):
    """
    Abstract source of bearer tokens for one authorization.

    Implementations may refresh tokens behind the scenes; the engine never
    persists or refreshes credentials itself.
    """

    @abstractmethod
    async def get_token(self, cancel_token: CancellationToken) -> str:
        """
        Return a bearer token valid for the next request.

        Args:
            cancel_token: Caller's cancellation token.

        Returns:
            Access token string.

        Raises:
            AuthRequiredError: If no valid credential is available.
        """
        ...

    @property
    @abstractmethod
    def authorization_id(self) -> str:
        """Return the ID of the authorization this provider serves."""
        ...

    @property
    @abstractmethod
    def auth_method(self) -> AuthMethod:
        """Return the authentication method."""
        ...

    @abstractmethod
    def is_authenticated(self) -> bool:
        """Return True if a credential is currently held."""
        ...


class StaticCredentialProvider(CredentialProvider):
    """Credential provider wrapping a fixed access token."""

    def __init__(
        self,
        access_token: str | None,
        authorization_id: str = "",
        auth_method: AuthMethod = AuthMethod.OAUTH,
    ) -> None:
        """
        Initialize static credential provider.

        Args:
            access_token: Bearer token, or None when unauthenticated.
            authorization_id: ID of the stored authorization.
            auth_method: Method the token was obtained with.
        """
        self._access_token = access_token
        self._authorization_id = authorization_id
        self._auth_method = auth_method

    async def get_token(self, cancel_token: CancellationToken) -> str:
        cancel_token.raise_if_cancelled()
        if not self._access_token:
            raise AuthRequiredError("credentials", "no access token configured")
        return self._access_token

    @property
    def authorization_id(self) -> str:
        return self._authorization_id

    @property
    def auth_method(self) -> AuthMethod:
        return self._auth_method

    def is_authenticated(self) -> bool:
        return bool(self._access_token)

    def __repr__(self) -> str:
        """Return string representation without the token."""
        return (
            f"<StaticCredentialProvider authorization_id={self._authorization_id!r} "
            f"authenticated={self.is_authenticated()}>"
        )
