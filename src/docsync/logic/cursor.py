"""
Versioned cursor models for resumable incremental syncing.

A cursor is the opaque resume state a connector hands back at the end of
a sync run. On the wire it is base64(JSON) with an explicit integer
version under the "v" key; the remaining fields are provider-specific.

Two payload families exist:
- SingleTokenCursor: one resume token for the whole source.
- TokenMapCursor: one resume token per sub-resource (calendar, folder...).

Providers subclass one of them to name their JSON field.
"""

import base64
import binascii
import inspect
import logging
from abc import ABC, abstractmethod
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from docsync.logic.exceptions import InvalidCursorError

logger = logging.getLogger("docsync.cursor")

# Current cursor format version
CURSOR_VERSION = 1

# Sub-resource key used by providers that have a single resume token
ROOT_SUB_RESOURCE = "root"


def _require_concrete(cls: type) -> None:
    if inspect.isabstract(cls):
        raise TypeError(f"{cls.__name__} is abstract; use a concrete cursor class")


class Cursor(BaseModel, ABC):
    """
    Abstract cursor with the version envelope.

    Subclasses define the payload and the token accessors; only concrete
    subclasses can be created or decoded.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    current_version: ClassVar[int] = CURSOR_VERSION

    version: int = Field(
        default=CURSOR_VERSION,
        alias="v",
        description="Cursor format version",
    )

    @classmethod
    def new_empty(cls) -> "Cursor":
        """
        Create a cursor for a source that has never been synced.

        Returns:
            Fresh cursor at the current version.
        """
        _require_concrete(cls)
        return cls(version=cls.current_version)

    def encode(self) -> str:
        """
        Serialize the cursor to a base64 string.

        Never raises: if serialization fails, an empty string is returned
        and the caller treats it as "no cursor returned".

        Returns:
            base64(JSON) encoding, or "" on failure.
        """
        try:
            data = self.model_dump_json(by_alias=True)
        except (ValueError, TypeError) as e:
            logger.warning(f"⚠️ Failed to encode {type(self).__name__}: {e}")
            return ""
        return base64.b64encode(data.encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, encoded: str) -> "Cursor":
        """
        Deserialize a cursor from a base64 string.

        Args:
            encoded: Value previously produced by encode(), or "".

        Returns:
            Decoded cursor, or a fresh cursor for "".

        Raises:
            InvalidCursorError: If the value is malformed or was written by
                a newer cursor version.
        """
        _require_concrete(cls)
        if not encoded:
            return cls.new_empty()

        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidCursorError(f"invalid cursor: bad base64 ({e})") from e

        try:
            cursor = cls.model_validate_json(raw)
        except ValidationError as e:
            raise InvalidCursorError(
                f"invalid cursor: bad payload ({e.error_count()} errors)"
            ) from e

        if cursor.version > cls.current_version:
            raise InvalidCursorError(
                f"invalid cursor: version {cursor.version} is newer than "
                f"supported version {cls.current_version}"
            )

        return cursor

    @abstractmethod
    def is_empty(self) -> bool:
        """Return True if no resume token is present."""
        ...

    @abstractmethod
    def get_token(self, sub_resource: str = ROOT_SUB_RESOURCE) -> str:
        """Return the resume token for a sub-resource, or ""."""
        ...

    @abstractmethod
    def set_token(self, sub_resource: str, token: str) -> None:
        """Record the resume token for a sub-resource."""
        ...

    @abstractmethod
    def drop_token(self, sub_resource: str) -> None:
        """Forget the resume token for a sub-resource."""
        ...


class SingleTokenCursor(Cursor):
    """
    Cursor holding one resume token for the whole source.

    The sub-resource argument of the accessors is ignored.
    """

    token: str = Field(
        default="",
        description="Provider resume token",
    )

    def is_empty(self) -> bool:
        """Return True if no token is stored."""
        return not self.token

    def get_token(self, sub_resource: str = ROOT_SUB_RESOURCE) -> str:
        return self.token

    def set_token(self, sub_resource: str, token: str) -> None:
        self.token = token

    def drop_token(self, sub_resource: str) -> None:
        self.token = ""


class TokenMapCursor(Cursor):
    """
    Cursor holding one resume token per sub-resource.

    Used by providers whose corpus is partitioned (e.g. one sync token
    per calendar).
    """

    tokens: dict[str, str] = Field(
        default_factory=dict,
        description="Resume token per sub-resource",
    )

    def is_empty(self) -> bool:
        """Return True if no sub-resource has a token."""
        return not any(self.tokens.values())

    def get_token(self, sub_resource: str = ROOT_SUB_RESOURCE) -> str:
        return self.tokens.get(sub_resource, "")

    def set_token(self, sub_resource: str, token: str) -> None:
        self.tokens[sub_resource] = token

    def drop_token(self, sub_resource: str) -> None:
        self.tokens.pop(sub_resource, None)

    def has_token(self, sub_resource: str) -> bool:
        """
        Check whether a sub-resource has a stored token.

        Args:
            sub_resource: Sub-resource name.

        Returns:
            True if a non-empty token is stored.
        """
        return bool(self.tokens.get(sub_resource))

    def sub_resources(self) -> list[str]:
        """Return the names of sub-resources with stored tokens."""
        return sorted(self.tokens)
