from __future__ import annotations

import hashlib
from typing import Protocol, runtime_checkable


@runtime_checkable
class GroupableError(Protocol):
    """An error that names its own throttling group.

    Lets a family of errors (e.g. every failure from one upstream API) share a
    cooldown regardless of message text.
    """

    def get_error_group(self) -> str: ...


def fingerprint(error: BaseException) -> str:
    digest = hashlib.md5(str(error).encode("utf-8")).hexdigest()
    return f"auto:{type(error).__name__}:{digest}".lower()


def resolve_identity(error: BaseException, key: str | None = None) -> str:
    """Return the throttling identity for ``error``.

    Precedence: explicit ``key``, then ``error.get_error_group()``, then an
    automatic fingerprint of the error type and message.
    """
    if key is not None:
        return key
    if isinstance(error, GroupableError):
        return error.get_error_group()
    return fingerprint(error)
