"""Structured interpretation of remote status reasons."""

from __future__ import annotations

import re
from dataclasses import dataclass

_CREATION_CANCELLED = re.compile(r"Resource creation cancelled", re.IGNORECASE)
_MISSING_PERMISSION_API = re.compile(
    r"API: (?P<permission>[a-z0-9]+:[a-z0-9]+)\b", re.IGNORECASE
)
_MISSING_PERMISSION_USER = re.compile(
    r"User: (?P<principal>[a-z0-9:/-]+) is not authorized to perform: "
    r"(?P<permission>[a-z0-9]+:[a-z0-9]+)",
    re.IGNORECASE,
)
_RESOURCE_ERRORS = re.compile(
    r"The following resource\(s\) failed to (?:create|delete|update): "
    r"\[(?P<ids>[a-z0-9]+(?:, *[a-z0-9]+)*)\]",
    re.IGNORECASE,
)
_LOGICAL_ID = re.compile(r"[a-z0-9]+", re.IGNORECASE)


@dataclass(frozen=True)
class CreationCancelled:
    """Another resource failed, so creating this one was abandoned."""


@dataclass(frozen=True)
class MissingPermission:
    permission: str
    principal: str | None = None


@dataclass(frozen=True)
class ResourceErrors:
    logical_resource_ids: tuple[str, ...]


StatusReasonDetail = CreationCancelled | MissingPermission | ResourceErrors


def parse_status_reason(reason: str | None) -> StatusReasonDetail | None:
    """Recognize the common shapes of a status reason.

    Returns ``None`` when the reason is missing or has no known shape.
    """
    if not reason:
        return None
    if _CREATION_CANCELLED.search(reason):
        return CreationCancelled()
    match = _MISSING_PERMISSION_API.search(reason)
    if match:
        return MissingPermission(permission=match.group("permission"))
    match = _MISSING_PERMISSION_USER.search(reason)
    if match:
        return MissingPermission(
            permission=match.group("permission"),
            principal=match.group("principal"),
        )
    match = _RESOURCE_ERRORS.search(reason)
    if match:
        return ResourceErrors(tuple(_LOGICAL_ID.findall(match.group("ids"))))
    return None
