"""Inbound notification payloads and the normalized rollout target.

Two payload shapes are accepted while senders migrate between them:

* build notifications (``source.repoSource`` plus an ``images`` list), as
  published by the build system when a build finishes
* push notifications (a ``github`` object plus a base ``image``), as sent by
  the older CI workflow; the commit SHA becomes the image tag

Both are reduced to a :class:`Target`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from kicd.exceptions import DecodeError

BRANCH_REF_PREFIX = "refs/heads/"


def strip_ref(ref: str) -> str:
    """Turn ``refs/heads/<branch>`` into ``<branch>``."""
    return ref[len(BRANCH_REF_PREFIX) :] if ref.startswith(BRANCH_REF_PREFIX) else ref


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _as_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


# ------------------------------------------------------------------
# Normalized target
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Target:
    """What to roll out and where."""

    repository: str
    branch: str
    image: str

    def __post_init__(self) -> None:
        if not self.repository:
            raise DecodeError("repository is required")
        if not self.image:
            raise DecodeError("image is required")
        object.__setattr__(self, "branch", strip_ref(self.branch))

    def to_dict(self) -> dict[str, str]:
        return {"repository": self.repository, "branch": self.branch, "image": self.image}


# ------------------------------------------------------------------
# Build notification
# ------------------------------------------------------------------


@dataclass
class BuildNotification:
    """Build-completion notification."""

    repo_name: str
    branch_name: str
    images: list[str] = field(default_factory=list)
    build_id: str = ""
    status: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def matches(data: dict[str, Any]) -> bool:
        return isinstance(_as_dict(data.get("source")).get("repoSource"), dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuildNotification:
        repo_source = _as_dict(_as_dict(data.get("source")).get("repoSource"))

        images = [_as_str(i) for i in _as_list(data.get("images")) if _as_str(i)]
        if not images:
            # Older builds only list pushed images under results
            results = _as_list(_as_dict(data.get("results")).get("images"))
            images = [_as_str(_as_dict(i).get("name")) for i in results]
            images = [i for i in images if i]

        known = {"source", "images", "id", "status"}
        return cls(
            repo_name=_as_str(repo_source.get("repoName")),
            branch_name=_as_str(repo_source.get("branchName")),
            images=images,
            build_id=_as_str(data.get("id")),
            status=_as_str(data.get("status")),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_target(self) -> Target:
        return Target(
            repository=self.repo_name,
            branch=self.branch_name,
            image=self.images[0] if self.images else "",
        )


# ------------------------------------------------------------------
# Push notification
# ------------------------------------------------------------------


@dataclass
class PushNotification:
    """Push-event notification."""

    repository: str
    ref: str
    sha: str
    image: str

    @staticmethod
    def matches(data: dict[str, Any]) -> bool:
        return isinstance(data.get("github"), dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PushNotification:
        github = _as_dict(data.get("github"))
        return cls(
            repository=_as_str(github.get("repository")),
            ref=_as_str(github.get("ref")),
            sha=_as_str(github.get("sha")),
            image=_as_str(data.get("image")),
        )

    @property
    def tagged_image(self) -> str:
        if not self.image or not self.sha:
            return self.image
        return f"{self.image}:{self.sha}"

    def to_target(self) -> Target:
        return Target(repository=self.repository, branch=self.ref, image=self.tagged_image)


# ------------------------------------------------------------------
# Decoding
# ------------------------------------------------------------------


def parse_body(raw: bytes) -> dict[str, Any]:
    """Deserialize a request body into a JSON object."""
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"invalid JSON body: {exc}") from exc
    if not isinstance(data, dict):
        raise DecodeError("JSON body must be an object")
    return data


def decode_notification(data: dict[str, Any]) -> Target:
    """Reduce either notification shape to a :class:`Target`."""
    if BuildNotification.matches(data):
        return BuildNotification.from_dict(data).to_target()
    if PushNotification.matches(data):
        return PushNotification.from_dict(data).to_target()
    raise DecodeError("unrecognised notification: expected source.repoSource or github")


def decode(raw: bytes) -> Target:
    """Parse and normalize a raw request body."""
    return decode_notification(parse_body(raw))


def peek_repository(data: dict[str, Any]) -> str:
    """Best-effort repository name, available before the body is trusted."""
    if BuildNotification.matches(data):
        return _as_str(_as_dict(_as_dict(data.get("source")).get("repoSource")).get("repoName"))
    return _as_str(_as_dict(data.get("github")).get("repository"))


# ------------------------------------------------------------------
# Response
# ------------------------------------------------------------------


@dataclass
class ResponseMessage:
    """Body of every reply sent to the webhook caller."""

    success: bool
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}
