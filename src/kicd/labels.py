"""Rollout label convention.

A workload opts into rollouts for a repository by carrying the label
``ki-cd/<repository>: <branch>.<containerIndex>``. The key names the
repository, the value names the branch to follow and the position of the
container whose image is replaced.
"""

from __future__ import annotations

from dataclasses import dataclass

from kicd.exceptions import MalformedLabel

DEFAULT_LABEL_PREFIX = "ki-cd/"

_DELIMITER = "."


@dataclass(frozen=True)
class LabelTarget:
    """Decoded label value."""

    branch: str
    container_index: int


def label_key_for(repository: str, prefix: str = DEFAULT_LABEL_PREFIX) -> str:
    """Return the label key workloads use to follow *repository*."""
    return prefix + repository.lower().replace("/", "_")


def encode_label_value(branch: str, container_index: int) -> str:
    """Build a label value, the inverse of :func:`decode_label_value`."""
    if container_index < 0:
        raise ValueError("container_index must be non-negative")
    return f"{branch}{_DELIMITER}{container_index}"


def decode_label_value(value: str) -> LabelTarget:
    """Split a label value into its branch and container index."""
    parts = value.split(_DELIMITER)
    if len(parts) != 2:
        raise MalformedLabel(value, "exactly two dot separated values are required")

    branch, raw_index = parts
    if not branch:
        raise MalformedLabel(value, "branch name is empty")
    if not (raw_index.isascii() and raw_index.isdecimal()):
        raise MalformedLabel(value, "second value is required to be a non-negative integer")

    return LabelTarget(branch=branch, container_index=int(raw_index))
