"""Utility functions and data structures."""

from __future__ import annotations

import threading
from collections.abc import Iterator

__all__ = ["AppendOnlyList", "digest_from_image_id"]


class AppendOnlyList[T]:
    """A list that many producers append to and one consumer reads.

    Appends are serialized with a lock, so producers may be tasks or threads.
    Items are never removed or replaced once added. Iteration walks a
    snapshot taken when iteration starts, so a reader never sees an item
    appended after it began.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: list[T] = []

    def __iter__(self) -> Iterator[T]:
        with self._lock:
            snapshot = tuple(self._items)
        return iter(snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def append(self, item: T) -> None:
        """Add an item to the end of the list."""
        with self._lock:
            self._items.append(item)


def digest_from_image_id(image_id: str) -> str:
    """Extract the digest hex from a container status image ID.

    The kubelet reports image IDs as ``<algorithm>:<hex>``, sometimes
    prefixed with the repository and ``@``
    (``docker.io/library/nginx@sha256:<hex>``).

    Parameters
    ----------
    image_id
        Image ID from a container status.

    Returns
    -------
    str
        Everything after the first colon of the digest, or the empty string
        if the image ID contains no digest.
    """
    _, _, digest = image_id.rpartition("@")
    _, sep, hex_digest = digest.partition(":")
    return hex_digest if sep else ""
