"""Unit conversions for the volume provisioner."""

import math
from typing import Any

import bitmath

__all__ = ["GIB", "memory_to_bytes", "storage_to_gib"]

GIB = 1024**3
"""Bytes in a GiB."""


def memory_to_bytes(memory: Any) -> int:
    """Convert a string representation of storage to a number of bytes.

    Parameters
    ----------
    memory
        Amount of storage as a Kubernetes quantity string, such as ``10Gi``.

    Returns
    -------
    int
        Equivalent number of bytes.

    Raises
    ------
    ValueError
        Raised if the input string is not a valid byte specification.
    """
    memory = str(memory)
    return int(bitmath.parse_string_unsafe(memory).bytes)


def storage_to_gib(storage: Any) -> int:
    """Convert a storage quantity to whole GiB, rounding up.

    Plugins size volumes in GiB, so a request for ``1500Mi`` becomes a 2 GiB
    volume rather than a volume smaller than the claim.

    Raises
    ------
    ValueError
        Raised if the input string is not a valid byte specification.
    """
    return math.ceil(memory_to_bytes(storage) / GIB)
