"""Deterministic mapping of job keys to PostgreSQL advisory lock identifiers."""

from __future__ import annotations

from typing import Union

LockKey = Union[str, int]

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

_UINT32_MASK = 0xFFFFFFFF


def _utf16_code_units(key: str):
    encoded = key.encode("utf-16-le", "surrogatepass")
    for index in range(0, len(encoded), 2):
        yield encoded[index] | (encoded[index + 1] << 8)


def hash_key(key: str) -> int:
    """Hash ``key`` with 32-bit FNV-1a and return it as a signed int32.

    Characters are consumed as UTF-16 code units so that keys outside the
    basic multilingual plane produce the same identifier as services hashing
    UTF-16 strings against the same database.
    """

    accumulator = FNV_OFFSET_BASIS
    for code_unit in _utf16_code_units(key):
        accumulator = ((accumulator ^ code_unit) * FNV_PRIME) & _UINT32_MASK
    if accumulator > INT32_MAX:
        accumulator -= 1 << 32
    return accumulator


def resolve_lock_id(key: LockKey) -> int:
    """Return the lock identifier for ``key``.

    String keys are hashed, integer keys are used as-is after a range check.
    """

    if isinstance(key, bool):
        raise TypeError("Advisory lock keys must be str or int, not bool")
    if isinstance(key, str):
        return hash_key(key)
    if isinstance(key, int):
        if not INT32_MIN <= key <= INT32_MAX:
            raise ValueError(
                f"Advisory lock id {key} does not fit in a signed 32-bit integer"
            )
        return key
    raise TypeError(
        f"Advisory lock keys must be str or int, not {type(key).__name__}"
    )


__all__ = [
    "FNV_OFFSET_BASIS",
    "FNV_PRIME",
    "INT32_MAX",
    "INT32_MIN",
    "LockKey",
    "hash_key",
    "resolve_lock_id",
]
