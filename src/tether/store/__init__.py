"""Tether record store backends."""

from tether.store.base import BackendKind, SessionBackend
from tether.store.local import LocalBackend
from tether.store.remote import RemoteBackend

__all__ = [
    "BackendKind",
    "LocalBackend",
    "RemoteBackend",
    "SessionBackend",
]
