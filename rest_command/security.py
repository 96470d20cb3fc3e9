"""Trust material for https endpoints.

A RestCommand may carry a TrustStoreProvider. When the endpoint is secure the
executor turns the provider's trust store into an ssl.SSLContext that trusts
only that material. Failing to obtain or load it is not fatal: the request
proceeds with the transport's default verification and a warning is logged.
"""

from __future__ import annotations

import logging
import os
import ssl
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

# A CA bundle path, PEM text, or DER/PEM bytes
TrustStore = Union[str, bytes, os.PathLike]

_PEM_MARKER = "-----BEGIN"


class TrustStoreProvider(ABC):
    """Supplies the trust store to use for a secure endpoint."""

    @abstractmethod
    def get_trust_store(self) -> TrustStore | None:
        """Return the trust material, or None if it is unavailable."""


class CaBundleTrustStore(TrustStoreProvider):
    """Trust store backed by a PEM CA bundle file."""

    def __init__(self, path: str | os.PathLike) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def get_trust_store(self) -> TrustStore | None:
        return self._path

    def __repr__(self) -> str:
        return f"CaBundleTrustStore({str(self._path)!r})"


class PemTrustStore(TrustStoreProvider):
    """Trust store held in memory as PEM text or DER bytes."""

    def __init__(self, data: str | bytes) -> None:
        self._data = data

    def get_trust_store(self) -> TrustStore | None:
        return self._data

    def __repr__(self) -> str:
        return f"PemTrustStore(<{len(self._data)} bytes>)"


def _load_trust_store(context: ssl.SSLContext, trust_store: TrustStore) -> None:
    """Load trust material into context. Raises on unreadable or invalid material."""
    if isinstance(trust_store, (bytes, bytearray)):
        raw = bytes(trust_store)
        if raw.lstrip().startswith(_PEM_MARKER.encode("ascii")):
            context.load_verify_locations(cadata=raw.decode("ascii"))
        else:
            # DER-encoded certificates
            context.load_verify_locations(cadata=raw)
    elif isinstance(trust_store, str) and _PEM_MARKER in trust_store:
        context.load_verify_locations(cadata=trust_store)
    else:
        context.load_verify_locations(cafile=os.fspath(trust_store))


def build_ssl_context(provider: TrustStoreProvider) -> ssl.SSLContext | None:
    """Create an SSL context trusting only the provider's material.

    Returns None (after logging a warning) if the trust store cannot be
    obtained or loaded, so the caller can fall back to default verification.
    """
    try:
        trust_store = provider.get_trust_store()
    except Exception:
        logger.warning("Error getting trust store from %r", provider, exc_info=True)
        return None

    if trust_store is None:
        logger.warning("Trust store from %r is None, using default verification", provider)
        return None

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    try:
        _load_trust_store(context, trust_store)
    except (OSError, ssl.SSLError, ValueError, TypeError) as e:
        logger.warning("Error loading trust store from %r: %s", provider, e)
        return None
    return context
