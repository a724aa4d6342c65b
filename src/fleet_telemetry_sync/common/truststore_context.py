# fleet_telemetry_sync/common/truststore_context.py
"""
SSL context backed by the operating system's trust store.

Some fleet offices reach the partner platform through TLS-inspecting proxies
whose root CA lives only in the OS certificate store. With
`sync.use_truststore: true` the GraphQL and token requests verify against
that store instead of certifi's bundle.

The `truststore` import is deferred so the package works without it when the
option is off.
"""

import ssl
from ssl import SSLContext

__all__: list[str] = ['build_truststore_ssl_context']


def build_truststore_ssl_context() -> SSLContext:
    """
    Create a client-side SSLContext that validates against the OS trust store.

    Returns:
        SSLContext usable as httpx's `verify` argument.

    Raises:
        RuntimeError: If truststore is not installed.
    """
    try:
        import truststore  # noqa: PLC0415
    except ImportError as import_error:
        raise RuntimeError(
            'truststore is required when use_truststore=True; '
            'install it with: pip install truststore'
        ) from import_error

    return truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
