"""
irobot._tls — TLS context shared by the pairing handshake and the MQTT session.

Robots present a self-signed certificate that cannot be verified against any
CA and whose common name does not match the robot's address. Verification is
therefore disabled: this is trust-on-first-use without pinning, so a host on
the same LAN that impersonates the robot could capture the password during
pairing. Known limitation of the local protocol.
"""

from __future__ import annotations

import ssl

from .const import TLS_CIPHERS


def robot_tls_context() -> ssl.SSLContext:
    """Return a client context that accepts the robot's self-signed certificate."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.set_ciphers(TLS_CIPHERS)
    return context
