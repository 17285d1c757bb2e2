"""
Session error taxonomy.

Every error here is caught at the boundary where it occurs and converted into
a System entry plus (for connection-lifecycle failures) a state transition.
None of them reach the presentation layer.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base class for all session coordination failures."""


class CredentialError(SessionError):
    """Token request failed (non-2xx, network failure, malformed body)."""


class TransportConnectionError(SessionError):
    """Transport failed to establish, or dropped unexpectedly."""


class PublishError(SessionError):
    """Data send failed on an otherwise-connected session."""


class CapabilityUnavailable(SessionError):
    """Speech capture is not supported on this host."""


class SpeechProviderError(SessionError):
    """Speech capture failed mid-session."""
