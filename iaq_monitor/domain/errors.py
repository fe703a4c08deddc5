from __future__ import annotations


class LinkError(Exception):
    """Base class for instrument link failures."""

    kind = "link"


class LinkTimeout(LinkError):
    kind = "timeout"


class LinkConnectionReset(LinkError):
    kind = "connection_reset"


class LinkProtocolError(LinkError):
    """Malformed, short, or exception response from the instrument."""

    kind = "protocol"


class LinkNotOpen(LinkError):
    kind = "not_open"
