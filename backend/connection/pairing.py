"""
Pairing artifact cache and rendering.

The cache holds zero or one artifact. It has no timers: an artifact is
valid until the reducer supersedes or clears it, because the protocol
engine decides when a code expires and issues a fresh one.

Rendering is best-effort and happens before a pairing code enters the
connection manager's inbox, so the reducer stays pure.
"""

from __future__ import annotations

import base64
import io
from dataclasses import dataclass

import qrcode
import qrcode.image.svg

from constants import QR_BORDER, QR_BOX_SIZE


@dataclass(frozen=True)
class PairingArtifact:
    """A pairing code and its displayable rendering."""
    code: str
    rendered_image: str
    issued_at_ms: int


@dataclass(frozen=True)
class PairingCodeCache:
    """
    Immutable single-slot cache.

    Lives inside the bridge state snapshot so the artifact is swapped
    together with the connection state it depends on.
    """

    artifact: PairingArtifact | None = None

    def set(self, artifact: PairingArtifact) -> PairingCodeCache:
        """Replace unconditionally (supersession)."""
        return PairingCodeCache(artifact=artifact)

    def get(self) -> PairingArtifact | None:
        return self.artifact

    def clear(self) -> PairingCodeCache:
        if self.artifact is None:
            return self
        return PairingCodeCache()

    def __bool__(self) -> bool:
        return self.artifact is not None


# ---------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------

def _build_qr(code: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
    )
    qr.add_data(code)
    qr.make(fit=True)
    return qr


def render_pairing_image(code: str) -> str:
    """
    Render a pairing code as an SVG data URL for the dashboard.

    Raises whatever qrcode raises; callers treat rendering as best-effort.
    """
    img = _build_qr(code).make_image(image_factory=qrcode.image.svg.SvgPathImage)
    svg = img.to_string(encoding="utf-8")
    return "data:image/svg+xml;base64," + base64.b64encode(svg).decode("ascii")


def render_pairing_ascii(code: str) -> str:
    """Render a pairing code for a terminal."""
    buf = io.StringIO()
    _build_qr(code).print_ascii(out=buf, invert=True)
    return buf.getvalue()
