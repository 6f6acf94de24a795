"""
Exception types raised by QMMMKit.
"""

class GeometryError(ValueError):
    """Unrecoverable geometry problem (bad index, degenerate frame)."""

    def __init__(self, message: str, atom=None, bead=None):
        details = []
        if atom is not None:
            details.append(f"atom {atom}")
        if bead is not None:
            details.append(f"bead {bead}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)
        self.atom = atom
        self.bead = bead

class FrameError(GeometryError):
    """Local multipole frame cannot be built from the reference atoms."""

class ReplicaError(RuntimeError):
    """Replica arrays were resized outside of initialization."""

class ConfigError(ValueError):
    """Conflicting or invalid run configuration."""
