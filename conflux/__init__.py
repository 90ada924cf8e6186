"""Set reconciliation primitives: finite-field values, the recon wire format, peer settings and recovery records."""

__version__ = "0.1.0"
__all__ = ["zp", "messages", "settings", "recover"]