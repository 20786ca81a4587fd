"""famguard: location capture, incident proximity alerts and realtime safety sync."""

__version__ = "0.1.0"
