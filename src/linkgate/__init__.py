"""linkgate - trigger-gated documentation link checking."""

__version__ = "0.1.0"
