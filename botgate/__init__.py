"""botgate: graduated bot autonomy behind a layered permission policy."""

__version__ = "0.1.0"
