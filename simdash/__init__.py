"""Fleet state reconciliation backend for simulator agents."""

__version__ = "0.1.0"
