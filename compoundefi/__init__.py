"""CompounDefi - allocation execution engine and auto-optimizer."""

__version__ = "0.1.0"
