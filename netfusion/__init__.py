"""Network aggregation building blocks: configuration, health scoring, events, IPC, state store and UI state."""

__version__ = "0.1.0"