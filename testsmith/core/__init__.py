"""Core types shared by every layer: events, models, protocols, cancellation."""
