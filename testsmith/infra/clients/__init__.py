"""Agent backend clients."""
