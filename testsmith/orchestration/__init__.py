"""Session orchestration: the state machine and its factory."""
