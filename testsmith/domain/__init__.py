"""Domain logic with no I/O beyond reading prompt templates and settings files."""
