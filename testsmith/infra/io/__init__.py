"""Configuration, artifacts, console output and event subscribers."""
