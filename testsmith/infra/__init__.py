"""Infrastructure: subprocesses, git, filesystem artifacts, agent backends."""
