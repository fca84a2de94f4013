"""Core: configuration, exceptions and database plumbing."""
