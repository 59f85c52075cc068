"""Core building blocks: settings, errors, clock, persistence base classes."""
