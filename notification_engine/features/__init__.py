"""Feature packages: templates, preferences, notifications."""
