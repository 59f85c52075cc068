"""Infrastructure adapters: logging, database, rate counting."""
