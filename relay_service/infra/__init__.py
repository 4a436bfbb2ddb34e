"""Infrastructure layer: database, logging, metrics, messaging and workers."""
