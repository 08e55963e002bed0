"""kontextstore: a tagged knowledge store with ranked retrieval for AI agents."""

__version__ = "0.1.0"
