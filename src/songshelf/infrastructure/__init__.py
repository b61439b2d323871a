"""Infrastructure adapters: persistence, track sources, observability."""
