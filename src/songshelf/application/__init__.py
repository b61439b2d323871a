"""Application layer: scan pipeline services and workers."""
