"""Settings and pipeline definition loading."""
