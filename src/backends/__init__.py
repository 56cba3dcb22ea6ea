"""Build, registry and cluster backends plus credential providers."""
