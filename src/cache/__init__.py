"""Content-addressed stage output cache."""
