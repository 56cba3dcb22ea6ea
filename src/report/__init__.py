"""Run result export."""
