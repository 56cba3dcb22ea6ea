"""Deployment controller and descriptor rendering."""
