"""Dialect rules and SQL rendering."""
