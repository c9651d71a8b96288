"""Durable job store and polling workers."""
