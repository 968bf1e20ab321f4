"""Adapters: storage backends and logging integrations."""
