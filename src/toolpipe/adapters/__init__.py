"""Adapters translating host data into core types."""
