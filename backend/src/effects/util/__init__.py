"""Utility operations (util.* namespace)."""
