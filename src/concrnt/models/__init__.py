"""Signed documents and the wire models that wrap them."""
