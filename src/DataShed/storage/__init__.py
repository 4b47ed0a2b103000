"""Content store and file primitives."""
