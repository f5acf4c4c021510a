"""Core utilities for the Connectrix backend."""
