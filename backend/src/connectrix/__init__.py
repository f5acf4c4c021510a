"""Connectrix realtime messaging and notification sync."""
