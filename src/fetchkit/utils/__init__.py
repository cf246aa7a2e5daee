"""Utility modules for fetchkit."""
