"""Utility helpers: unified diff parsing and token counting."""
