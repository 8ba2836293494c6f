"""Bidirectional calendar synchronization service."""
