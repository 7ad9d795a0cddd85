"""Synchronize translatable content with a translation management service."""
