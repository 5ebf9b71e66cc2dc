"""Confluence page ingestion for retrieval-augmented generation."""
