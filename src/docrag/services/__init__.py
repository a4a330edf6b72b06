"""Service layer orchestrating document storage and retrieval."""
