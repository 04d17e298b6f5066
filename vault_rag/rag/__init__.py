"""RAG (Retrieval-Augmented Generation) engine components.

This package contains modules for:
- Document chunking with overlap
- Embedding cache with JSON persistence
- Cosine similarity search
- Ingestion of the note vault
- Query orchestration with retry and model fallback
"""
