"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Text extraction from PDF, Markdown and plain text
- Sentence-aligned segmentation with overlap
- Exact cosine-similarity vector index
- Semantic retrieval
- Grounded prompt building, answer formatting and streaming
"""
