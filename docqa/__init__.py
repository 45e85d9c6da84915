"""docqa: question answering grounded in your own documents."""

__version__ = "0.1.0"
