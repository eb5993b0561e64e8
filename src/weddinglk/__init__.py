"""WeddingLK tiered cache."""

__version__ = "0.1.0"
