"""Wire encodings used by storage adapters."""
