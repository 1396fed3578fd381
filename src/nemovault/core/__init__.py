"""Core engine pieces: models, staging, vault storage, context and policy."""
