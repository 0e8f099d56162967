"""Core persistence, schemas, validation and error types."""
