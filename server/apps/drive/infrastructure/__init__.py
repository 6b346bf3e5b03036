"""Infrastructure layer for drive app.

This package contains integrations with external systems:
- Object storage backend (S3/MinIO/R2) for staged uploads and deletes
- Name, MIME type and storage key validation

Keep infrastructure concerns separate from business logic.
"""
