class PromptRagError(Exception):
    """Base class for errors raised by the retrieval pipeline."""
    pass


class NotFoundError(PromptRagError):
    """Referenced prompt or file does not exist for the tenant."""
    pass


class InvalidInputError(PromptRagError):
    """Malformed or missing required input."""
    pass


class UnsupportedMimeTypeError(InvalidInputError):
    def __init__(self, mime_type: str):
        super().__init__(f"Unsupported MIME type: {mime_type}")
        self.mime_type = mime_type


class EmbeddingDimensionError(InvalidInputError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"Vector has {actual} dimensions, expected {expected}")
        self.expected = expected
        self.actual = actual


class ContentExtractionError(PromptRagError):
    """A document could not be turned into text."""
    pass


class EmbeddingProviderError(PromptRagError):
    def __init__(self, message: str, *, model: str, operation: str):
        super().__init__(f"{operation} with model {model} failed: {message}")
        self.model = model
        self.operation = operation


class BlobStoreError(PromptRagError):
    """Blob storage backend failed."""
    pass


def require_tenant(tenant_id: str) -> str:
    if not tenant_id or not tenant_id.strip():
        raise InvalidInputError("tenant id must be a non-empty string")
    return tenant_id
