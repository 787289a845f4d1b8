"""Exceptions raised by the ingestion and retrieval pipelines."""


class DocChatError(Exception):
    """Base exception for docchat errors."""

    http_status = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(DocChatError):
    """A document, session or stored file does not exist."""

    http_status = 404


class UnsupportedFormatError(DocChatError):
    """Text extraction was asked for a media type it cannot handle."""

    http_status = 415


class UpstreamError(DocChatError):
    """The embedding, vector index or language model service failed."""

    http_status = 502


class InvalidRequestError(DocChatError):
    """A request is missing required fields or carries invalid values."""

    http_status = 400


class ConfigurationError(DocChatError):
    """Settings are inconsistent, e.g. embedding and index dimensions differ."""
