"""Error taxonomy shared by services and the HTTP layer.

Every class carries the status code the API answers with when the error
reaches the boundary. Services raise these; routes and exception handlers in
``photoguide.main`` turn them into ``{"error": ...}`` envelopes.
"""

from fastapi import status


class PhotoGuideError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UpstreamError(PhotoGuideError):
    """An external dependency did not produce a usable answer."""
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, source: str = "upstream"):
        super().__init__(message)
        self.source = source


class UpstreamTimeout(UpstreamError):
    pass


class UpstreamFailure(UpstreamError):
    pass


class ModelContractViolation(PhotoGuideError):
    """The model answer failed schema or candidate-count validation."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class ClientInputError(PhotoGuideError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(message)
        self.status_code = status_code


class UnknownResource(PhotoGuideError):
    status_code = status.HTTP_404_NOT_FOUND


def truncate(text: object, limit: int = 200) -> str:
    """Shorten an error message for log lines and trace entries."""
    value = str(text)
    return value if len(value) <= limit else value[: limit - 3] + "..."
