# --- Instruments API ---


class ApiError(Exception):
    """Raised when the instruments API answers with an error body ``{code, message}``."""

    def __init__(self, code: int, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is not None:
            return f"API error {self.code} (HTTP {self.status}): {self.message}"
        return f"API error {self.code}: {self.message}"


class ApiRequestError(Exception):
    """Raised when a request to the instruments API cannot be sent or answered."""


class ApiResponseError(Exception):
    "Response body is neither instrument metadata nor an error body."
