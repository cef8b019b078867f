"""Errors raised by upstream price sources."""


class UpstreamError(Exception):
    """A third-party price API failed or returned something unusable."""

    def __init__(self, source: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message
        self.status_code = status_code
