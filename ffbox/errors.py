"""Error types raised by ffbox."""

from __future__ import annotations

from typing import Optional


class FfboxError(Exception):
    """Base exception for all ffbox errors."""

    pass


class UnsupportedFieldError(FfboxError):
    """Raised when a field selection names a field the registry does not know."""

    def __init__(self, index: int, field_name: str) -> None:
        super().__init__(f"unsupported field[{index}]: {field_name}")
        self.index = index
        self.field_name = field_name


class NilRecordError(FfboxError):
    """Raised when a detail view is requested for a missing receipt."""

    def __init__(self) -> None:
        super().__init__("receipt is nil")


class InvalidTimestampError(FfboxError):
    def __init__(self, value: str) -> None:
        super().__init__(f"invalid timestamp: {value!r}")
        self.value = value


class UnsupportedFormatError(FfboxError):
    def __init__(self, output_format: str) -> None:
        super().__init__(f"format must be table or json: {output_format}")
        self.output_format = output_format


class EncodingError(FfboxError):
    """Raised when a multipart body cannot be built.

    ``part`` names the step that failed, e.g. ``"copy receipt file"`` or
    ``"write description"``.
    """

    def __init__(self, part: str, cause: Optional[BaseException] = None) -> None:
        message = part if cause is None else f"{part}: {cause}"
        super().__init__(message)
        self.part = part
        self.cause = cause


class UnexpectedResponseError(FfboxError):
    def __init__(self, status_code: int, reason: str = "", context: str = "") -> None:
        status = f"{status_code} {reason}".strip()
        prefix = f"got unexpected response for {context}" if context else "got unexpected response"
        super().__init__(f"{prefix}: {status}")
        self.status_code = status_code


class ConfigError(FfboxError):
    """Raised when the config file is missing or cannot be parsed."""

    pass
