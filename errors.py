from __future__ import annotations

from typing import Optional


class PatternError(Exception):
    """Base class for failures that end a single user action.

    ``code`` is the short machine string used in JSON error bodies,
    ``message`` is what gets shown inline on the page.
    """

    code = "pattern_error"
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidFileType(PatternError):
    code = "unsupported_type"
    default_message = "Please upload a valid image file"


class FileTooLarge(PatternError):
    code = "file_too_large"
    default_message = "Image size should be less than 20MB"


class ReadFailure(PatternError):
    code = "decode_failed"
    default_message = "Failed to read the image file. Please try again."


class DefaultLoadFailure(PatternError):
    code = "default_load_failed"
    default_message = "Failed to load default image"


class AnalysisFailure(PatternError):
    code = "analysis_failed"
    default_message = "Failed to analyze image. Please try again."


class AnalysisInProgress(PatternError):
    code = "analysis_in_progress"
    default_message = "A pattern is already being generated"


class MissingImage(PatternError):
    code = "missing_image"
    default_message = "Upload a photo first"
