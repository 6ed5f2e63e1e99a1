"""Exceptions raised by the study services."""


class DictBotError(Exception):
    """Base class for errors of this package."""


class LessonLoadError(DictBotError):
    """Unit index or lesson document could not be fetched or parsed."""


class InvalidUnitError(DictBotError):
    """Uploaded unit document is missing required fields."""


class InvalidBackupError(DictBotError):
    """Imported backup document has an unexpected shape."""


class SpeechError(DictBotError):
    """Speech synthesis is unavailable or failed."""
