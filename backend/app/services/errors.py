"""Exceptions that abort a load-estimation run.

Everything else (retrieval outages, classifier failures, unmatched rooms) is
absorbed by the pipeline and reported through flags and warnings instead.
"""


class LoadEstimationError(Exception):
    """Base class for whole-file failures."""


class DxfParseError(LoadEstimationError):
    """The uploaded content could not be read as a DXF drawing."""


class NoRoomsFoundError(LoadEstimationError):
    """No polygon survived geometric filtering."""

    def __init__(self, message: str = (
        "No rooms found in this DXF file. "
        "Ensure the drawing has closed polylines with text labels."
    )):
        super().__init__(message)


class ClassificationError(Exception):
    """The classifier returned nothing usable. Degrades the run, never aborts it."""
