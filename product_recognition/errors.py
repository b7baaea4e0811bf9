"""
Exception taxonomy for the product recognition pipeline.

Every error the API layer maps to an HTTP response derives from
RecognitionError and carries the status code it should surface as.
"""


class RecognitionError(Exception):
    """Base class for recognition pipeline errors."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ExtractionError(RecognitionError):
    """
    Image could not be decoded, resized, or reduced to features.

    Bad uploads surface as 400; failures inside the pipeline as 500.
    """

    status_code = 500


class InsufficientDataError(RecognitionError):
    """Too few training images to build a product model."""

    status_code = 400


class ProductNotFoundError(RecognitionError):
    """Referenced product does not exist in the catalog."""

    status_code = 404


class TrainingImageNotFoundError(RecognitionError):
    status_code = 404


class ComparisonError(RecognitionError):
    """
    A single sub-feature comparison failed (e.g. malformed stored JSON).

    Raised inside a sub-comparator and caught by compare_features, which
    drops that sub-score instead of aborting the whole comparison.
    """
