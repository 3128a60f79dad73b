"""Errors raised inside photo operations and manifest loading.

Operations never let these escape to the UI; they are converted into
``PhotoState`` transitions (or, for the manifest, a failure signal).
"""


class PhotoPipelineError(Exception):
    """Base class for all pipeline errors."""


class FetchError(PhotoPipelineError):
    """Network failure, non-2xx response, or empty body."""


class DecodeError(PhotoPipelineError):
    """Payload is not an image Pillow can decode."""


class FilterError(PhotoPipelineError):
    """The filter engine could not produce an output image."""


class ManifestError(PhotoPipelineError):
    """The photo manifest could not be fetched or parsed."""
