"""Error types raised while entering, submitting and printing fabric records."""


class FabricFormError(Exception):
    """Base class for all user-facing form errors."""


class ValidationError(FabricFormError):
    """Length, width or price did not parse to a valid number."""


class SubmissionFault(FabricFormError):
    """The mutation call failed or returned no usable data."""


class NoQrAvailable(FabricFormError):
    """Print was requested before any QR code URL was received."""


class PrintWindowBlocked(FabricFormError):
    """The print surface could not be opened."""


class ImageLoadError(FabricFormError):
    """The QR image referenced by the print document could not be loaded."""


class PrintFailed(FabricFormError):
    """The loaded page could not be handed to the printer."""
