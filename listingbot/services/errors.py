ATTACHMENT_RETRY_MESSAGE = "❌ Sorry, I could not process this attachment. Please resend it."
GENERIC_APOLOGY_MESSAGE = "❌ Sorry, something went wrong. Please try again in a moment."


class ListingBotError(Exception):
    """Base class for errors raised by the listing bot."""


class ConfigurationError(ListingBotError):
    """Required external credentials are missing; the service must not start."""


class TransientBackendError(ListingBotError):
    """A backend call kept failing after the retry policy was exhausted."""

    def __init__(self, operation: str, attempts: int, cause: Exception):
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"{operation} failed after {attempts} attempts: {cause}")


class ValidationError(ListingBotError):
    """Inbound payload does not have the expected shape."""


class AttachmentProcessingError(ListingBotError):
    """An attachment could not be fetched or processed."""

    user_message = ATTACHMENT_RETRY_MESSAGE

    def __init__(self, kind: str, detail: str):
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind} attachment failed: {detail}")


class UnsupportedAttachmentError(AttachmentProcessingError):
    """Attachment kind or format the pipeline does not handle (e.g. non-PDF documents)."""

    user_message = "🗃️ Only PDF documents are supported. Please send a PDF file."


class PersistenceError(ListingBotError):
    """A side effect writing to the record store failed."""

    def __init__(self, effect: str, cause: Exception):
        self.effect = effect
        self.cause = cause
        super().__init__(f"{effect} failed: {cause}")
