from listingbot.services.errors import (
    AttachmentProcessingError,
    ConfigurationError,
    ListingBotError,
    PersistenceError,
    TransientBackendError,
    ValidationError,
)
from listingbot.services.result import Result
from listingbot.services.state_machine import (
    ConversationState,
    Effect,
    EffectKind,
    ListingDraft,
    UserInput,
    transition,
)
