"""
Property listing conversation flow.

`transition` is pure and total: it never performs I/O and never raises for any
state/data/input combination. Work that can fail (record writes) is returned
as `Effect` values for the orchestrator to execute.
"""

import html
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional


class ConversationState(str, Enum):
    INITIAL = "initial"
    AWAITING_ADDRESS = "awaiting_address"
    AWAITING_ZIP = "awaiting_zip"
    AWAITING_BEDROOMS = "awaiting_bedrooms"
    AWAITING_BATHROOMS = "awaiting_bathrooms"
    AWAITING_SIZE = "awaiting_size"
    AWAITING_PRICE = "awaiting_price"
    AWAITING_AMENITIES = "awaiting_amenities"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_IMAGES = "awaiting_images"


def parse_state(value: Any) -> ConversationState:
    """Unknown or missing states are treated as initial."""
    if isinstance(value, ConversationState):
        return value
    try:
        return ConversationState(value)
    except ValueError:
        return ConversationState.INITIAL


class EffectKind(str, Enum):
    PERSIST_LISTING = "persist-listing"
    PROCESS_IMAGE = "process-image"
    FINALIZE = "finalize"


@dataclass(frozen=True)
class Effect:
    kind: EffectKind
    listing_id: Optional[str] = None
    fields: Optional[dict] = None
    image_url: Optional[str] = None


LISTING_FIELDS = ("address", "zip", "bedrooms", "bathrooms", "size", "price", "amenities")
NUMERIC_FIELDS = frozenset({"bedrooms", "bathrooms", "size", "price"})


def _coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return parse_whole_number(str(value))


def parse_whole_number(text: str) -> Optional[int]:
    """Parse a non-negative integer, tolerating spaces and thousands separators."""
    cleaned = re.sub(r"[\s,_']", "", text or "")
    if not cleaned.isdigit():
        return None
    return int(cleaned)


@dataclass(frozen=True)
class ListingDraft:
    """Typed view of a session's collected data."""

    address: Optional[str] = None
    zip: Optional[str] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    size: Optional[int] = None
    price: Optional[int] = None
    amenities: Optional[str] = None
    listing_id: Optional[str] = None
    image_urls: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ListingDraft":
        if not isinstance(data, dict):
            return cls()
        values: dict[str, Any] = {}
        for name in LISTING_FIELDS:
            raw = data.get(name)
            if raw is None:
                continue
            values[name] = _coerce_int(raw) if name in NUMERIC_FIELDS else str(raw)
        if data.get("listing_id"):
            values["listing_id"] = str(data["listing_id"])
        urls = data.get("image_urls")
        if isinstance(urls, (list, tuple)):
            values["image_urls"] = tuple(str(url) for url in urls if url)
        return cls(**values)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            name: getattr(self, name) for name in LISTING_FIELDS if getattr(self, name) is not None
        }
        if self.listing_id:
            data["listing_id"] = self.listing_id
        if self.image_urls:
            data["image_urls"] = list(self.image_urls)
        return data

    def listing_fields(self) -> dict:
        return {name: getattr(self, name) for name in LISTING_FIELDS}

    def is_complete(self) -> bool:
        return all(getattr(self, name) is not None for name in LISTING_FIELDS)


@dataclass(frozen=True)
class ProcessedImage:
    url: str
    analysis: str = ""


@dataclass(frozen=True)
class UserInput:
    event_id: str
    text: Optional[str] = None
    image: Optional[ProcessedImage] = None
    # set when a stored session exists, i.e. the user already finished a listing here
    returning: bool = False


@dataclass(frozen=True)
class Transition:
    state: ConversationState
    data: ListingDraft
    reply: str
    effects: tuple[Effect, ...] = ()


@dataclass(frozen=True)
class FieldStep:
    field: str
    next_state: ConversationState


FIELD_STEPS = {
    ConversationState.AWAITING_ADDRESS: FieldStep("address", ConversationState.AWAITING_ZIP),
    ConversationState.AWAITING_ZIP: FieldStep("zip", ConversationState.AWAITING_BEDROOMS),
    ConversationState.AWAITING_BEDROOMS: FieldStep("bedrooms", ConversationState.AWAITING_BATHROOMS),
    ConversationState.AWAITING_BATHROOMS: FieldStep("bathrooms", ConversationState.AWAITING_SIZE),
    ConversationState.AWAITING_SIZE: FieldStep("size", ConversationState.AWAITING_PRICE),
    ConversationState.AWAITING_PRICE: FieldStep("price", ConversationState.AWAITING_AMENITIES),
    ConversationState.AWAITING_AMENITIES: FieldStep("amenities", ConversationState.AWAITING_CONFIRMATION),
}

PROMPTS = {
    ConversationState.AWAITING_ADDRESS: "🏠 What's the property address?",
    ConversationState.AWAITING_ZIP: "📍 What's the ZIP code?",
    ConversationState.AWAITING_BEDROOMS: "🛏️ How many bedrooms?",
    ConversationState.AWAITING_BATHROOMS: "🚿 How many bathrooms?",
    ConversationState.AWAITING_SIZE: "📏 What's the total size in square meters?",
    ConversationState.AWAITING_PRICE: "💰 What's the asking price?",
    ConversationState.AWAITING_AMENITIES: "✨ Which amenities does the property have? (pool, garage, garden...)",
}

WELCOME_TEXT = "👋 Hi! I'll help you list your property. Let's start."
RESTART_TEXT = "🔄 Let's start over."
NUMBER_REPROMPT = "🔢 Please answer with a whole number."
CONFIRM_REPROMPT = "Please respond with <b>Yes</b> or <b>No</b>."
INCOMPLETE_TEXT = "⚠️ Some details were missing, so let's start over."
SAVED_TEXT = (
    "✅ Great! Your property has been saved.\n\n"
    "📸 Now you can send me photos of the property.\n"
    'Send as many photos as you want, and type "done" when finished.'
)
IMAGE_ADDED_TEXT = '📸 Image added successfully! You can send more images or type "done" when finished.'
IMAGES_REPROMPT = '📸 Send me photos of the property, or type "done" when finished.'
FINISHED_TEXT = (
    "✨ Perfect! All your property information and images have been saved. "
    "Send me a message whenever you want to list another property."
)

RESTART_COMMANDS = frozenset({"/start", "/restart", "/cancel", "restart", "cancel", "start over"})
GREETINGS = frozenset({"hi", "hello", "hey", "start", "hola", "good morning", "good evening"})


def normalize_command(text: Optional[str]) -> str:
    normalized = (text or "").strip().lower()
    normalized = re.sub(r"[^\w\s/]", "", normalized)
    return re.sub(r"\s+", " ", normalized).strip()


def is_greeting_or_command(text: Optional[str]) -> bool:
    command = normalize_command(text)
    if not command:
        return True
    return command in GREETINGS or command in RESTART_COMMANDS or command.startswith("/")


def build_confirmation_prompt(draft: ListingDraft) -> str:
    def show(value: Any) -> str:
        return html.escape(str(value))

    return (
        "Here's what I've collected:\n\n"
        f"🏠 Address: {show(draft.address)}\n"
        f"📍 ZIP: {show(draft.zip)}\n"
        f"🛏️ Bedrooms: {show(draft.bedrooms)}\n"
        f"🚿 Bathrooms: {show(draft.bathrooms)}\n"
        f"📏 Size (m²): {show(draft.size)}\n"
        f"💰 Price: {show(draft.price)}\n"
        f"✨ Amenities: {show(draft.amenities)}\n\n"
        "Is this information correct? [Yes/No]"
    )


def prompt_for(state: ConversationState, draft: ListingDraft) -> str:
    if state == ConversationState.AWAITING_CONFIRMATION:
        return build_confirmation_prompt(draft)
    if state == ConversationState.AWAITING_IMAGES:
        return IMAGES_REPROMPT
    return PROMPTS.get(state, PROMPTS[ConversationState.AWAITING_ADDRESS])


def listing_id_for_event(event_id: str) -> str:
    return f"PROP-{event_id}"


def _start_over(prefix: str) -> Transition:
    reply = f"{prefix} {PROMPTS[ConversationState.AWAITING_ADDRESS]}"
    return Transition(ConversationState.AWAITING_ADDRESS, ListingDraft(), reply)


def _collect_field(state: ConversationState, draft: ListingDraft, text: str) -> Transition:
    step = FIELD_STEPS[state]
    if not text:
        return Transition(state, draft, PROMPTS[state])

    value: Any = text
    if step.field in NUMERIC_FIELDS:
        value = parse_whole_number(text)
        if value is None:
            return Transition(state, draft, f"{NUMBER_REPROMPT} {PROMPTS[state]}")

    updated = replace(draft, **{step.field: value})
    return Transition(step.next_state, updated, prompt_for(step.next_state, updated))


def _confirm(draft: ListingDraft, user_input: UserInput, command: str) -> Transition:
    if command == "yes":
        if not draft.is_complete():
            return _start_over(INCOMPLETE_TEXT)
        listing_id = listing_id_for_event(user_input.event_id)
        effect = Effect(EffectKind.PERSIST_LISTING, listing_id=listing_id, fields=draft.listing_fields())
        return Transition(
            ConversationState.AWAITING_IMAGES,
            replace(draft, listing_id=listing_id, image_urls=()),
            SAVED_TEXT,
            (effect,),
        )
    if command == "no":
        return _start_over(RESTART_TEXT)
    return Transition(ConversationState.AWAITING_CONFIRMATION, draft, CONFIRM_REPROMPT)


def _collect_images(draft: ListingDraft, user_input: UserInput, command: str) -> Transition:
    if user_input.image is not None and draft.listing_id:
        url = user_input.image.url
        effect = Effect(EffectKind.PROCESS_IMAGE, listing_id=draft.listing_id, image_url=url)
        updated = replace(draft, image_urls=draft.image_urls + (url,))
        return Transition(ConversationState.AWAITING_IMAGES, updated, IMAGE_ADDED_TEXT, (effect,))
    if command == "done":
        effect = Effect(EffectKind.FINALIZE, listing_id=draft.listing_id)
        return Transition(ConversationState.INITIAL, ListingDraft(), FINISHED_TEXT, (effect,))
    return Transition(ConversationState.AWAITING_IMAGES, draft, IMAGES_REPROMPT)


def transition(state: Any, data: Any, user_input: UserInput) -> Transition:
    """Compute the next state, data, reply and effects for one user input."""
    current = parse_state(state)
    draft = data if isinstance(data, ListingDraft) else ListingDraft.from_dict(data)
    text = (user_input.text or "").strip()
    command = normalize_command(text)

    if current == ConversationState.INITIAL:
        if user_input.image is not None or user_input.returning or is_greeting_or_command(text):
            return _start_over(WELCOME_TEXT)
        # First contact: substantive text is taken as the address.
        return _collect_field(ConversationState.AWAITING_ADDRESS, ListingDraft(), text)

    if command in RESTART_COMMANDS:
        return _start_over(RESTART_TEXT)

    if current in FIELD_STEPS:
        return _collect_field(current, draft, text)

    if current == ConversationState.AWAITING_CONFIRMATION:
        return _confirm(draft, user_input, command)

    return _collect_images(draft, user_input, command)
