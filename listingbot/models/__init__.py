from listingbot.models.listing import Listing
from listingbot.models.listing_session import ListingSession

__all__ = [
    "ListingSession",
    "Listing",
]
