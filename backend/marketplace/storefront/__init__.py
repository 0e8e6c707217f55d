from .api import StorefrontAPI, StorefrontAPIError
from .cart import Cart, CartLine
from .checkout import (
    CheckoutOrchestrator,
    CheckoutState,
    InvalidTransition,
    PollTimeout,
    parse_return_url,
)
