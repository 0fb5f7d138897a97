"""Square platform gateway."""

from .client import SquareAPIError, SquareClient, gift_card_balance_cents

__all__ = ["SquareAPIError", "SquareClient", "gift_card_balance_cents"]
