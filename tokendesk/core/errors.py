class InvalidRequest(Exception):
    """Malformed or missing input. Surfaced as HTTP 400, never retried."""


class TokenPriceUpdateError(Exception):
    """The bulk refresh could not obtain prices from the price endpoint."""
