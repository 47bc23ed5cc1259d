"""Errors raised by the Shopify integration layer."""


class ShopifyApiError(Exception):
    """A call to Shopify failed or returned an unusable response."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ShopifyUnauthorizedError(ShopifyApiError):
    """Shopify rejected the access token (HTTP 401).

    Right after an install this can be activation lag rather than a bad
    token, so callers may retry it under a bounded ``RetryPolicy``.
    """

    def __init__(self, message: str = "Shopify rejected the access token") -> None:
        super().__init__(401, message)


class TokenExchangeError(ShopifyApiError):
    """The OAuth authorization code could not be exchanged for a token."""


class InvalidAccessTokenError(ValueError):
    """A token returned by Shopify failed the format/length sanity check."""
