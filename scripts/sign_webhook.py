"""HMAC signing helper for simulating Shopify webhooks.

Reads a JSON body from stdin and prints the base64-encoded HMAC-SHA256
signature Shopify would send, using the first configured webhook secret
(SHOPIFY_API_SECRET, then SHOPIFY_WEBHOOK_SECRET).

Usage:
    echo '{"id": 123}' | python -m scripts.sign_webhook

    # Full curl example:
    BODY='{"recurring_application_charge":{"id":1029266947,"name":"Convertly Monthly","price":"29.00","status":"active"}}'
    HMAC=$(echo -n "$BODY" | python -m scripts.sign_webhook)
    curl -X POST http://localhost:8000/api/v1/webhooks/shopify \\
      -H "Content-Type: application/json" \\
      -H "X-Shopify-Topic: recurring_application_charges/update" \\
      -H "X-Shopify-Hmac-Sha256: $HMAC" \\
      -H "X-Shopify-Shop-Domain: test-shop.myshopify.com" \\
      -d "$BODY"
"""

import sys

from convertly.core.config import settings
from convertly.integrations.shopify.webhooks import compute_webhook_signature


def main() -> None:
    secrets = settings.webhook_secrets
    if not secrets:
        print("ERROR: SHOPIFY_API_SECRET is not set in .env", file=sys.stderr)
        sys.exit(1)

    body = sys.stdin.buffer.read()
    if not body:
        print("ERROR: No input received on stdin", file=sys.stderr)
        sys.exit(1)

    print(compute_webhook_signature(body, secrets[0]), end="")


if __name__ == "__main__":
    main()
