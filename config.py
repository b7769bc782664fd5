"""Runtime configuration for Waymark, read from the environment."""

import os

# Language model
ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY")
MODEL = os.environ.get("WAYMARK_MODEL", "claude-sonnet-4-20250514")
MAX_TOKENS = int(os.environ.get("WAYMARK_MAX_TOKENS", 4096))

# Extraction limits
MAX_TEXT_LENGTH = 10000
MAX_IMAGES = 10
MAX_DOCUMENTS = 10
MAX_IMAGE_BYTES = 5 * 1024 * 1024  # model API limit per image
MAX_DOCUMENT_BYTES = 20 * 1024 * 1024  # 20MB per document
MAX_HISTORY_TURNS = int(os.environ.get("EXTRACT_MAX_HISTORY_TURNS", 20))

# Flight status (AeroDataBox)
AERODATABOX_API_KEY = os.environ.get("AERODATABOX_API_KEY")
AERODATABOX_BASE_URL = os.environ.get(
    "AERODATABOX_BASE_URL", "https://aerodatabox.p.rapidapi.com"
)

# Billing (Stripe)
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
STRIPE_API_URL = "https://api.stripe.com/v1"
STRIPE_PRICE_TIERS = {
    os.environ.get("STRIPE_PRICE_PRO", "price_1SRLJ0DAZiZpMiexaU6J5qNG"): "pro",
    os.environ.get("STRIPE_PRICE_ENTERPRISE", "price_1SRLJ0DAZiZpMiexGhJpwc6p"): "enterprise",
}

# Google Calendar
GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET")

# Outbound HTTP timeout in seconds
HTTP_TIMEOUT = int(os.environ.get("HTTP_TIMEOUT", 30))
