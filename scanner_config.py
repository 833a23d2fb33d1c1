"""
Configuration settings for the legal link scanner.
"""

# Classification patterns, checked in order. The first pattern whose keywords
# all appear in the href, anchor text or aria-label decides the document type.
# Each entry is (keywords, document type).
LINK_PATTERNS = [
    (("terms",), "terms"),
    (("user", "agreement"), "terms"),
    (("tos",), "terms"),
    (("privacy",), "policy"),
    (("privacy", "policy"), "policy"),
    (("data", "protection"), "policy"),
    (("legal",), "terms"),
    (("conditions",), "terms"),
]

# Links pointing into a browser extension are never reported
INTERNAL_URL_SCHEMES = (
    "chrome-extension://",
    "moz-extension://",
    "safari-web-extension://",
    "edge-extension://",
)

# Normalized hrefs shorter than this are dropped even when they match
# (bare "/" or empty strings)
MIN_HREF_LENGTH = 3

# Title used when neither the anchor nor the document provides one
FALLBACK_PAGE_TITLE = "Untitled Page"

# Action tag carried by every outbound links message
MESSAGE_ACTION = "sendLinks"

# Number of retries after a failed delivery (total attempts = MAX_RETRIES + 1)
MAX_RETRIES = 3

# Delay in seconds between delivery attempts
RETRY_DELAY = 1.0

# Timeout in seconds for a single HTTP delivery attempt
DELIVERY_TIMEOUT = 10

# Quiet window in seconds: a burst of DOM mutations is collapsed into one scan
# that runs once no mutation has happened for this long
DEBOUNCE_WINDOW = 0.5

# Browser headless mode for live page sessions
HEADLESS = True
