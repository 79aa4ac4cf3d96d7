import os

# Remote APIs
PIPEDRIVE_BASE_URL = os.getenv("PIPEDRIVE_BASE_URL", "https://{domain}.pipedrive.com/api/v1")
PIPEDRIVE_PAGE_SIZE = int(os.getenv("PIPEDRIVE_PAGE_SIZE", "100"))
XERO_API_URL = os.getenv("XERO_API_URL", "https://api.xero.com/api.xro/2.0")
XERO_PROJECTS_URL = os.getenv("XERO_PROJECTS_URL", "https://api.xero.com/projects.xro/2.0")
XERO_IDENTITY_URL = os.getenv("XERO_IDENTITY_URL", "https://identity.xero.com/connect/token")
XERO_CLIENT_ID = os.getenv("XERO_CLIENT_ID", "")
XERO_CLIENT_SECRET = os.getenv("XERO_CLIENT_SECRET", "")
XERO_PAGE_SIZE = 100
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

# Rate budgets
PIPEDRIVE_CALLS_PER_MINUTE = int(os.getenv("PIPEDRIVE_CALLS_PER_MINUTE", "60"))
PIPEDRIVE_CALLS_PER_DAY = int(os.getenv("PIPEDRIVE_CALLS_PER_DAY", "10000"))
XERO_CALLS_PER_MINUTE = int(os.getenv("XERO_CALLS_PER_MINUTE", "60"))
XERO_CALLS_PER_DAY = int(os.getenv("XERO_CALLS_PER_DAY", "5000"))
RATE_MINUTE_BUFFER = int(os.getenv("RATE_MINUTE_BUFFER", "5"))
RATE_DAY_BUFFER = int(os.getenv("RATE_DAY_BUFFER", "50"))
RATE_MIN_INTERVAL_SECONDS = float(os.getenv("RATE_MIN_INTERVAL_SECONDS", "0.05"))

# Fix workflow
FIX_MAX_RETRIES = int(os.getenv("FIX_MAX_RETRIES", "3"))
FIX_RETRY_DELAY_SECONDS = float(os.getenv("FIX_RETRY_DELAY_SECONDS", "1.0"))
FIX_BATCH_SIZE = int(os.getenv("FIX_BATCH_SIZE", "10"))
FIX_CIRCUIT_BREAKER_THRESHOLD = int(os.getenv("FIX_CIRCUIT_BREAKER_THRESHOLD", "5"))
FIX_CIRCUIT_BREAKER_RESET_SECONDS = float(os.getenv("FIX_CIRCUIT_BREAKER_RESET_SECONDS", "60"))

# Stored secrets (Fernet key used for Xero refresh tokens)
SECRETS_KEY = os.getenv("SECRETS_KEY", "")

PROGRESS_TTL_SECONDS = 3600

ENABLE_CRON = os.getenv("ENABLE_CRON", "false").lower() == "true"
