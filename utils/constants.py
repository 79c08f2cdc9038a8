import os

from dotenv import load_dotenv

load_dotenv(".env.local")

# ENV variables
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# Supabase database configuration
SUPABASE_DB_URL = os.getenv("SUPABASE_DB_URL")
MIGRATIONS_DIR = os.path.join(
    os.path.dirname(__file__), "..", "database", "supabase", "migrations"
)

# Encryption configuration
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY", "is4ArmmmNSnGB13GZy9Kl2u8TWf0y441Ifxxdz7yVTw=")

# Plaid configuration
PLAID_CLIENT_ID = os.getenv("PLAID_CLIENT_ID")
PLAID_SECRET = os.getenv("PLAID_SECRET")
PLAID_ENV = os.getenv("PLAID_ENV", "sandbox")
PLAID_CLIENT_NAME = os.getenv("PLAID_CLIENT_NAME", "Ledger Sync")
PLAID_COUNTRY_CODES = os.getenv("PLAID_COUNTRY_CODES", "US,CA").split(",")
PLAID_SYNC_PAGE_SIZE = int(os.getenv("PLAID_SYNC_PAGE_SIZE", "500"))  # provider max

# Scheduled sync configuration
SYNC_SCHEDULER_ENABLED = os.getenv("SYNC_SCHEDULER_ENABLED", "true").lower() in ("true", "1", "yes")
SYNC_INTERVAL_SECONDS = int(os.getenv("SYNC_INTERVAL_SECONDS", "7200"))  # every 2 hours

# Transfer detection policy
TRANSFER_LINK_THRESHOLD = int(os.getenv("TRANSFER_LINK_THRESHOLD", "70"))
TRANSFER_LINK_WINDOW_DAYS = int(os.getenv("TRANSFER_LINK_WINDOW_DAYS", "3"))
