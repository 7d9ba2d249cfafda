import os
from dotenv import load_dotenv

load_dotenv()

# Secrets
FORUM_SECRET = os.getenv("FORUM_SECRET", "")

# CORS / origin guard
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()]

# Store: "firebase" or "memory"
FORUM_STORE = os.getenv("FORUM_STORE", "firebase")

# Firebase service account
FB_PROJECT_ID = os.getenv("FB_PROJECT_ID")
FB_CLIENT_EMAIL = os.getenv("FB_CLIENT_EMAIL")
FB_PRIVATE_KEY = os.getenv("FB_PRIVATE_KEY", "").replace("\\n", "\n")
FB_DATABASE_URL = os.getenv("FB_DATABASE_URL")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 3000))

# Limits
MAX_TITLE_LENGTH = int(os.getenv("MAX_TITLE_LENGTH", 200))
MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", 20000))
