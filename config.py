import os

# Backend
API_BASE_URL = os.getenv("STOREFRONT_API_URL", "http://localhost:5000/api")

# Client-side persistence
STORAGE_PATH = os.getenv("STOREFRONT_STORAGE_PATH", ".storefront-storage.json")
STORE_KEY = "nexusshop-store"
AUTH_TOKEN_KEY = "auth_token"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))

# Storefront server, serving a single local shopper
HOST = os.getenv("HOST", "127.0.0.1")
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("STOREFRONT_ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]
