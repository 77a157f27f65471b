import os
from dotenv import load_dotenv

# Load environment variables from a .env file if present
load_dotenv()


class Config:
    """Base configuration for the MobDash backend."""

    # Core Flask settings
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Saved report copies live in instance/reports
    BASE_DIR = os.path.abspath(os.path.dirname(__file__))
    INSTANCE_DIR = os.path.join(os.path.dirname(BASE_DIR), "instance")
    REPORTS_DIR = os.getenv("REPORTS_DIR", os.path.join(INSTANCE_DIR, "reports"))

    # Uploads
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", str(200 * 1024 * 1024)))
    ALLOWED_EXTENSIONS = tuple(
        ext.strip().lower()
        for ext in os.getenv("ALLOWED_EXTENSIONS", "apk,zip,xapk,apks,ipa,appx").split(",")
        if ext.strip()
    )

    # Scanning service (MobSF REST API)
    MOBSF_API_URL = os.getenv("MOBSF_API_URL", "http://localhost:8000")
    MOBSF_API_KEY = os.getenv("MOBSF_API_KEY", "changeme-mobsf-api-key")
    MOBSF_REQUEST_TIMEOUT = float(os.getenv("MOBSF_REQUEST_TIMEOUT", "30"))
    # The scan endpoint may hold the connection open for the whole analysis
    MOBSF_SCAN_TIMEOUT = float(os.getenv("MOBSF_SCAN_TIMEOUT", "900"))

    # Log polling
    POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "5"))
    POLL_MAX_ATTEMPTS = int(os.getenv("POLL_MAX_ATTEMPTS", "120"))

    # CORS / frontend integration
    FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:5173")
