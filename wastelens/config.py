import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

GROQ_API_KEY = os.environ.get("GROQ_API_KEY")
VISION_MODEL = os.getenv("WASTELENS_VISION_MODEL", "meta-llama/llama-4-scout-17b-16e-instruct")
TEMPERATURE = float(os.getenv("WASTELENS_TEMPERATURE", "0.5"))
MAX_COMPLETION_TOKENS = int(os.getenv("WASTELENS_MAX_TOKENS", "1024"))

FIREBASE_SERVICE_ACCOUNT_KEY = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY")
GOOGLE_SERVICE_ACCOUNT_KEY = os.getenv("GOOGLE_SERVICE_ACCOUNT_KEY")
GOOGLE_BUCKET_NAME = os.environ.get("GOOGLE_BUCKET_NAME")

LOCAL_STORE_PATH = os.getenv(
    "WASTELENS_LOCAL_STORE",
    os.path.join(os.path.expanduser("~"), ".wastelens", "store.json"),
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Firestore collection names
RECORDS_COLLECTION = os.getenv("WASTELENS_RECORDS_COLLECTION", "waste_items")
REDEMPTIONS_COLLECTION = os.getenv("WASTELENS_REDEMPTIONS_COLLECTION", "redemptions")
DISPOSAL_LOCATIONS_COLLECTION = os.getenv("WASTELENS_DISPOSAL_LOCATIONS_COLLECTION", "disposal_locations")
USERS_COLLECTION = os.getenv("WASTELENS_USERS_COLLECTION", "users")
