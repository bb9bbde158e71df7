import os
from dotenv import load_dotenv
from zoneinfo import ZoneInfo
from pathlib import Path

load_dotenv()

# --- Base Directory ---
BASE_DIR = Path(__file__).resolve().parent.parent

# --- Remote authority ---
API_BASE_URL = os.getenv('API_BASE_URL', 'https://api.becakjogja.id/api').rstrip('/')

if not API_BASE_URL.startswith(('http://', 'https://')):
    raise ValueError("API_BASE_URL must start with http:// or https://")

# Seconds before a single request to the authority is abandoned
REQUEST_TIMEOUT = float(os.getenv('REQUEST_TIMEOUT', 10))

# --- Driver credentials (only used by main.py when no session can be restored) ---
DRIVER_USERNAME = os.getenv('DRIVER_USERNAME')
DRIVER_PASSWORD = os.getenv('DRIVER_PASSWORD')

# --- Local storage ---
SESSION_DB_PATH = Path(os.getenv('SESSION_DB_PATH', BASE_DIR / 'database' / 'driver_client.db'))

# The service operates in Yogyakarta
TIMEZONE = ZoneInfo("Asia/Jakarta")
SCHEDULER_TIMEZONE = os.getenv('SCHEDULER_TIMEZONE', 'Asia/Jakarta')

# --- Background loops (seconds) ---
PRESENCE_INTERVAL = int(os.getenv('PRESENCE_INTERVAL', 30))
LOCATION_INTERVAL = int(os.getenv('LOCATION_INTERVAL', 30))

if PRESENCE_INTERVAL <= 0 or LOCATION_INTERVAL <= 0:
    raise ValueError("PRESENCE_INTERVAL and LOCATION_INTERVAL must be positive")

# --- Finance ---
# Smallest withdrawal the finance team processes, in rupiah
MIN_WITHDRAWAL_AMOUNT = float(os.getenv('MIN_WITHDRAWAL_AMOUNT', 10000))

# --- Driver stand ---
# Used as the reported location when the device has no GPS of its own.
DRIVER_STAND_ADDRESS = os.getenv('DRIVER_STAND_ADDRESS')
DRIVER_STAND_LAT = os.getenv('DRIVER_STAND_LAT')
DRIVER_STAND_LNG = os.getenv('DRIVER_STAND_LNG')
GEOCODER_USER_AGENT = os.getenv('GEOCODER_USER_AGENT', 'becak_jogja_driver_client/1.0')
