"""
Service configuration from environment variables (.env beside this file).
"""

from pathlib import Path
import os

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017/?replicaSet=rs0')
DB_NAME = os.environ.get('DB_NAME', 'oneflow_finance')

JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', 'oneflow-finance-dev-secret-change-me-in-production')
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get('ACCESS_TOKEN_EXPIRE_MINUTES', '30'))

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get('CORS_ORIGINS', '*').split(',')
    if origin.strip()
]

SETTINGS_CACHE_TTL_SECONDS = int(os.environ.get('SETTINGS_CACHE_TTL_SECONDS', '60'))
