import os
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables from .env file

def load_environment():
    """
    Load environment variables based on ENV setting
    Priority:
    1. .env.{environment} file
    2. .env file (fallback)
    """
    # Get environment from ENV variable, default to 'development'
    env_name = os.getenv('ENV', 'development').lower()

    # Matches four paths for .env files:
    # ../.env.{ENV}
    # ./.env.{ENV}
    # ../.env
    # ./.env
    specific_env_path = Path(f'.env.{env_name}')
    default_env_path = Path('.env')
    parent_path = Path(__file__).parent
    dotenv_path = None
    if (parent_path / specific_env_path).exists():
        dotenv_path = parent_path / specific_env_path
    elif specific_env_path.exists():
        dotenv_path = specific_env_path
    elif (parent_path / default_env_path).exists():
        dotenv_path = parent_path / default_env_path
    elif default_env_path.exists():
        dotenv_path = default_env_path

    if dotenv_path:
        load_dotenv(dotenv_path)
        print(f"Loaded environment from {dotenv_path}")

load_environment()

# Custom environment variables
BACKEND_ENVIRONMENT = os.getenv("BACKEND_ENVIRONMENT", 'development')
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "America/Bogota")
TAX_RATE = float(os.getenv("TAX_RATE", 0.19)) # VAT applied on orders and quotes

# Document numbers: <PREFIX><YYYYMMDD>-<NNNN>
SALE_NUMBER_PREFIX = os.getenv("SALE_NUMBER_PREFIX", "SALE-")
LAB_ORDER_NUMBER_PREFIX = os.getenv("LAB_ORDER_NUMBER_PREFIX", "LAB-")
ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "ORD-")
QUOTE_NUMBER_PREFIX = os.getenv("QUOTE_NUMBER_PREFIX", "QUOTE-")
DOCUMENT_NUMBER_RETRIES = int(os.getenv("DOCUMENT_NUMBER_RETRIES", 3))

# Database Credentials
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./optica.db")
DATABASE_POOL_SIZE = int(os.getenv("DATABASE_POOL_SIZE", 20))

# Auth (tokens are issued by the identity service, we only verify them)
JWT_SECRET = os.getenv("JWT_SECRET", "local-development-secret-not-for-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Logging
SENTRY_DSN = os.getenv('SENTRY_DSN', '')
