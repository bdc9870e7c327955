# customization/db.py

import os

from google.auth import default as google_auth_default
from google.cloud import secretmanager
from google.oauth2 import service_account
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from customization import config
from customization.config import logger


def _build_creds():
    key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    scopes = ["https://www.googleapis.com/auth/cloud-platform"]
    if key_path and os.path.exists(key_path):
        return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
    creds, _ = google_auth_default(scopes=scopes)
    return creds


def get_db_password() -> str:
    if config.DB_PASSWORD:
        return config.DB_PASSWORD

    if config.DB_SECRET_ID:
        creds = _build_creds()
        client = secretmanager.SecretManagerServiceClient(credentials=creds)
        name = client.secret_version_path(config.PROJECT_ID, config.DB_SECRET_ID, "latest")
        resp = client.access_secret_version(request={"name": name})
        config.DB_PASSWORD = resp.payload.data.decode("utf-8")
        return config.DB_PASSWORD

    raise RuntimeError("No DB_PASSWORD and no Secret Manager configured")


def get_database_url() -> str:
    """
    DATABASE_URL wins when present; otherwise a pg8000 URL is assembled from the DB_* settings.
    """
    if config.DATABASE_URL:
        return config.DATABASE_URL

    password = get_db_password()
    return f"postgresql+pg8000://{config.DB_USER}:{password}@{config.DB_HOST}:{config.DB_PORT}/{config.DB_NAME}"


def get_db_engine(url: str | None = None):
    url = url or get_database_url()

    if url.startswith("sqlite"):
        logger.info(f"[DB] Using SQLite URL: {url}")
        return create_engine(url)

    logger.info(f"[DB] Connecting to {url.split('@')[-1]}")

    if "pg8000" not in url:
        return create_engine(url)

    # pg8000 supports 'timeout' in seconds
    return create_engine(
        url,
        connect_args={"timeout": 10},  # fail in 10s instead of hanging forever
    )


def create_session_factory(url: str | None = None) -> sessionmaker:
    engine = get_db_engine(url)
    return sessionmaker(bind=engine)
