import os
import json
import base64
from functools import lru_cache

import firebase_admin
from firebase_admin import credentials, storage

from config import get_settings
from utils.logger import get_logger

logger = get_logger("Firebase")


def get_firebase_credentials():
    """
    Load credentials from:
    1. Base64 environment variable (production)
    2. The configured service account file (development)
    """
    encoded_creds = os.getenv("FIREBASE_CREDENTIALS_BASE64")
    if encoded_creds:
        try:
            decoded_json = base64.b64decode(encoded_creds).decode("utf-8")
            return credentials.Certificate(json.loads(decoded_json))
        except Exception as e:
            logger.error(f"❌ Failed to decode FIREBASE_CREDENTIALS_BASE64: {e}")

    path = get_settings().firebase_credentials_path
    for candidate in (path, os.path.join("backend", path)):
        if os.path.exists(candidate):
            return credentials.Certificate(candidate)

    raise ValueError("❌ No Firebase credentials found! Set FIREBASE_CREDENTIALS_BASE64 or provide a service account file")


def init_firebase() -> firebase_admin.App:
    if firebase_admin._apps:
        return firebase_admin.get_app()
    settings = get_settings()
    options = {}
    if settings.firebase_storage_bucket:
        options["storageBucket"] = settings.firebase_storage_bucket
    if settings.firebase_project_id:
        options["projectId"] = settings.firebase_project_id
    return firebase_admin.initialize_app(get_firebase_credentials(), options)


@lru_cache
def get_bucket():
    init_firebase()
    return storage.bucket()
