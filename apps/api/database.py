import logging
import os
from functools import lru_cache
from typing import Any

import firebase_admin
from firebase_admin import credentials, firestore

from .settings import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_db() -> Any:
    """Return the process-wide Firestore client, initializing Firebase only once."""
    if not firebase_admin._apps:
        service_account_path = settings.FIREBASE_SERVICE_ACCOUNT_PATH
        if service_account_path and os.path.exists(service_account_path):
            cred = credentials.Certificate(service_account_path)
            firebase_admin.initialize_app(cred)
        else:
            # Application default credentials (Cloud Run, emulator, gcloud auth).
            logger.warning("Service account %s not found; using application default credentials", service_account_path)
            firebase_admin.initialize_app()
    return firestore.client()
