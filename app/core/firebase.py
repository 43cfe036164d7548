"""Firebase Admin wiring used to authenticate relay callers."""

import logging
from typing import Any

import firebase_admin
from app.config import Settings, get_settings
from firebase_admin import auth, credentials

logger = logging.getLogger(__name__)


def initialize_firebase(settings: Settings | None = None) -> bool:
  """Initialize the default Firebase app once; returns whether an app is available."""
  if firebase_admin._apps:
    return True

  settings = settings or get_settings()
  if not settings.firebase_project_id:
    logger.warning("FIREBASE_PROJECT_ID not set; bearer tokens will be rejected.")
    return False

  options = {"projectId": settings.firebase_project_id}
  try:
    if settings.firebase_service_account_json_path:
      firebase_admin.initialize_app(credentials.Certificate(settings.firebase_service_account_json_path), options)
    else:
      # Application Default Credentials
      firebase_admin.initialize_app(options=options)
  except (ValueError, OSError) as exc:
    logger.error("Firebase Admin initialization failed for project=%s: %s", settings.firebase_project_id, exc)
    return False

  logger.info("Firebase Admin initialized for project=%s", settings.firebase_project_id)
  return True


def verify_id_token(id_token: str) -> dict[str, Any] | None:
  """Return decoded claims for a valid ID token, or None when it cannot be trusted."""
  if not initialize_firebase():
    return None

  try:
    return auth.verify_id_token(id_token)
  except auth.ExpiredIdTokenError:
    logger.info("Rejected expired ID token.")
  except (auth.InvalidIdTokenError, auth.CertificateFetchError, ValueError) as exc:
    logger.warning("ID token verification failed: %s", exc)
  return None
