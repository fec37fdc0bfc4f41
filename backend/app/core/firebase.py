import json
import base64
import logging
from firebase_admin import credentials, initialize_app, get_app, firestore
from app.core.config import settings

logger = logging.getLogger("tikiti")

_db = None


def init_firebase():
    try:
        get_app()
        logger.info("✅ Firebase Admin SDK already initialized")
        return
    except ValueError:
        pass

    if settings.TIKITI_FIREBASE_KEY:
        try:
            decoded_json = base64.b64decode(settings.TIKITI_FIREBASE_KEY).decode("utf-8")
            service_account_info = json.loads(decoded_json)
            logger.info("🔑 Successfully loaded Firebase credentials from TIKITI_FIREBASE_KEY")
        except Exception as e:
            raise RuntimeError(f"❌ Failed to decode or parse TIKITI_FIREBASE_KEY: {e}")

        project_id = service_account_info.get("project_id")
        if not project_id:
            raise ValueError("❌ 'project_id' missing in Firebase service account JSON")

        initialize_app(credentials.Certificate(service_account_info))
        logger.info(f"🔥 Firebase Admin SDK initialized successfully | Project: {project_id}")
        return

    if settings.GOOGLE_APPLICATION_CREDENTIALS:
        initialize_app(credentials.Certificate(settings.GOOGLE_APPLICATION_CREDENTIALS))
        logger.info("🔥 Firebase Admin SDK initialized from GOOGLE_APPLICATION_CREDENTIALS")
        return

    raise RuntimeError("❌ Neither TIKITI_FIREBASE_KEY nor GOOGLE_APPLICATION_CREDENTIALS is set")


def get_db():
    """Firestore client, initializing the Admin SDK on first use."""
    global _db
    if _db is None:
        init_firebase()
        try:
            _db = firestore.client()
            logger.info("✅ Firestore client ready")
        except Exception as e:
            logger.error(f"❌ Failed to initialize Firestore client: {e}")
            raise
    return _db


__all__ = ["get_db", "init_firebase"]
