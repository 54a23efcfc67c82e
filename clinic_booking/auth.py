"""Patient identity resolution.

Tokens are issued by the clinic's identity service (outside this API) as
itsdangerous timed tokens signed with the shared ``SECRET_KEY``; this module
only verifies them and resolves the patient row.
"""

import logging
from typing import Any, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from .config import AUTH_TOKEN_MAX_AGE_SECONDS, SECRET_KEY
from .database import get_db
from .models import Patient

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

TOKEN_SALT = "patient-session"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(SECRET_KEY)


def create_patient_token(patient_id: int, email: str) -> str:
    """Issue a signed session token (used by the identity service and tests)"""
    return _serializer().dumps({"patient_id": patient_id, "email": email}, salt=TOKEN_SALT)


def verify_patient_token(
    token: str, max_age: int = AUTH_TOKEN_MAX_AGE_SECONDS
) -> Optional[dict[str, Any]]:
    """Decoded token data, or None if invalid or expired"""
    try:
        return _serializer().loads(token, salt=TOKEN_SALT, max_age=max_age)
    except SignatureExpired:
        logger.info("ℹ️ Patient token expired")
        return None
    except BadSignature:
        logger.warning("⚠️ Invalid patient token signature")
        return None


async def get_current_patient(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Patient:
    """Resolve the current patient from the Bearer token"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    data = verify_patient_token(credentials.credentials)
    if not data or "patient_id" not in data:
        raise HTTPException(
            status_code=401,
            detail="Session expired or invalid. Please sign in again.",
            headers={"X-Token-Expired": "true"},
        )

    patient = db.query(Patient).filter(Patient.id == data["patient_id"]).first()
    if not patient:
        logger.warning(f"⚠️ Token for unknown patient {data['patient_id']}")
        raise HTTPException(status_code=401, detail="Authentication failed")

    logger.debug(f"✅ Patient authenticated: {patient.email}")
    return patient
