from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError

from clinic_scheduler.auth import jwt_handler
from clinic_scheduler.database import SessionLocal
from clinic_scheduler.models.user import User

security = HTTPBearer()

STAFF_ROLES = {"doctor", "admin"}


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
    finally:
        db.close()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_staff(current_user: User = Depends(get_current_user)) -> User:
    if (current_user.role or "").lower() not in STAFF_ROLES:
        raise HTTPException(status_code=403, detail="Only doctors or admins can perform this action.")
    return current_user
