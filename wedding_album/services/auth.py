import hashlib
import hmac
import logging
import os
import secrets
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wedding_album.db import get_db
from wedding_album.models.admin import AdminAccount, RevokedToken

logger = logging.getLogger(__name__)

JWT_ALG = "HS256"
JWT_SECRET = os.getenv("ALBUM_JWT_SECRET", "dev-secret-change-me")
JWT_TTL_MINUTES = int(os.getenv("ALBUM_JWT_TTL_MINUTES", str(12 * 60)))
PBKDF2_ITERATIONS = 260_000
ADMIN_ROLE = "admin"

http_bearer = HTTPBearer(auto_error=False)


class Principal(BaseModel):
    user_id: str
    email: str
    role: str
    jti: str
    expires_at: datetime


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt, expected = stored.split("$")
    except ValueError:
        return False
    if scheme != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


def admin_exists(db: Session) -> bool:
    return db.query(AdminAccount.id).first() is not None


def _single_admin_conflict() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="This album allows a single administrator account.",
    )


def create_admin(db: Session, email: str, password: str) -> AdminAccount:
    # Only one administrator per album.
    if admin_exists(db):
        raise _single_admin_conflict()
    account = AdminAccount(email=email.strip().lower(), password_hash=hash_password(password))
    db.add(account)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent sign-up.
        db.rollback()
        raise _single_admin_conflict()
    db.refresh(account)
    logger.info("Administrator account created for %s", account.email)
    return account


def authenticate(db: Session, email: str, password: str) -> AdminAccount:
    account = db.query(AdminAccount).filter(AdminAccount.email == email.strip().lower()).first()
    if account is None or not verify_password(password, account.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    return account


def issue_token(account: AdminAccount) -> tuple[str, datetime]:
    expires_at = datetime.now(timezone.utc) + timedelta(minutes=JWT_TTL_MINUTES)
    claims = {
        "sub": account.id,
        "email": account.email,
        "role": ADMIN_ROLE,
        "jti": uuid.uuid4().hex,
        "exp": expires_at,
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALG), expires_at


def _decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")


def prune_revoked(db: Session) -> int:
    """Drop revocations whose token has expired anyway."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    removed = db.query(RevokedToken).filter(RevokedToken.expires_at <= now).delete(synchronize_session=False)
    if removed:
        logger.debug("Pruned %d expired revocation(s)", removed)
    return removed


def revoke(db: Session, principal: Principal) -> None:
    prune_revoked(db)
    if db.get(RevokedToken, principal.jti) is not None:
        db.commit()
        return
    db.add(
        RevokedToken(
            jti=principal.jti,
            admin_id=principal.user_id,
            expires_at=principal.expires_at.replace(tzinfo=None),
        )
    )
    db.commit()


def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> Principal:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    data = _decode_token(creds.credentials)
    jti = str(data.get("jti") or "")
    if not jti or db.get(RevokedToken, jti) is not None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session has ended")
    account = db.get(AdminAccount, str(data.get("sub") or ""))
    if account is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown account")
    return Principal(
        user_id=account.id,
        email=account.email,
        role=str(data.get("role") or ""),
        jti=jti,
        expires_at=datetime.fromtimestamp(int(data["exp"]), tz=timezone.utc),
    )


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != ADMIN_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")
    return principal
