from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from wedding_album.db import get_db
from wedding_album.models.admin import AdminAccount
from wedding_album.schemas.auth import AdminOut, AuthStatusOut, CredentialsIn, TokenOut
from wedding_album.services.auth import (
    ADMIN_ROLE,
    Principal,
    admin_exists,
    authenticate,
    create_admin,
    issue_token,
    require_admin,
    revoke,
)

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_response(account: AdminAccount) -> dict:
    token, expires_at = issue_token(account)
    return {"access_token": token, "expires_at": expires_at, "role": ADMIN_ROLE}


@router.get("/status", response_model=AuthStatusOut)
def auth_status(db: Session = Depends(get_db)):
    return {"admin_exists": admin_exists(db)}


@router.post("/sign-up", response_model=TokenOut, status_code=201)
def sign_up(payload: CredentialsIn, db: Session = Depends(get_db)):
    account = create_admin(db, payload.email, payload.password)
    return _token_response(account)


@router.post("/sign-in", response_model=TokenOut)
def sign_in(payload: CredentialsIn, db: Session = Depends(get_db)):
    account = authenticate(db, payload.email, payload.password)
    return _token_response(account)


@router.post("/sign-out")
def sign_out(principal: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    revoke(db, principal)
    return {"ok": True}


@router.get("/me", response_model=AdminOut)
def me(principal: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    return db.get(AdminAccount, principal.user_id)
