"""
Routes d'authentification pour l'API.

Ce module fournit les endpoints d'inscription et de connexion ainsi que les dépendances qui
résolvent l'utilisateur courant à partir du token Bearer. La connexion est protégée par le palier
`login` du contrôle d'admission (anti brute-force).
"""

import uuid

from fastapi import APIRouter, Depends, Header

from docdesk.api.schemas import LoginPayload, SignupPayload
from docdesk.apigw.errors import APIError, ErrorCodes, unauthorized
from docdesk.core.container import Container, get_container
from docdesk.core.http_constants import HTTP_CONFLICT, HTTP_CREATED
from docdesk.domain.auth import (
    create_access_token,
    decode_token,
    hash_password,
    verify_password,
)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", status_code=HTTP_CREATED)
def signup(p: SignupPayload, container: Container = Depends(get_container)):
    """Inscrit un nouvel utilisateur dans le système."""
    existing = container.user_repo.get_by_email(str(p.email))
    if existing:
        raise APIError(HTTP_CONFLICT, ErrorCodes.CONFLICT, "email_exists")
    user = {
        "id": uuid.uuid4().hex,
        "email": str(p.email),
        "password_hash": hash_password(p.password),
    }
    container.user_repo.save(user)
    return {"id": user["id"], "email": user["email"]}


@router.post("/login")
def login(p: LoginPayload, container: Container = Depends(get_container)):
    """Authentifie un utilisateur et retourne un token d'accès."""
    user = container.user_repo.get_by_email(str(p.email))
    if not user or not verify_password(p.password, user.get("password_hash", "")):
        raise unauthorized("invalid_credentials")
    token = create_access_token(
        secret=container.settings.JWT_SECRET,
        alg=container.settings.JWT_ALG,
        expires_min=container.settings.JWT_EXPIRES_MIN,
        payload={"sub": user["id"], "email": user["email"]},
    )
    return {"access_token": token, "token_type": "bearer"}


def get_optional_user(
    authorization: str | None = Header(None),
    container: Container = Depends(get_container),
) -> dict | None:
    """Utilisateur courant si le token est valide, sinon None (accès anonyme)."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1]
    data = decode_token(token, container.settings.JWT_SECRET, container.settings.JWT_ALG)
    if not data:
        return None
    return container.user_repo.get(data.sub)


def get_current_user(user: dict | None = Depends(get_optional_user)) -> dict:
    """Extrait l'utilisateur courant; 401 avec indication de redirection sinon."""
    if not user:
        raise unauthorized()
    return user
