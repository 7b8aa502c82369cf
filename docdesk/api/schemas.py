# Schémas Pydantic exposés par l'API (requêtes et réponses).

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class DocumentPayload(BaseModel):
    """Corps de `POST /api/documents` et `PUT /api/documents/{id}`.

    Champs:
    - documentType: str (type de document, ex. "absence-report")
    - title: str
    - content: str
    - metadata: dict (valeurs du formulaire, clés uniques)
    - generatedContent: str | None
    - status: "draft" | "completed" (défaut "completed", comme un enregistrement explicite)
    """

    model_config = ConfigDict(extra="ignore")

    documentType: str = ""
    title: str = ""
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    generatedContent: str | None = None
    status: Literal["draft", "completed"] = "completed"


class DocumentUpdate(BaseModel):
    """Mise à jour partielle d'un document: seuls les champs fournis sont modifiés."""

    model_config = ConfigDict(extra="ignore")

    documentType: str | None = None
    title: str | None = None
    content: str | None = None
    metadata: dict[str, Any] | None = None
    generatedContent: str | None = None
    status: Literal["draft", "completed"] | None = None
    isFavorite: bool | None = None


class SignupPayload(BaseModel):
    """Payload pour l'inscription d'un nouvel utilisateur."""

    email: EmailStr
    password: str = Field(min_length=8)


class LoginPayload(BaseModel):
    """Payload pour la connexion d'un utilisateur."""

    email: EmailStr
    password: str


class GeneratePayload(BaseModel):
    """Demande de génération IA d'un document."""

    documentType: str
    title: str = ""
    fields: dict[str, Any] = Field(default_factory=dict)


class ChatPayload(BaseModel):
    """Message envoyé à l'assistant de chat."""

    message: str = Field(min_length=1)
    history: list[dict[str, str]] = Field(default_factory=list)


class FavoritePayload(BaseModel):
    """Corps de `PATCH /api/documents/{id}/favorite`."""

    isFavorite: bool = False
