"""Authentication helpers shared by the socket namespace and HTTP endpoints.

- Access tokens are HS256 JWTs verified against settings.secret_key.
- The synthetic `uid:...;role:...` token form is only honoured in development.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from classroom.infra import jwt as jwt_helper
from classroom.settings import settings

ROLES = ("teacher", "student")


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	role: str
	display_name: Optional[str] = None
	session_id: Optional[str] = None

	def is_teacher(self) -> bool:
		return self.role == "teacher"


def _normalise_role(value: object) -> str:
	role = str(value or "").strip().lower()
	if role not in ROLES:
		raise ValueError("invalid_role")
	return role


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser.

	Requirements:
	- issuer="classroom-api", audience="classroom-fe"
	- required claims: sub, role, exp, iat
	- role must be one of teacher / student.
	"""
	try:
		payload = jwt_helper.decode_access(token)
		role = _normalise_role(payload.get("role"))
	except Exception:
		# Normalise all decode failures to invalid_token for the API surface
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	display_name = payload.get("name") or payload.get("full_name") or payload.get("email")
	session_id = payload.get("sid")
	return AuthenticatedUser(
		id=str(payload["sub"]).strip(),
		role=role,
		display_name=str(display_name) if display_name is not None else None,
		session_id=str(session_id).strip() if session_id is not None else None,
	)


def parse_token(token: str) -> Dict[str, Optional[str]]:
	"""Parse either a JWT or, in development, the synthetic access token."""
	token = (token or "").strip()
	if not token:
		raise ValueError("empty_token")
	if token.count(".") == 2:
		user = verify_access_jwt(token)
		return {
			"user_id": user.id,
			"role": user.role,
			"name": user.display_name,
			"session_id": user.session_id,
		}
	if not settings.is_dev():
		raise ValueError("invalid_token")
	parts: Dict[str, str] = {}
	for chunk in token.split(";"):
		chunk = chunk.strip()
		if not chunk or ":" not in chunk:
			continue
		key, value = chunk.split(":", 1)
		parts[key.strip().lower()] = value.strip()
	uid = parts.get("uid") or parts.get("user_id")
	if not uid:
		raise ValueError("invalid_token")
	return {
		"user_id": uid,
		"role": _normalise_role(parts.get("role")),
		"name": parts.get("name"),
		"session_id": parts.get("sid") or parts.get("session_id"),
	}


_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_role: Optional[str] = Header(default=None, alias="X-User-Role"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow simple headers. In all other environments, headers are
	ignored and a valid Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id and x_user_role:
		try:
			return AuthenticatedUser(id=x_user_id, role=_normalise_role(x_user_role))
		except ValueError:
			raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_role")

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
