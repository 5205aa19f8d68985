"""
Core data models for the identity session library.

This module defines the authenticated identity record, the request payloads
sent to the identity service, and the folding of service responses into a
fresh identity.
"""

import json
import math
import time
from dataclasses import dataclass
from typing import Optional, Dict, Any, Tuple, Union, Mapping
from enum import Enum

from jose import jwt, JWTError

from .exceptions import RemoteError, RequestError, ErrorCode


DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


class Operation(Enum):
    """Operations understood by the identity service."""
    SIGN_UP = "signUp"
    SIGN_IN_WITH_PASSWORD = "signInWithPassword"
    RESET_PASSWORD = "resetPassword"
    DELETE = "delete"
    SEND_OOB_CODE = "sendOobCode"
    SIGN_IN_WITH_EMAIL_LINK = "signInWithEmailLink"
    TOKEN = "token"


# Candidate response field names per identity field, first present wins.
RESPONSE_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    'local_id': ('localId', 'user_id'),
    'email': ('email',),
    'refresh_token': ('refreshToken', 'refresh_token'),
    'id_token': ('idToken', 'id_token'),
}

LIFETIME_FIELD_ALIASES: Tuple[str, ...] = ('expiresIn', 'expires_in')


def current_time_ms() -> int:
    """Current time in integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def _first_present(data: Mapping[str, Any], candidates: Tuple[str, ...]) -> Any:
    for name in candidates:
        value = data.get(name)
        if value is not None:
            return value
    return None


def parse_lifetime_seconds(data: Mapping[str, Any]) -> int:
    """
    Read the declared token lifetime from a service response.

    The service sends the lifetime as a decimal string. Anything absent or
    not numeric yields the default lifetime.
    """
    value = _first_present(data, LIFETIME_FIELD_ALIASES)
    if value is None:
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    # inf and nan count as not numeric
    if not math.isfinite(seconds):
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    return int(seconds)


@dataclass
class Identity:
    """The authenticated subject: identifiers, tokens and bearer token expiry."""
    local_id: str
    email: str
    refresh_token: str
    id_token: str
    expires_at: int  # milliseconds since epoch

    def __post_init__(self):
        if not self.local_id:
            raise ValueError("Local ID cannot be empty")
        if not self.refresh_token:
            raise ValueError("Refresh token cannot be empty")
        if not self.id_token:
            raise ValueError("ID token cannot be empty")
        if self.email is None:
            self.email = ""
        self.expires_at = int(self.expires_at)

    def is_expired(self, now_ms: Optional[int] = None) -> bool:
        """True once the bearer token can no longer be presented."""
        now = current_time_ms() if now_ms is None else now_ms
        return now >= self.expires_at

    @property
    def claims(self) -> Dict[str, Any]:
        """Unverified claims carried by the bearer token."""
        try:
            return jwt.get_unverified_claims(self.id_token)
        except JWTError as e:
            raise RequestError(
                f"ID token is not a decodable JWT: {e}",
                ErrorCode.REQUEST_INVALID_TOKEN,
                cause=e
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "localId": self.local_id,
            "email": self.email,
            "refreshToken": self.refresh_token,
            "idToken": self.id_token,
            "expiresAt": self.expires_at
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Identity":
        return cls(
            local_id=data["localId"],
            email=data.get("email", ""),
            refresh_token=data["refreshToken"],
            id_token=data["idToken"],
            expires_at=data["expiresAt"]
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "Identity":
        return cls.from_dict(json.loads(raw))

    @classmethod
    def from_response(
        cls,
        data: Mapping[str, Any],
        previous: Optional["Identity"] = None,
        now_ms: Optional[int] = None
    ) -> "Identity":
        """
        Build a fresh identity from a service response.

        Each field is read from its candidate names in order, falling back to
        the previous identity's value. The bearer token expiry is recomputed
        from the declared lifetime on every response.

        Raises:
            RemoteError: if the response leaves a required field unresolved
        """
        values: Dict[str, Any] = {}
        for field_name, candidates in RESPONSE_FIELD_ALIASES.items():
            value = _first_present(data, candidates)
            if value is None and previous is not None:
                value = getattr(previous, field_name)
            values[field_name] = value

        missing = [name for name in ('local_id', 'refresh_token', 'id_token') if not values[name]]
        if missing:
            raise RemoteError(
                f"Identity service response is missing {', '.join(missing)}",
                status_code=None,
                body=dict(data),
                error_code=ErrorCode.REMOTE_MALFORMED_RESPONSE
            )

        now = current_time_ms() if now_ms is None else now_ms
        return cls(
            local_id=values['local_id'],
            email=values['email'] or "",
            refresh_token=values['refresh_token'],
            id_token=values['id_token'],
            expires_at=now + parse_lifetime_seconds(data) * 1000
        )


def _payload(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


@dataclass
class SignUpRequest:
    """
    Account creation request.

    An empty request creates an anonymous account when the project allows it.
    """
    email: Optional[str] = None
    password: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return _payload({
            "email": self.email,
            "password": self.password,
            "displayName": self.display_name,
            "photoUrl": self.photo_url
        })


@dataclass
class SignInRequest:
    """Email/password sign-in request."""
    email: str
    password: str

    def __post_init__(self):
        if not self.email:
            raise ValueError("Email cannot be empty")

    def to_payload(self) -> Dict[str, Any]:
        return {"email": self.email, "password": self.password}


@dataclass
class ResetPasswordRequest:
    """Password reset request, either by out-of-band code or old password."""
    new_password: str
    oob_code: Optional[str] = None
    email: Optional[str] = None
    old_password: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return _payload({
            "oobCode": self.oob_code,
            "email": self.email,
            "oldPassword": self.old_password,
            "newPassword": self.new_password
        })


RequestPayload = Union[SignUpRequest, SignInRequest, ResetPasswordRequest, Mapping[str, Any]]


def request_payload(request: RequestPayload) -> Dict[str, Any]:
    """Turn a request object, or a plain mapping passed through verbatim, into a JSON body."""
    if hasattr(request, 'to_payload'):
        return request.to_payload()
    return dict(request)
