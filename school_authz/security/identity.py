"""
Identity Resolver: turns an ``Authorization`` header into a Principal.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import jwt

from .models import Principal
from .roles import try_canonicalize

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class AuthenticationFailureReason(str, Enum):
    """Why a credential was rejected. Collapsed to a single 401 at the boundary."""
    MISSING_HEADER = "missing_header"
    MALFORMED_HEADER = "malformed_header"
    MALFORMED_TOKEN = "malformed_token"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    INVALID_CLAIMS = "invalid_claims"


@dataclass(frozen=True)
class AuthenticationFailure:
    reason: AuthenticationFailureReason
    message: str = "Unauthorized"

    def __bool__(self):
        return False


class IdentityResolver:
    """
    Verify bearer tokens and rebuild the caller's Principal.

    The result depends only on the header, the signing secret and the
    algorithm. Malformed input of any kind yields an AuthenticationFailure;
    this class never raises for bad credentials.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256", leeway: float = 0):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.leeway = leeway

    @staticmethod
    def extract_token(authorization_header: Optional[str]) -> Union[str, AuthenticationFailure]:
        if not authorization_header:
            return AuthenticationFailure(AuthenticationFailureReason.MISSING_HEADER, "Unauthorized: No token provided")
        if not authorization_header.startswith(BEARER_PREFIX):
            return AuthenticationFailure(AuthenticationFailureReason.MALFORMED_HEADER, "Unauthorized: Invalid token format")
        token = authorization_header[len(BEARER_PREFIX):].strip()
        if not token or " " in token:
            return AuthenticationFailure(AuthenticationFailureReason.MALFORMED_HEADER, "Unauthorized: Invalid token format")
        return token

    def verify(self, authorization_header: Optional[str]) -> Union[Principal, AuthenticationFailure]:
        """Verify ``Authorization: Bearer <token>`` and return the Principal."""
        token = self.extract_token(authorization_header)
        if isinstance(token, AuthenticationFailure):
            return token
        return self.verify_token(token)

    def verify_token(self, token: str) -> Union[Principal, AuthenticationFailure]:
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["exp"]},
                leeway=self.leeway,
            )
        except jwt.ExpiredSignatureError:
            logger.info("Token has expired")
            return AuthenticationFailure(AuthenticationFailureReason.EXPIRED, "Unauthorized: Token expired")
        except jwt.InvalidSignatureError:
            logger.warning("Token signature verification failed")
            return AuthenticationFailure(AuthenticationFailureReason.BAD_SIGNATURE, "Unauthorized: Invalid token")
        except jwt.MissingRequiredClaimError as e:
            logger.warning(f"Invalid token: {e}")
            return AuthenticationFailure(AuthenticationFailureReason.INVALID_CLAIMS, "Unauthorized: Invalid token")
        except jwt.DecodeError as e:
            logger.warning(f"Malformed token: {e}")
            return AuthenticationFailure(AuthenticationFailureReason.MALFORMED_TOKEN, "Unauthorized: Invalid token")
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return AuthenticationFailure(AuthenticationFailureReason.INVALID_CLAIMS, "Unauthorized: Invalid token")

        return self._principal_from_claims(payload)

    @staticmethod
    def _principal_from_claims(payload) -> Union[Principal, AuthenticationFailure]:
        invalid = AuthenticationFailure(AuthenticationFailureReason.INVALID_CLAIMS, "Unauthorized: Invalid token")
        if not isinstance(payload, dict):
            return invalid

        principal_id = payload.get("id")
        if isinstance(principal_id, bool) or not isinstance(principal_id, (str, int)) or str(principal_id) == "":
            logger.warning("Token is missing the 'id' claim")
            return invalid

        role = try_canonicalize(payload.get("role"))
        if role is None:
            logger.warning("Token is missing the 'role' claim")
            return invalid

        email = payload.get("email")
        if email is not None and not isinstance(email, str):
            return invalid

        return Principal(id=str(principal_id), role=role, email=email)
