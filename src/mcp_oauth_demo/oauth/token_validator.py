"""
JWT Token Validator for OAuth 2.1 Resource Server

Validates access tokens issued by the authorization server against the
JWKS and issuer published in its metadata.

Checks, in order:
1. structure (header + payload + signature)
2. signing key ``kid`` present in the JWKS
3. signature, with an explicit algorithm allow-list
4. issuer equals the metadata issuer
5. expiry
6. audience (logged; enforced only when configured)
"""

import hashlib
import logging
import time
from typing import Any, Iterable

import jwt

from .exceptions import (
    AudienceMismatchError,
    BadSignatureError,
    IssuerMismatchError,
    MalformedTokenError,
    TokenExpiredError,
    UnknownSigningKeyError,
)
from .metadata_cache import MetadataCache

logger = logging.getLogger(__name__)

# Asymmetric algorithms only; "none" and the HS* family are never accepted
SUPPORTED_ALGORITHMS = frozenset({
    "RS256", "RS384", "RS512",
    "PS256", "PS384", "PS512",
    "ES256", "ES384", "ES512",
})


def token_fingerprint(token: str) -> str:
    """Hash token for log correlation (never log raw tokens)."""
    return hashlib.sha256(token.encode()).hexdigest()[:16]


class TokenValidator:
    """
    Validates JWT access tokens using keys from the metadata cache.

    Args:
        cache: Shared authorization server metadata/JWKS cache
        algorithms: Allowed signing algorithms (default RS256)
        audience: Expected resource identifier, if any
        enforce_audience: Reject tokens whose ``aud`` does not contain ``audience``
        refresh_on_unknown_kid: Force one JWKS refresh before rejecting an unknown ``kid``
        clock: Time source used for the expiry check
    """

    def __init__(
        self,
        cache: MetadataCache,
        algorithms: Iterable[str] = ("RS256",),
        audience: str | None = None,
        enforce_audience: bool = False,
        refresh_on_unknown_kid: bool = False,
        clock=time.time,
    ):
        algorithms = list(algorithms)
        unsupported = [alg for alg in algorithms if alg not in SUPPORTED_ALGORITHMS]
        if unsupported or not algorithms:
            raise ValueError(f"Unsupported signing algorithms: {unsupported or 'none'}")

        self.cache = cache
        self.algorithms = algorithms
        self.audience = audience
        self.enforce_audience = enforce_audience
        self.refresh_on_unknown_kid = refresh_on_unknown_kid
        self._clock = clock

    async def validate(self, token: str) -> dict[str, Any]:
        """
        Validate a bearer token.

        Args:
            token: Compact JWS string

        Returns:
            The decoded claims, unchanged

        Raises:
            TokenValidationError: If the token is invalid
            MetadataUnavailableError: If keys or metadata cannot be fetched
            ConfigurationError: If the metadata has no jwks_uri
        """
        header, unverified = self._decode_unverified(token)
        logger.debug(
            f"Validating token: hash={token_fingerprint(token)}, "
            f"iss={unverified.get('iss')}, kid={header.get('kid')}"
        )

        kid = header.get("kid")
        jwk = await self._find_signing_key(kid)

        claims = self._verify_signature(token, header, jwk)

        metadata = await self.cache.get_auth_server_metadata()
        if claims.get("iss") != metadata.issuer:
            raise IssuerMismatchError(
                f"Invalid issuer, expected {metadata.issuer}"
            )

        self._check_expiry(claims)
        self._check_audience(claims)

        logger.debug(
            f"Token validated: hash={token_fingerprint(token)}, sub={claims.get('sub')}"
        )
        return claims

    def _decode_unverified(self, token: str) -> tuple[dict, dict]:
        """Read header and payload without verifying the signature."""
        if not token or token.count(".") != 2:
            raise MalformedTokenError("Invalid token format")
        try:
            header = jwt.get_unverified_header(token)
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError as e:
            raise MalformedTokenError(f"Invalid token format: {e}") from e
        return header, payload

    async def _find_signing_key(self, kid: str | None) -> dict:
        jwks = await self.cache.get_jwks()
        jwk = _select_key(jwks, kid)

        if jwk is None and self.refresh_on_unknown_kid and kid:
            logger.info(f"Unknown signing key {kid}, forcing JWKS refresh")
            jwks = await self.cache.get_jwks(force_refresh=True)
            jwk = _select_key(jwks, kid)

        if jwk is None:
            raise UnknownSigningKeyError("Invalid token - signing key not found")
        return jwk

    def _verify_signature(self, token: str, header: dict, jwk: dict) -> dict[str, Any]:
        alg = header.get("alg")
        if alg not in self.algorithms:
            raise BadSignatureError(f"Token algorithm {alg!r} is not allowed")

        try:
            verification_key = jwt.PyJWK(jwk, algorithm=alg).key
        except (jwt.PyJWKError, jwt.InvalidKeyError) as e:
            raise BadSignatureError(f"Signing key is not usable: {e}") from e

        try:
            # Claims are checked separately so each failure gets its own type
            return jwt.decode(
                token,
                verification_key,
                algorithms=[alg],
                options={
                    "verify_exp": False,
                    "verify_iss": False,
                    "verify_aud": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except jwt.InvalidSignatureError as e:
            raise BadSignatureError("Invalid token signature") from e
        except (jwt.InvalidAlgorithmError, jwt.InvalidKeyError) as e:
            raise BadSignatureError(f"Invalid token signature: {e}") from e
        except jwt.InvalidTokenError as e:
            raise MalformedTokenError(f"Invalid token: {e}") from e

    def _check_expiry(self, claims: dict[str, Any]) -> None:
        exp = claims.get("exp")
        if exp is None:
            raise MalformedTokenError("Token is missing the exp claim")
        try:
            exp = float(exp)
        except (TypeError, ValueError) as e:
            raise MalformedTokenError("Token exp claim is not a number") from e
        if exp <= self._clock():
            raise TokenExpiredError("Token has expired")

    def _check_audience(self, claims: dict[str, Any]) -> None:
        if not self.audience:
            return

        aud = claims.get("aud")
        if isinstance(aud, str):
            audiences = [aud]
        elif isinstance(aud, list):
            audiences = aud
        else:
            audiences = []
        if self.audience in audiences:
            return

        if self.enforce_audience:
            raise AudienceMismatchError(f"Invalid audience, expected {self.audience}")
        # Cognito access tokens carry client_id rather than aud
        logger.info(
            f"Token audience {aud!r} does not include {self.audience} "
            f"(client_id={claims.get('client_id')!r}); not enforced"
        )


def _select_key(jwks: dict, kid: str | None) -> dict | None:
    if not kid:
        return None
    for key in jwks.get("keys", []):
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None
