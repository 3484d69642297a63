import time

import jwt
import structlog
from cryptography.hazmat.primitives import serialization

from copilot_metrics.errors import ApiError, AuthError, ConfigError
from copilot_metrics.models import AccessToken, InstallationCredential, SignedAssertion
from copilot_metrics.provider.base import MetricsSource

logger = structlog.get_logger()

ASSERTION_ALGORITHM = "RS256"
# issued in the past to tolerate clock drift between us and GitHub
CLOCK_SKEW_SECONDS = 60
ASSERTION_LIFETIME_SECONDS = 600


class TokenIssuer:
    """
    TokenIssuer handles the GitHub App token lifecycle for one run:
    it mints an RS256-signed JWT from the app credential and exchanges
    it for an installation access token. Nothing is cached, the token
    only lives as long as the issuer's caller keeps it.
    """

    def __init__(self, source: "MetricsSource") -> "None":
        self._source = source

    def mint(
        self,
        credential: "InstallationCredential",
        now: "int",
    ) -> "SignedAssertion":
        """
        builds the signed assertion: header and claims are base64url
        encoded without padding, joined with a period and signed with
        the app's private key.
        """
        try:
            private_key = serialization.load_pem_private_key(
                credential.private_key.encode(),
                password=None,
            )
        except (ValueError, TypeError) as exc:
            raise ConfigError("private key could not be loaded") from exc

        header = {"alg": ASSERTION_ALGORITHM, "typ": "JWT"}
        claims: "dict[str, int | str]" = {
            "iat": now - CLOCK_SKEW_SECONDS,
            "exp": now + ASSERTION_LIFETIME_SECONDS,
            "iss": str(credential.app_id),
        }
        token = jwt.encode(
            claims,
            private_key,
            algorithm=ASSERTION_ALGORITHM,
            headers={"typ": "JWT"},
        )

        logger.debug(
            "assertion_minted",
            app_id=credential.app_id,
            issued_at=claims["iat"],
            expires_at=claims["exp"],
        )
        return SignedAssertion(header=header, claims=claims, token=token)

    async def exchange(
        self,
        assertion: "SignedAssertion",
        installation_id: "str",
        now: "int",
    ) -> "AccessToken":
        """
        exchanges the assertion for an installation access token.
        An expired assertion is refused before any request is made.
        """
        if now >= assertion.expires_at:
            raise AuthError(
                f"assertion expired at {assertion.expires_at}, refusing exchange"
            )

        try:
            body = await self._source.request_installation_token(
                assertion.token, installation_id
            )
        except ApiError as exc:
            raise AuthError(
                f"installation token exchange rejected: {exc.message}"
            ) from exc

        token = body.get("token")
        if not token:
            raise AuthError("installation token exchange returned no token")

        logger.info("installation_token_obtained", installation_id=installation_id)
        return AccessToken(value=str(token))

    async def authenticate(
        self,
        credential: "InstallationCredential",
        now: "int | None" = None,
    ) -> "AccessToken":
        """
        mints an assertion and exchanges it in one step.
        """
        if now is None:
            now = int(time.time())

        assertion = self.mint(credential, now)
        return await self.exchange(assertion, credential.installation_id, now)
