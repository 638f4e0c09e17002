"""
HTTP proving service adapter - Implements ProofGenerator and ProofVerifier.

POST {base_url}/prove   {"email": <base64 raw>, "identity", "domain"} -> {"seal"}
POST {base_url}/verify  {"seal", "wallet_address", "email_commitment", "domain"} -> {"valid"}
"""

import base64
import logging

import httpx

from medreg.domain.exceptions import ProofError, ProofGenerationError
from medreg.domain.models import EmailContent, Proof, RegistrationPayload

logger = logging.getLogger(__name__)


class HttpProofService:
    """
    Implements ProofGenerator and ProofVerifier protocols via httpx.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    DEFAULT_TIMEOUT = 60.0

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )

    def generate_proof(self, email: EmailContent, identity: str, domain: str) -> Proof:
        body = {
            "email": base64.b64encode(email.raw).decode("ascii"),
            "identity": identity,
            "domain": domain,
        }
        try:
            response = self._client.post("/prove", json=body)
            response.raise_for_status()
            seal = response.json()["seal"]
        except httpx.HTTPStatusError as e:
            raise ProofGenerationError(
                f"Proving service returned {e.response.status_code}: {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise ProofGenerationError(f"Proving service failed: {e}") from e

        logger.info(f"Remote proof generated for {identity}")
        return Proof(seal=seal)

    def verify(self, proof: Proof, payload: RegistrationPayload) -> bool:
        """
        Ask the proving service whether the proof binds this payload.

        Raises:
            ProofError: the service could not be asked
        """
        body = {
            "seal": proof.seal,
            "wallet_address": payload.wallet_address,
            "email_commitment": payload.email_commitment,
            "domain": payload.domain,
        }
        try:
            response = self._client.post("/verify", json=body)
            response.raise_for_status()
            return bool(response.json()["valid"])
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise ProofError(f"Proof verification unavailable: {e}") from e

    def close(self) -> None:
        self._client.close()
