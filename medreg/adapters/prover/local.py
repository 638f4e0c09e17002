"""
Local proof service - Keyed prover and verifier for development and tests.

A seal is base64url(JSON claims) + "." + HMAC-SHA256(secret, claims).
The claims bind the wallet, the proven domain, the sender's email
commitment and a digest of the raw email, so a seal verifies only
against the payload it was generated for.
"""

import base64
import hashlib
import hmac
import json

from medreg.domain.exceptions import ProofGenerationError
from medreg.domain.models import EmailContent, Proof, RegistrationPayload
from medreg.domain.proof import commit_email, extract_sender


class LocalProofService:
    """Implements ProofGenerator and ProofVerifier protocols in-process."""

    def __init__(self, secret: str, commitment_key: str) -> None:
        if not secret:
            raise ValueError("Proof secret must not be empty")
        self._secret = secret.encode()
        self._commitment_key = commitment_key

    def generate_proof(self, email: EmailContent, identity: str, domain: str) -> Proof:
        sender = extract_sender(email.raw)
        if domain and sender.split("@", 1)[1] != domain:
            raise ProofGenerationError(f"Email was not sent from {domain}")

        claims = {
            "wallet": identity,
            "domain": domain,
            "commitment": commit_email(sender, self._commitment_key),
            "email_digest": hashlib.sha256(email.raw).hexdigest(),
        }
        body = base64.urlsafe_b64encode(
            json.dumps(claims, sort_keys=True, separators=(",", ":")).encode()
        ).decode("ascii")
        return Proof(seal=f"{body}.{self._sign(body)}")

    def verify(self, proof: Proof, payload: RegistrationPayload) -> bool:
        body, _, signature = proof.seal.partition(".")
        if not body or not hmac.compare_digest(signature, self._sign(body)):
            return False
        try:
            claims = json.loads(base64.urlsafe_b64decode(body.encode()))
        except ValueError:
            return False
        return (
            claims.get("wallet") == payload.wallet_address
            and claims.get("domain") == payload.domain
            and claims.get("commitment") == payload.email_commitment
        )

    def _sign(self, body: str) -> str:
        return hmac.new(self._secret, body.encode(), hashlib.sha256).hexdigest()
