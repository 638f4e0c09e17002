"""
Proof binder - Turns a collected email into a registration payload and proof.

The sender address is the credential being proven. It is extracted from
the From header with a strict pattern, reduced to a keyed commitment so
the registry never stores the raw address, and handed together with the
identity and domain to the proving service. The resulting proof binds
all three, which stops one verified email being replayed for a
different wallet or domain.
"""

import hashlib
import hmac
import logging
import re
from dataclasses import dataclass
from email import message_from_bytes
from email.message import Message
from email.utils import parseaddr

from .exceptions import DomainMismatchError, MalformedEmailError
from .models import BoundProof, EmailContent, RegistrationPayload, Role, normalize_identity
from .ports import ProofGenerator

logger = logging.getLogger(__name__)

# local-part, "@", at least one dotted label, alphabetic TLD
_SENDER_PATTERN = re.compile(
    r"^[A-Za-z0-9!#$%&'*+/=?^_`{|}~.-]+@(?:[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?\.)+[A-Za-z]{2,}$"
)


def parse_email(raw: bytes) -> Message:
    return message_from_bytes(raw)


def extract_sender(raw: bytes) -> str:
    """
    Extract the normalized sender address from raw email bytes.

    Raises:
        MalformedEmailError: From header missing or not a valid address
    """
    header = parse_email(raw).get("From")
    if not header:
        raise MalformedEmailError("Email has no From header")

    _, address = parseaddr(str(header))
    address = address.strip().lower()
    if not _SENDER_PATTERN.match(address):
        raise MalformedEmailError(f"Cannot parse sender from From header: {header!r}")
    return address


def extract_subject(raw: bytes) -> str:
    """Subject header with folded whitespace collapsed."""
    return " ".join(str(parse_email(raw).get("Subject", "")).split())


def is_valid_address(address: str) -> bool:
    return bool(_SENDER_PATTERN.match(address.strip().lower()))


def normalize_domain(domain: str) -> str:
    return domain.strip().lower().lstrip("@")


def commit_email(address: str, key: str) -> str:
    """Keyed one-way commitment of an email address (HMAC-SHA256, 0x-hex)."""
    digest = hmac.new(key.encode(), address.strip().lower().encode(), hashlib.sha256)
    return "0x" + digest.hexdigest()


@dataclass
class ProofBinder:
    """Binds a collected email to an identity and domain."""

    generator: ProofGenerator
    commitment_key: str

    def bind(
        self,
        email: EmailContent,
        identity: str,
        role: Role,
        claimed_domain: str | None = None,
        organization_name: str = "",
        expected_subject: str | None = None,
        expected_sender: str | None = None,
    ) -> BoundProof:
        """
        Build the registration payload and obtain a proof for it.

        Organizations prove their domain: it is taken from the sender and,
        when the organization claimed one up front, must match it. Patients
        prove the address they declared, so the sender must be that
        address, and the payload carries no domain.

        Args:
            email: Collected verification email
            identity: Wallet address the proof is bound to
            role: Role being registered
            claimed_domain: Domain claimed by an organization, if any
            organization_name: Organization display name (organizations only)
            expected_subject: Subject the session asked the user to send
            expected_sender: Address the user declared they would send from

        Returns:
            BoundProof with the proof, the payload and the sender domain

        Raises:
            MalformedEmailError: sender cannot be parsed, or sender or
                subject differs from what the session expects
            DomainMismatchError: sender domain differs from claimed_domain
            ProofGenerationError: proving service failed
        """
        sender = extract_sender(email.raw)
        sender_domain = sender.split("@", 1)[1]

        if expected_sender is not None:
            expected = expected_sender.strip().lower()
            if sender != expected:
                raise MalformedEmailError(f"Email was sent from {sender}, expected {expected}")

        if expected_subject is not None:
            subject = extract_subject(email.raw)
            if subject.casefold() != " ".join(expected_subject.split()).casefold():
                raise MalformedEmailError(f"Unexpected subject: {subject!r}")

        domain = ""
        if role.is_organization:
            domain = sender_domain
            if claimed_domain:
                expected = normalize_domain(claimed_domain)
                if expected != sender_domain:
                    raise DomainMismatchError(expected, sender_domain)

        wallet_address = normalize_identity(identity)
        payload = RegistrationPayload(
            wallet_address=wallet_address,
            email_commitment=commit_email(sender, self.commitment_key),
            domain=domain,
            organization_name=organization_name.strip() if role.is_organization else "",
        )

        proof = self.generator.generate_proof(email, wallet_address, domain)
        logger.info(
            f"Proof generated for {wallet_address} "
            f"(domain {sender_domain}, correlation {email.correlation_id})"
        )
        return BoundProof(proof=proof, payload=payload, sender_domain=sender_domain)