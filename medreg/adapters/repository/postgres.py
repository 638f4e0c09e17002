"""
PostgreSQL repository adapters - Implement Registry and RequestStore protocols.

This module provides the PostgreSQL implementation of the domain's
registry and request-store ports using psycopg3 with raw SQL.

Invariant Enforcement:
---------------------
Registry invariants are enforced by the database, not only checked in
Python, so they hold across processes:

1. **One record per identity**: primary key on participants.wallet_address.

2. **Domain uniqueness**: partial unique index on participants.domain
   restricted to active organizations. Deactivating an organization
   releases its domain.

3. **At-most-once proof consumption**: primary key on
   consumed_proofs.proof_digest, inserted in the same transaction as the
   participant row.

4. **Email replay protection**: unique constraint on
   participants.email_commitment.

The pre-checks inside the transaction produce precise errors for the
common case; a concurrent writer that slips past them hits the
constraint and the UniqueViolation is mapped to the same domain error.

Request processing uses SELECT FOR UPDATE on the request row, runs the
approval side effect while the lock is held, then compare-and-swaps the
status from PENDING. The side effect (a registry write or admin grant)
runs on its own pool connection and commits before the status update,
so the two are not one transaction: if the status update is lost after
the effect committed, the request stays PENDING while its registration
exists. The admin queue recognises that state through the record's
originating_request_id. Each approval holds two pool connections at
once, so pool_max_size bounds concurrent approvals at half the pool.
"""

import logging
import uuid
from collections.abc import Callable
from pathlib import Path

from psycopg.errors import UniqueViolation
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from medreg.domain.exceptions import (
    AlreadyProcessedError,
    DomainTakenError,
    DuplicateIdentityError,
    EmailCommitmentUsedError,
    NotRegisteredError,
    ProofAlreadyConsumedError,
    ProofRejectedError,
    RegistrationError,
    RegistryInvariantError,
    RequestNotFound,
)
from medreg.domain.models import (
    AdminAccessRequest,
    AdminRecord,
    AdminRole,
    BaseRecord,
    OrganizationRecord,
    OrganizationRegistrationRequest,
    PatientRegistrationRequest,
    Permission,
    Proof,
    Receipt,
    RegistrationPayload,
    RegistrationStats,
    Request,
    RequestPayload,
    RequestStatus,
    RequestType,
    Role,
    request_type_of,
)
from medreg.domain.ports import ProofVerifier

logger = logging.getLogger(__name__)

_PARTICIPANT_COLUMNS = """
    wallet_address, role, email_commitment, registration_time, is_active,
    originating_request_id, domain, organization_name
"""

_REQUEST_COLUMNS = """
    request_id, requester, status, request_time, payload,
    processed_by, processed_time, rejection_reason
"""

def unique_violation_error(
    constraint: str | None, payload: RegistrationPayload, proof: Proof
) -> RegistrationError:
    """
    Map a violated unique constraint to the error the matching pre-check raises.

    Concurrent writers that pass the pre-checks land here, and must see
    the same error, carrying the same value, as a sequential loser.
    """
    if constraint == "participants_pkey":
        return DuplicateIdentityError(payload.wallet_address)
    if constraint == "participants_active_domain_key":
        return DomainTakenError(payload.domain)
    if constraint == "participants_email_commitment_key":
        return EmailCommitmentUsedError(payload.email_commitment)
    if constraint == "consumed_proofs_pkey":
        return ProofAlreadyConsumedError(proof.digest)
    return RegistryInvariantError(
        f"Registration for {payload.wallet_address} violated {constraint}"
    )


def _row_to_record(row: tuple) -> BaseRecord:
    (wallet, role, commitment, registered, active, request_id, domain, name) = row
    role = Role(role)
    if role.is_organization:
        return OrganizationRecord(
            wallet_address=wallet,
            role=role,
            email_commitment=commitment,
            registration_time=registered,
            is_active=active,
            originating_request_id=request_id,
            organization_type=role,
            domain=domain,
            organization_name=name,
        )
    return BaseRecord(
        wallet_address=wallet,
        role=role,
        email_commitment=commitment,
        registration_time=registered,
        is_active=active,
        originating_request_id=request_id,
    )


def _row_to_admin(row: tuple) -> AdminRecord:
    wallet, active, role, permissions, since = row
    return AdminRecord(
        wallet_address=wallet,
        is_active=active,
        role=AdminRole(role),
        permissions=Permission(permissions),
        admin_since=since,
    )


def payload_to_json(payload: RequestPayload) -> dict:
    """Serialize a request payload for the JSONB payload column."""
    if isinstance(payload, PatientRegistrationRequest):
        return {"email_commitment": payload.email_commitment, "proof": payload.proof.seal}
    if isinstance(payload, OrganizationRegistrationRequest):
        return {
            "organization_type": payload.organization_type.value,
            "domain": payload.domain,
            "organization_name": payload.organization_name,
            "email_commitment": payload.email_commitment,
            "proof": payload.proof.seal,
        }
    if isinstance(payload, AdminAccessRequest):
        return {"admin_role": payload.admin_role.name, "reason": payload.reason}
    raise TypeError(f"Unknown request payload: {type(payload).__name__}")


def payload_from_json(request_type: RequestType, data: dict) -> RequestPayload:
    if request_type is RequestType.PATIENT_REGISTRATION:
        return PatientRegistrationRequest(
            email_commitment=data["email_commitment"], proof=Proof(data["proof"])
        )
    if request_type is RequestType.ORGANIZATION_REGISTRATION:
        return OrganizationRegistrationRequest(
            organization_type=Role(data["organization_type"]),
            domain=data["domain"],
            organization_name=data["organization_name"],
            email_commitment=data["email_commitment"],
            proof=Proof(data["proof"]),
        )
    return AdminAccessRequest(admin_role=AdminRole[data["admin_role"]], reason=data["reason"])


def _row_to_request(row: tuple, request_type: str) -> Request:
    (request_id, requester, status, requested, payload, by, processed, reason) = row
    return Request(
        request_id=request_id,
        requester=requester,
        status=RequestStatus(status),
        request_time=requested,
        payload=payload_from_json(RequestType(request_type), payload),
        processed_by=by,
        processed_time=processed,
        rejection_reason=reason,
    )


class PostgresRegistry:
    """
    Implements Registry protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: ConnectionPool, verifier: ProofVerifier) -> None:
        """
        Initialize registry with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
            verifier: Proof verifier consulted before any write
        """
        self._pool = pool
        self._verifier = verifier

    # Reads

    def get_role(self, identity: str) -> BaseRecord | None:
        sql = f"SELECT {_PARTICIPANT_COLUMNS} FROM participants WHERE wallet_address = %s"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (identity,))
            row = cursor.fetchone()
        return _row_to_record(row) if row is not None else None

    def get_organization_record(self, identity: str) -> OrganizationRecord | None:
        record = self.get_role(identity)
        return record if isinstance(record, OrganizationRecord) else None

    def is_domain_taken(self, domain: str) -> bool:
        sql = "SELECT 1 FROM participants WHERE domain = %s AND is_active"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (domain,))
            return cursor.fetchone() is not None

    def registration_stats(self) -> RegistrationStats:
        sql = """
            SELECT COUNT(*),
                   COUNT(*) FILTER (WHERE role = 'PATIENT'),
                   COUNT(*) FILTER (WHERE role = 'HOSPITAL'),
                   COUNT(*) FILTER (WHERE role = 'INSURER')
            FROM participants
            WHERE is_active
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql)
            total, patients, hospitals, insurers = cursor.fetchone()
        return RegistrationStats(
            total_users=total, patients=patients, hospitals=hospitals, insurers=insurers
        )

    def get_admin_record(self, identity: str) -> AdminRecord | None:
        sql = """
            SELECT wallet_address, is_active, role, permissions, admin_since
            FROM admins
            WHERE wallet_address = %s
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (identity,))
            row = cursor.fetchone()
        return _row_to_admin(row) if row is not None else None

    # Writes

    def register_patient(
        self, proof: Proof, payload: RegistrationPayload, request_id: int | None = None
    ) -> Receipt:
        return self._register(Role.PATIENT, proof, payload, request_id)

    def register_hospital(
        self, proof: Proof, payload: RegistrationPayload, request_id: int | None = None
    ) -> Receipt:
        return self._register(Role.HOSPITAL, proof, payload, request_id)

    def register_insurer(
        self, proof: Proof, payload: RegistrationPayload, request_id: int | None = None
    ) -> Receipt:
        return self._register(Role.INSURER, proof, payload, request_id)

    def set_user_active(self, identity: str, active: bool) -> BaseRecord:
        """
        Toggle is_active. Reactivating an organization re-claims its domain,
        which the partial unique index refuses if another organization took it.
        """
        sql = f"""
            UPDATE participants
            SET is_active = %s
            WHERE wallet_address = %s
            RETURNING {_PARTICIPANT_COLUMNS}
        """
        try:
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(sql, (active, identity))
                row = cursor.fetchone()
                conn.commit()
        except UniqueViolation as e:
            record = self.get_organization_record(identity)
            raise DomainTakenError(record.domain if record is not None else identity) from e
        if row is None:
            raise NotRegisteredError(identity)
        return _row_to_record(row)

    def grant_admin(
        self, identity: str, role: AdminRole, permissions: Permission
    ) -> AdminRecord:
        """Upsert an admin; GREATEST keeps an existing higher role."""
        sql = """
            INSERT INTO admins (wallet_address, is_active, role, permissions, admin_since)
            VALUES (%s, TRUE, %s, %s, NOW())
            ON CONFLICT (wallet_address) DO UPDATE
            SET is_active = TRUE,
                role = GREATEST(admins.role, EXCLUDED.role),
                permissions = admins.permissions | EXCLUDED.permissions
            RETURNING wallet_address, is_active, role, permissions, admin_since
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (identity, int(role), int(permissions)))
            row = cursor.fetchone()
            conn.commit()
        return _row_to_admin(row)

    def _register(
        self, role: Role, proof: Proof, payload: RegistrationPayload, request_id: int | None
    ) -> Receipt:
        """
        Register one participant in a single transaction.

        Check order: consumed proof, payload shape, proof validity,
        identity, domain, email commitment.
        """
        identity = payload.wallet_address

        if self._proof_consumed(proof):
            raise ProofAlreadyConsumedError(proof.digest)
        if role.is_organization and not (payload.domain and payload.organization_name):
            raise ProofRejectedError("Organization registration requires a domain and name")
        if not self._verifier.verify(proof, payload):
            raise ProofRejectedError("Proof does not match the registration payload")

        lock_identity_sql = "SELECT pg_advisory_xact_lock(hashtext(%s))"
        identity_sql = "SELECT 1 FROM participants WHERE wallet_address = %s"
        domain_sql = "SELECT 1 FROM participants WHERE domain = %s AND is_active FOR UPDATE"
        commitment_sql = "SELECT 1 FROM participants WHERE email_commitment = %s"
        insert_sql = """
            INSERT INTO participants
                (wallet_address, role, email_commitment, registration_time, is_active,
                 originating_request_id, domain, organization_name)
            VALUES (%s, %s, %s, NOW(), TRUE, %s, %s, %s)
            RETURNING registration_time
        """
        consume_sql = """
            INSERT INTO consumed_proofs (proof_digest, wallet_address, consumed_at)
            VALUES (%s, %s, NOW())
        """

        domain = payload.domain if role.is_organization else None
        name = payload.organization_name if role.is_organization else None

        try:
            with self._pool.connection() as conn, conn.cursor() as cursor:
                # Serialize writers per identity
                cursor.execute(lock_identity_sql, (identity,))

                cursor.execute(identity_sql, (identity,))
                if cursor.fetchone() is not None:
                    raise DuplicateIdentityError(identity)

                if domain is not None:
                    cursor.execute(domain_sql, (domain,))
                    if cursor.fetchone() is not None:
                        raise DomainTakenError(domain)

                cursor.execute(commitment_sql, (payload.email_commitment,))
                if cursor.fetchone() is not None:
                    raise EmailCommitmentUsedError(payload.email_commitment)

                cursor.execute(
                    insert_sql,
                    (identity, role.value, payload.email_commitment, request_id, domain, name),
                )
                registered_at = cursor.fetchone()[0]
                cursor.execute(consume_sql, (proof.digest, identity))
                conn.commit()
        except UniqueViolation as e:
            constraint = e.diag.constraint_name
            logger.info(f"Concurrent registration for {identity} lost: {constraint}")
            raise unique_violation_error(constraint, payload, proof) from e

        return Receipt(
            identity=identity,
            role=role,
            submission_id=uuid.uuid4().hex,
            proof_digest=proof.digest,
            registered_at=registered_at,
        )

    def _proof_consumed(self, proof: Proof) -> bool:
        sql = "SELECT 1 FROM consumed_proofs WHERE proof_digest = %s"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (proof.digest,))
            return cursor.fetchone() is not None


class PostgresRequestStore:
    """
    Implements RequestStore protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def add(self, requester: str, payload: RequestPayload) -> Request:
        request_type = request_type_of(payload)
        sql = f"""
            INSERT INTO admin_requests (requester, request_type, status, request_time, payload)
            VALUES (%s, %s, 'PENDING', NOW(), %s)
            RETURNING {_REQUEST_COLUMNS}
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (requester, request_type.value, Jsonb(payload_to_json(payload))))
            row = cursor.fetchone()
            conn.commit()
        return _row_to_request(row, request_type.value)

    def get(self, request_id: int) -> Request:
        sql = f"SELECT {_REQUEST_COLUMNS}, request_type FROM admin_requests WHERE request_id = %s"
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (request_id,))
            row = cursor.fetchone()
        if row is None:
            raise RequestNotFound(request_id)
        return _row_to_request(row[:-1], row[-1])

    def list_pending(self, request_type: RequestType | None = None) -> list[Request]:
        sql = f"""
            SELECT {_REQUEST_COLUMNS}, request_type
            FROM admin_requests
            WHERE status = 'PENDING' AND (%s::text IS NULL OR request_type = %s::text)
            ORDER BY request_id
        """
        value = request_type.value if request_type is not None else None
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (value, value))
            rows = cursor.fetchall()
        return [_row_to_request(row[:-1], row[-1]) for row in rows]

    def list_by_requester(self, requester: str) -> list[Request]:
        sql = f"""
            SELECT {_REQUEST_COLUMNS}, request_type
            FROM admin_requests
            WHERE requester = %s
            ORDER BY request_id
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (requester,))
            rows = cursor.fetchall()
        return [_row_to_request(row[:-1], row[-1]) for row in rows]

    def process(
        self,
        request_id: int,
        status: RequestStatus,
        processed_by: str,
        effect: Callable[[Request], None],
        reason: str | None = None,
    ) -> Request:
        """
        Compare-and-swap a request out of PENDING with row-level locking.

        The effect runs while the row lock is held; if it raises, the
        connection context rolls back and the request stays PENDING.
        Writes the effect committed on other connections are not undone.
        """
        if status is RequestStatus.PENDING:
            raise ValueError("Requests can only move to APPROVED or REJECTED")

        select_sql = f"""
            SELECT {_REQUEST_COLUMNS}, request_type
            FROM admin_requests
            WHERE request_id = %s
            FOR UPDATE
        """
        update_sql = f"""
            UPDATE admin_requests
            SET status = %s, processed_by = %s, processed_time = NOW(), rejection_reason = %s
            WHERE request_id = %s AND status = 'PENDING'
            RETURNING {_REQUEST_COLUMNS}, request_type
        """

        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(select_sql, (request_id,))
            row = cursor.fetchone()
            if row is None:
                conn.commit()
                raise RequestNotFound(request_id)

            request = _row_to_request(row[:-1], row[-1])
            if request.status is not RequestStatus.PENDING:
                conn.commit()
                raise AlreadyProcessedError(
                    f"Request {request_id} is already {request.status.value}"
                )

            effect(request)

            cursor.execute(update_sql, (status.value, processed_by, reason, request_id))
            updated = cursor.fetchone()
            if updated is None:
                conn.rollback()
                raise AlreadyProcessedError(f"Request {request_id} is no longer PENDING")
            conn.commit()

        return _row_to_request(updated[:-1], updated[-1])


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: medreg/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {sql_file.name}")
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info(f"Migration complete: {sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
