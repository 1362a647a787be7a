"""
Module: einvoice_kernel.models.credential_unit
Responsibility: ORM persistence for onboarded tax-registered units and their
    credential slots, plus the explicit onboarding state machine.
Architecture position: Kernel > Models.  May import from db/ and exceptions.

Invariants enforced:
    - common_name is unique: a unit is onboarded exactly once.
    - State transitions follow VALID_TRANSITIONS; anything else raises
      InvalidCredentialTransitionError.
    - The active slot always mirrors the most recently issued credential
      (compliance, then production) and is empty once revoked.

Failure modes:
    - IntegrityError on duplicate common_name (onboarding race).
    - InvalidCredentialTransitionError on an illegal lifecycle step.

Audit relevance:
    csr, private_key and onboarding_config are retained after revocation so
    that documents signed with the key can still be explained.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from einvoice_kernel.db.base import TimestampedBase, UTCDateTime
from einvoice_kernel.exceptions import InvalidCredentialTransitionError


class CredentialState(str, Enum):
    """
    Onboarding state of a credential unit.

    State machine:
        DRAFT -> CSR_GENERATED
        CSR_GENERATED -> COMPLIANCE_ISSUED | REVOKED
        COMPLIANCE_ISSUED -> COMPLIANCE_CHECKED | PRODUCTION_ISSUED | REVOKED
        COMPLIANCE_CHECKED -> PRODUCTION_ISSUED | REVOKED
        PRODUCTION_ISSUED -> REVOKED
        REVOKED: terminal (re-onboarding needs a fresh unit)
    """

    DRAFT = "draft"
    CSR_GENERATED = "csr_generated"
    COMPLIANCE_ISSUED = "compliance_issued"
    COMPLIANCE_CHECKED = "compliance_checked"
    PRODUCTION_ISSUED = "production_issued"
    REVOKED = "revoked"


VALID_TRANSITIONS: dict[CredentialState, frozenset[CredentialState]] = {
    CredentialState.DRAFT: frozenset({
        CredentialState.CSR_GENERATED,
    }),
    CredentialState.CSR_GENERATED: frozenset({
        CredentialState.COMPLIANCE_ISSUED, CredentialState.REVOKED,
    }),
    CredentialState.COMPLIANCE_ISSUED: frozenset({
        CredentialState.COMPLIANCE_CHECKED,
        CredentialState.PRODUCTION_ISSUED,
        CredentialState.REVOKED,
    }),
    CredentialState.COMPLIANCE_CHECKED: frozenset({
        CredentialState.PRODUCTION_ISSUED, CredentialState.REVOKED,
    }),
    CredentialState.PRODUCTION_ISSUED: frozenset({
        CredentialState.REVOKED,
    }),
    CredentialState.REVOKED: frozenset(),
}


class CredentialUnit(TimestampedBase):
    """
    One onboarded e-invoicing generation unit.

    Contract:
        Mutated only by CredentialService transitions, each of which holds
        the row lock for the duration of the step.

    Guarantees:
        - validate_transition() is called before every state change.
        - clear_credentials() empties all six token/secret slots and the
          request ids, leaving csr/private_key intact.

    Non-goals:
        - Does not talk to the authority; CredentialService does.
    """

    __tablename__ = "credential_units"

    __table_args__ = (
        Index("idx_credential_unit_state", "state"),
    )

    common_name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    serial_number: Mapped[str] = mapped_column(String(255), nullable=False)
    organization_identifier: Mapped[str] = mapped_column(String(20), nullable=False)
    organization_unit_name: Mapped[str] = mapped_column(String(255), nullable=False)
    organization_name: Mapped[str] = mapped_column(String(255), nullable=False)
    country_name: Mapped[str] = mapped_column(String(2), nullable=False)
    invoice_type: Mapped[str] = mapped_column(String(4), nullable=False)
    location_address: Mapped[str] = mapped_column(String(255), nullable=False)
    industry_business_category: Mapped[str] = mapped_column(String(255), nullable=False)
    production: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    csr: Mapped[str | None] = mapped_column(Text, nullable=True)
    private_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    onboarding_config: Mapped[str | None] = mapped_column(Text, nullable=True)

    state: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=CredentialState.DRAFT.value,
    )

    compliance_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    compliance_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    compliance_request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    production_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    production_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    production_request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    active_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    active_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)

    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def state_enum(self) -> CredentialState:
        return CredentialState(self.state)

    @property
    def has_compliance_credentials(self) -> bool:
        return bool(
            self.compliance_token
            and self.compliance_secret
            and self.compliance_request_id
        )

    @property
    def has_active_credentials(self) -> bool:
        return bool(self.active_token and self.active_secret)

    @property
    def is_onboarded(self) -> bool:
        return self.state_enum == CredentialState.PRODUCTION_ISSUED

    def validate_transition(self, target: CredentialState) -> None:
        """
        Raise InvalidCredentialTransitionError unless ``target`` is reachable
        from the current state in one step.
        """
        allowed = VALID_TRANSITIONS.get(self.state_enum, frozenset())
        if target not in allowed:
            raise InvalidCredentialTransitionError(
                common_name=self.common_name,
                current_state=self.state,
                target_state=target.value,
            )

    def transition_to(self, target: CredentialState) -> str:
        """Validate and apply one lifecycle step; returns the previous state."""
        self.validate_transition(target)
        previous = self.state
        self.state = target.value
        return previous

    def clear_credentials(self) -> None:
        self.compliance_token = None
        self.compliance_secret = None
        self.compliance_request_id = None
        self.production_token = None
        self.production_secret = None
        self.production_request_id = None
        self.active_token = None
        self.active_secret = None

    def __repr__(self) -> str:
        return f"<CredentialUnit {self.common_name} [{self.state}]>"
