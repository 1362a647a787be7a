"""
Typed Exception Hierarchy for the E-Invoicing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A failed submission or a broken hash chain has legal consequences: the
operator must know exactly which invoice, which unit and which step failed
before retrying by hand.  Callers therefore catch by TYPE, read structured
ATTRIBUTES, and report a machine-readable CODE.  Parsing message strings is
never required.

Example - WRONG way to handle errors:
    try:
        router.submit(serial)
    except Exception as e:
        if "timeout" in str(e):  # FRAGILE
            retry_later()

Example - RIGHT way:
    try:
        router.submit(serial)
    except SubmissionFailedError as e:
        log.warning(f"{e.serial_number} attempt {e.attempt} failed")
        api_response(code=e.code, serial=e.serial_number, detail=e.upstream_message)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from EInvoiceError:

    EInvoiceError (base)
    |
    +-- ValidationError
    |   +-- MissingFieldError
    |   +-- EmptyDocumentError
    |   +-- MissingBillingReferenceError
    |   +-- MissingExchangeRateError
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- CredentialUnitNotFoundError
    |
    +-- ConflictError
    |   +-- UnitAlreadyExistsError
    |
    +-- CredentialStateError
    |   +-- InvalidCredentialTransitionError
    |   +-- MissingComplianceCredentialsError
    |
    +-- SubmissionNotReadyError
    |
    +-- ExternalDependencyError
    |   +-- SigningFailedError
    |   +-- AuthorityGatewayError
    |   |   +-- GatewayTimeoutError
    |   |   +-- AuthorityUnavailableError
    |   |   +-- AuthorityRejectedError
    |   +-- CertificateIssuanceError
    |   +-- SubmissionFailedError
    |
    +-- IntegrityViolationError
        +-- HashChainBrokenError
        +-- SequenceGapError
        +-- UnsignedPredecessorError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Validation      | MISSING_FIELD                 | Required onboarding/document field empty
                | EMPTY_DOCUMENT                | No line items to assemble
                | MISSING_BILLING_REFERENCE     | Credit/debit note without original id
                | MISSING_EXCHANGE_RATE         | Foreign currency without reporting total
----------------|-------------------------------|---------------------------------------
Not found       | INVOICE_NOT_FOUND             | Serial number / id unknown
                | CREDENTIAL_UNIT_NOT_FOUND     | Common name unknown
----------------|-------------------------------|---------------------------------------
Conflict        | UNIT_ALREADY_EXISTS           | Re-onboarding an existing unit
----------------|-------------------------------|---------------------------------------
Credentials     | INVALID_CREDENTIAL_TRANSITION | Lifecycle step not legal from state
                | MISSING_COMPLIANCE_CREDENTIALS| Production issuance before compliance
----------------|-------------------------------|---------------------------------------
Submission      | SUBMISSION_NOT_READY          | Unsigned invoice or no active credentials
----------------|-------------------------------|---------------------------------------
External        | SIGNING_FAILED                | Signer raised
                | GATEWAY_TIMEOUT               | Authority did not answer in time
                | AUTHORITY_UNAVAILABLE         | Transport-level failure
                | AUTHORITY_REJECTED            | Non-2xx answer from the authority
                | SUBMISSION_FAILED             | Router recorded a failed attempt
                | CERTIFICATE_ISSUANCE_FAILED   | Authority failed a certificate step
----------------|-------------------------------|---------------------------------------
Integrity       | HASH_CHAIN_BROKEN             | previous digest does not match chain
                | SEQUENCE_GAP                  | Sequence numbers not 1..N
                | UNSIGNED_PREDECESSOR          | Chain head has no digest yet
                | IMMUTABILITY_VIOLATION        | Modifying a signed document

===============================================================================
HANDLING PATTERNS
===============================================================================

1. External errors are never retried inside the kernel.  A clearance
   re-submission can create a duplicate filing, so the decision belongs to
   the caller:

    except SubmissionFailedError as e:
        schedule_manual_retry(e.kind, e.serial_number)
    except CertificateIssuanceError as e:
        schedule_manual_retry(e.operation, e.common_name)

2. Integrity errors are fatal for the affected series.  Stop issuing and
   investigate; never "repair" a chain in place:

    except HashChainBrokenError as e:
        alert_compliance_team(e.series_key, e.serial_number)
"""


class EInvoiceError(Exception):
    """
    Base exception for all e-invoicing kernel errors.

    All subclasses define a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "EINVOICE_ERROR"


# Validation errors


class ValidationError(EInvoiceError):
    """Base exception for malformed or incomplete input."""

    code: str = "VALIDATION_ERROR"


class MissingFieldError(ValidationError):
    """A required field is missing or blank."""

    code: str = "MISSING_FIELD"

    def __init__(self, field_name: str, operation: str):
        self.field_name = field_name
        self.operation = operation
        super().__init__(f"{operation}: '{field_name}' is required")


class EmptyDocumentError(ValidationError):
    """A document was submitted for assembly without line items."""

    code: str = "EMPTY_DOCUMENT"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Document {reference} has no line items")


class MissingBillingReferenceError(ValidationError):
    """Credit and debit notes must reference the original document."""

    code: str = "MISSING_BILLING_REFERENCE"

    def __init__(self, reference: str, type_code: str):
        self.reference = reference
        self.type_code = type_code
        super().__init__(
            f"Document {reference} (type {type_code}) requires a billing reference "
            f"to the original invoice"
        )


class MissingExchangeRateError(ValidationError):
    """Foreign-currency document without a way to compute the reporting total."""

    code: str = "MISSING_EXCHANGE_RATE"

    def __init__(self, reference: str, currency: str, reporting_currency: str):
        self.reference = reference
        self.currency = currency
        self.reporting_currency = reporting_currency
        super().__init__(
            f"Document {reference} is in {currency} but neither a reporting VAT "
            f"total nor an exchange rate to {reporting_currency} was supplied"
        )


# Not-found errors


class NotFoundError(EInvoiceError):
    """Base exception for missing referenced records."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Invoice with the given serial number or id does not exist."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Invoice not found: {reference}")


class CredentialUnitNotFoundError(NotFoundError):
    """No credential unit is registered under the common name."""

    code: str = "CREDENTIAL_UNIT_NOT_FOUND"

    def __init__(self, common_name: str):
        self.common_name = common_name
        super().__init__(f"Credential unit not found: {common_name}")


# Conflict errors


class ConflictError(EInvoiceError):
    """Base exception for conflicting writes."""

    code: str = "CONFLICT"


class UnitAlreadyExistsError(ConflictError):
    """A unit with the same common name is already onboarded."""

    code: str = "UNIT_ALREADY_EXISTS"

    def __init__(self, common_name: str):
        self.common_name = common_name
        super().__init__(
            f"Credential unit '{common_name}' already exists; re-onboarding "
            f"requires a new unit"
        )


# Credential lifecycle errors


class CredentialStateError(EInvoiceError):
    """Base exception for credential lifecycle violations."""

    code: str = "CREDENTIAL_STATE_ERROR"


class InvalidCredentialTransitionError(CredentialStateError):
    """Requested lifecycle step is not legal from the unit's current state."""

    code: str = "INVALID_CREDENTIAL_TRANSITION"

    def __init__(self, common_name: str, current_state: str, target_state: str):
        self.common_name = common_name
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Unit {common_name}: cannot move from {current_state} to {target_state}"
        )


class MissingComplianceCredentialsError(CredentialStateError):
    """Production issuance requires the compliance token/secret/request id."""

    code: str = "MISSING_COMPLIANCE_CREDENTIALS"

    def __init__(self, common_name: str):
        self.common_name = common_name
        super().__init__(
            f"Unit {common_name} has no compliance credentials; issue the "
            f"compliance certificate first"
        )


# Submission readiness


class SubmissionNotReadyError(EInvoiceError):
    """Invoice or unit is not in a state that allows submission."""

    code: str = "SUBMISSION_NOT_READY"

    def __init__(self, serial_number: str, reason: str):
        self.serial_number = serial_number
        self.reason = reason
        super().__init__(f"Invoice {serial_number} is not ready for submission: {reason}")


# External dependency errors


class ExternalDependencyError(EInvoiceError):
    """Base exception for Signer and authority gateway failures."""

    code: str = "EXTERNAL_DEPENDENCY_ERROR"


class SigningFailedError(ExternalDependencyError):
    """The external Signer failed."""

    code: str = "SIGNING_FAILED"

    def __init__(self, operation: str, reference: str, message: str):
        self.operation = operation
        self.reference = reference
        self.upstream_message = message
        super().__init__(f"Signing failed during {operation} for {reference}: {message}")


class AuthorityGatewayError(ExternalDependencyError):
    """Base exception for authority gateway failures."""

    code: str = "AUTHORITY_GATEWAY_ERROR"

    def __init__(
        self,
        operation: str,
        message: str,
        status_code: int | None = None,
        body: dict | None = None,
    ):
        self.operation = operation
        self.upstream_message = message
        self.status_code = status_code
        self.body = body
        super().__init__(f"Authority {operation}: {message}")


class GatewayTimeoutError(AuthorityGatewayError):
    """The authority did not answer within the configured timeout."""

    code: str = "GATEWAY_TIMEOUT"


class AuthorityUnavailableError(AuthorityGatewayError):
    """Connection-level failure talking to the authority."""

    code: str = "AUTHORITY_UNAVAILABLE"


class AuthorityRejectedError(AuthorityGatewayError):
    """The authority answered with a non-success HTTP status."""

    code: str = "AUTHORITY_REJECTED"


class CertificateIssuanceError(ExternalDependencyError):
    """The authority failed a certificate issuance step; the unit is unchanged."""

    code: str = "CERTIFICATE_ISSUANCE_FAILED"

    def __init__(
        self,
        common_name: str,
        operation: str,
        message: str,
        upstream_code: str,
        status_code: int | None = None,
    ):
        self.common_name = common_name
        self.operation = operation
        self.upstream_message = message
        self.upstream_code = upstream_code
        self.status_code = status_code
        super().__init__(f"{operation} for unit {common_name} failed: {message}")


class SubmissionFailedError(ExternalDependencyError):
    """A submission attempt failed; the attempt has been recorded."""

    code: str = "SUBMISSION_FAILED"

    def __init__(self, serial_number: str, kind: str, attempt: int, message: str):
        self.serial_number = serial_number
        self.kind = kind
        self.attempt = attempt
        self.upstream_message = message
        super().__init__(
            f"{kind} of {serial_number} failed on attempt {attempt}: {message}"
        )


# Integrity violations


class IntegrityViolationError(EInvoiceError):
    """Base exception for data-integrity invariant violations."""

    code: str = "INTEGRITY_VIOLATION"


class HashChainBrokenError(IntegrityViolationError):
    """An invoice's previous digest does not link to its predecessor."""

    code: str = "HASH_CHAIN_BROKEN"

    def __init__(
        self,
        series_key: str,
        serial_number: str,
        expected_digest: str,
        actual_digest: str | None,
    ):
        self.series_key = series_key
        self.serial_number = serial_number
        self.expected_digest = expected_digest
        self.actual_digest = actual_digest
        super().__init__(
            f"Hash chain broken in series {series_key} at {serial_number}: "
            f"expected previous digest {expected_digest}, found {actual_digest}"
        )


class SequenceGapError(IntegrityViolationError):
    """Sequence numbers of a series are not contiguous from 1."""

    code: str = "SEQUENCE_GAP"

    def __init__(self, series_key: str, expected: int, actual: int):
        self.series_key = series_key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Sequence gap in series {series_key}: expected {expected}, found {actual}"
        )


class UnsignedPredecessorError(IntegrityViolationError):
    """The most recent invoice in the series has no digest to chain from."""

    code: str = "UNSIGNED_PREDECESSOR"

    def __init__(self, series_key: str, serial_number: str):
        self.series_key = series_key
        self.serial_number = serial_number
        super().__init__(
            f"Series {series_key} cannot be extended: {serial_number} has no digest"
        )


class ImmutabilityViolationError(IntegrityViolationError):
    """Attempted to modify a signed document or its chain link."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
