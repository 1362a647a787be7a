"""
SequenceService tests.

Sequence numbers are handed out by a single atomic
``UPDATE ... RETURNING`` on the series counter row.  Aggregate
max-plus-one reads are forbidden.

Verifies:
- Serial-number format and the authority-time-zone year
- Strictly increasing, per-series counters
- Previous digest: genesis for an empty series, latest digest otherwise
- Unsigned predecessors block extension of the chain
"""

import inspect
import re
from datetime import datetime, timezone

import pytest

from einvoice_kernel.domain.classification import CustomerKind, InvoiceTypeCode, classify
from einvoice_kernel.exceptions import SigningFailedError, UnsignedPredecessorError
from einvoice_kernel.services.sequence_service import SequenceService, format_serial_number
from einvoice_kernel.utils.hashing import GENESIS_DIGEST

SIMPLIFIED = classify()


@pytest.fixture
def sequence_service(session, deterministic_clock):
    return SequenceService(session, deterministic_clock)


class TestSerialNumberFormat:

    def test_format(self):
        assert format_serial_number("acme", "SI", "25", 1) == "ACME-SI-25-00000001"
        assert format_serial_number("ACME", "RE", "26", 12345678) == "ACME-RE-26-12345678"

    def test_first_allocation(self, sequence_service):
        allocation = sequence_service.allocate("ACME", SIMPLIFIED)

        assert allocation.serial_number == "ACME-SI-25-00000001"
        assert allocation.sequence_number == 1
        assert allocation.previous_digest == GENESIS_DIGEST
        assert allocation.type_prefix == "SI"

    def test_prefix_follows_classification(self, sequence_service):
        standard = classify(InvoiceTypeCode.INVOICE, None, CustomerKind.B2B)
        credit = classify(InvoiceTypeCode.CREDIT_NOTE)

        assert sequence_service.allocate("ACME", standard).serial_number == "ACME-SD-25-00000001"
        assert sequence_service.allocate("ACME", credit).serial_number == "ACME-RE-25-00000002"

    def test_year_is_taken_in_authority_time_zone(self, session, deterministic_clock):
        # 22:30 UTC on New Year's Eve is already the next year in Riyadh
        deterministic_clock.set_time(datetime(2025, 12, 31, 22, 30, tzinfo=timezone.utc))
        service = SequenceService(session, deterministic_clock)

        assert service.allocate("ACME", SIMPLIFIED).serial_number == "ACME-SI-26-00000001"

    def test_empty_series_key_rejected(self, sequence_service):
        with pytest.raises(ValueError):
            sequence_service.allocate("", SIMPLIFIED)


class TestCounter:

    def test_strictly_increasing(self, sequence_service):
        values = [sequence_service.allocate("ACME", SIMPLIFIED).sequence_number for _ in range(50)]
        assert values == list(range(1, 51))

    def test_series_are_independent(self, sequence_service):
        sequence_service.allocate("ACME", SIMPLIFIED)
        sequence_service.allocate("ACME", SIMPLIFIED)

        beta = sequence_service.allocate("BETA", SIMPLIFIED)

        assert beta.sequence_number == 1
        assert beta.serial_number == "BETA-SI-25-00000001"
        assert sequence_service.current_value("ACME") == 2

    def test_current_value(self, sequence_service):
        assert sequence_service.current_value("ACME") is None
        sequence_service.allocate("ACME", SIMPLIFIED)
        assert sequence_service.current_value("ACME") == 1

    def test_register_series(self, sequence_service):
        series = sequence_service.register_series("ACME")
        assert series.last_sequence == 0
        assert sequence_service.current_value("ACME") == 0

        assert sequence_service.register_series("ACME") is series
        assert sequence_service.allocate("ACME", SIMPLIFIED).sequence_number == 1

    def test_no_aggregate_max_in_sequence_service(self):
        source = inspect.getsource(SequenceService)
        for pattern in (r"func\.max", r"MAX\s*\(", r"\bmax\s*\("):
            assert not re.search(pattern, source), f"forbidden pattern {pattern}"


class TestPreviousDigest:

    def test_chains_from_latest_signed_invoice(
        self, acme_unit, invoice_service, sequence_service, make_request,
    ):
        first = invoice_service.issue("ACME", make_request())

        allocation = sequence_service.allocate("ACME", SIMPLIFIED)

        assert allocation.sequence_number == 2
        assert allocation.previous_digest == first.current_digest
        assert allocation.previous_digest != GENESIS_DIGEST

    def test_reserved_but_unused_numbers_keep_genesis(self, sequence_service):
        sequence_service.allocate("ACME", SIMPLIFIED)
        assert sequence_service.allocate("ACME", SIMPLIFIED).previous_digest == GENESIS_DIGEST

    def test_unsigned_predecessor_blocks_allocation(
        self, acme_unit, invoice_service, sequence_service, fake_signer, make_request,
    ):
        fake_signer.fail_with = RuntimeError("signing tool crashed")
        with pytest.raises(SigningFailedError):
            invoice_service.issue("ACME", make_request())

        with pytest.raises(UnsignedPredecessorError) as exc_info:
            sequence_service.allocate("ACME", SIMPLIFIED)
        assert exc_info.value.serial_number == "ACME-SI-25-00000001"

    def test_custom_genesis_digest(self, session, deterministic_clock):
        service = SequenceService(session, deterministic_clock, genesis_digest="CUSTOM==")
        assert service.allocate("ACME", SIMPLIFIED).previous_digest == "CUSTOM=="
