"""
DocumentAssembler -- deterministic UBL 2.1 builder.

Responsibility:
    Build the unsigned UBL invoice for one InvoiceRequest and the
    DocumentIdentity the sequencer allocated for it: profile, type, parties,
    billing reference, chain references (ICV / PIH), QR and signature
    placeholders, document allowances/charges, grouped tax totals, the
    reporting-currency tax total, monetary totals, lines and the optional
    prepayment line.

Architecture position:
    Kernel > Domain -- pure functional core.  The only external input is
    the injected Clock, read once per document.

Invariants enforced:
    - Determinism: identical request, identity and clock reading produce
      byte-identical XML.
    - One TaxSubtotal per distinct (category, percent) pair, in first-seen
      line order (domain/tax_grouping.py).
    - Credit and debit notes always carry a BillingReference.

Failure modes:
    - MissingBillingReferenceError: note without billing_reference_id.
    - MissingExchangeRateError: document currency differs from the
      reporting currency and neither a reporting VAT total nor an exchange
      rate was given.
    - ValueError: caller-supplied issue_date / issue_time not in
      YYYY-MM-DD / HH:MM:SS form.

Non-goals:
    Arithmetic validation of caller totals.  The assembler is a builder;
    amounts are rendered as given (rounded half-up to 2 places).
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from lxml import etree

from einvoice_kernel.db.types import format_amount, round_amount
from einvoice_kernel.domain.classification import (
    NOTE_INSTRUCTIONS,
    Classification,
    InvoiceProfile,
    classify,
)
from einvoice_kernel.domain.clock import DEFAULT_AUTHORITY_TIMEZONE, Clock, authority_now
from einvoice_kernel.domain.dtos import (
    Address,
    AllowanceCharge,
    DocumentIdentity,
    InvoiceRequest,
    LineItem,
    Prepayment,
    TaxSubtotal,
    UnsignedDocument,
)
from einvoice_kernel.domain.tax_grouping import group_tax_subtotals
from einvoice_kernel.exceptions import (
    MissingBillingReferenceError,
    MissingExchangeRateError,
)

INV_NS = "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
CAC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
CBC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"
EXT_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2"

NSMAP = {None: INV_NS, "cac": CAC_NS, "cbc": CBC_NS, "ext": EXT_NS}

QR_PLACEHOLDER = "SET_QR_CODE_DATA"
SIGNATURE_PLACEHOLDER = " digital signature is inserted here by the signer "
XADES_URI = "urn:oasis:names:specification:ubl:dsig:enveloped:xades"
SIGNATURE_ID = "urn:oasis:names:specification:ubl:signature:Invoice"

CREDIT_TRANSFER_MEANS = "42"


@dataclass(frozen=True)
class AssemblerSettings:
    default_currency: str = "SAR"
    reporting_currency: str = "SAR"
    default_unit_code: str = "PCE"
    time_zone: str = DEFAULT_AUTHORITY_TIMEZONE
    walk_in_name: str = "Walk-in Customer"


def _cac(parent: etree._Element, tag: str) -> etree._Element:
    return etree.SubElement(parent, f"{{{CAC_NS}}}{tag}")


def _cbc(parent: etree._Element, tag: str, text: str | None = None, **attrs: str) -> etree._Element:
    element = etree.SubElement(parent, f"{{{CBC_NS}}}{tag}", attrs)
    if text is not None:
        element.text = text
    return element


def _amount(parent: etree._Element, tag: str, value: Decimal, currency: str) -> etree._Element:
    return _cbc(parent, tag, format_amount(value), currencyID=currency)


def _tax_scheme(parent: etree._Element, with_scheme_ids: bool = False) -> None:
    scheme = _cac(parent, "TaxScheme")
    if with_scheme_ids:
        _cbc(scheme, "ID", "VAT", schemeAgencyID="6", schemeID="UN/ECE 5153")
    else:
        _cbc(scheme, "ID", "VAT")


class DocumentAssembler:
    """
    Builds UnsignedDocument values.

    Contract:
        assemble(request, identity) has no side effects and reads the clock
        at most once.

    Guarantees:
        - ProfileID is clearance:1.0 for standard and reporting:1.0 for
          simplified documents.
        - Standard documents carry the full customer party; simplified
          documents carry the buyer name only.
        - The ICV reference equals identity.sequence_number and the PIH
          reference equals identity.previous_digest.
    """

    def __init__(self, clock: Clock, settings: AssemblerSettings | None = None):
        self._clock = clock
        self._settings = settings or AssemblerSettings()

    def assemble(self, request: InvoiceRequest, identity: DocumentIdentity) -> UnsignedDocument:
        classification = classify(request.type_code, request.type_name, request.customer_kind)
        if classification.is_note and not request.billing_reference_id:
            raise MissingBillingReferenceError(
                reference=identity.serial_number,
                type_code=classification.type_code.value,
            )

        issued_at, issue_date, issue_time = self._issue_timestamp(request)
        subtotals = group_tax_subtotals(request.lines)
        currency = request.currency or self._settings.default_currency
        reporting_vat_total = self._reporting_vat_total(request, identity, currency)

        root = etree.Element(f"{{{INV_NS}}}Invoice", nsmap=NSMAP)
        self._extensions(root)
        _cbc(root, "ProfileID", classification.profile_id)
        _cbc(root, "ID", identity.serial_number)
        _cbc(root, "UUID", str(identity.transaction_id))
        _cbc(root, "IssueDate", issue_date)
        _cbc(root, "IssueTime", issue_time)
        _cbc(root, "InvoiceTypeCode", classification.type_code.value, name=classification.type_name)
        _cbc(root, "DocumentCurrencyCode", currency)
        _cbc(root, "TaxCurrencyCode", self._settings.reporting_currency)

        if classification.is_note:
            billing = _cac(root, "BillingReference")
            _cbc(_cac(billing, "InvoiceDocumentReference"), "ID", request.billing_reference_id)

        self._chain_references(root, identity)
        self._signature(root)
        self._supplier(root, request)
        self._customer(root, request, classification)

        if classification.is_note:
            means = _cac(root, "PaymentMeans")
            _cbc(means, "PaymentMeansCode", CREDIT_TRANSFER_MEANS)
            _cbc(
                means,
                "InstructionNote",
                request.instruction_note or NOTE_INSTRUCTIONS[classification.type_code],
            )

        for allowance_charge in request.allowance_charges:
            self._document_allowance_charge(root, allowance_charge, currency)

        self._tax_totals(root, request, currency, subtotals, reporting_vat_total)
        self._monetary_total(root, request, currency)

        for line in request.lines:
            self._line(root, line, currency)
        if request.prepayment is not None:
            self._prepayment_line(root, request.prepayment, len(request.lines) + 1, currency)

        xml = etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)

        return UnsignedDocument(
            xml=xml,
            identity=identity,
            classification=classification,
            issued_at=issued_at,
            issue_date=issue_date,
            issue_time=issue_time,
            currency=currency,
            tax_subtotals=subtotals,
            reporting_vat_total=reporting_vat_total,
        )

    # ------------------------------------------------------------------
    # Header helpers
    # ------------------------------------------------------------------

    def _issue_timestamp(self, request: InvoiceRequest) -> tuple[datetime, str, str]:
        tz = ZoneInfo(self._settings.time_zone)
        if request.issue_date and request.issue_time:
            issue_date, issue_time = request.issue_date, request.issue_time
        else:
            now = authority_now(self._clock, self._settings.time_zone)
            issue_date = request.issue_date or now.strftime("%Y-%m-%d")
            issue_time = request.issue_time or now.strftime("%H:%M:%S")
        issued_at = datetime.strptime(
            f"{issue_date} {issue_time}", "%Y-%m-%d %H:%M:%S"
        ).replace(tzinfo=tz)
        return issued_at, issue_date, issue_time

    def _reporting_vat_total(
        self, request: InvoiceRequest, identity: DocumentIdentity, currency: str
    ) -> Decimal:
        totals = request.totals
        reporting_currency = self._settings.reporting_currency
        if currency == reporting_currency:
            return round_amount(totals.vat_total)
        if totals.reporting_vat_total is not None:
            return round_amount(totals.reporting_vat_total)
        if totals.exchange_rate is not None:
            return round_amount(totals.vat_total * totals.exchange_rate)
        raise MissingExchangeRateError(
            reference=identity.serial_number,
            currency=currency,
            reporting_currency=reporting_currency,
        )

    def _extensions(self, root: etree._Element) -> None:
        extensions = etree.SubElement(root, f"{{{EXT_NS}}}UBLExtensions")
        extension = etree.SubElement(extensions, f"{{{EXT_NS}}}UBLExtension")
        etree.SubElement(extension, f"{{{EXT_NS}}}ExtensionURI").text = XADES_URI
        content = etree.SubElement(extension, f"{{{EXT_NS}}}ExtensionContent")
        content.append(etree.Comment(SIGNATURE_PLACEHOLDER))

    def _chain_references(self, root: etree._Element, identity: DocumentIdentity) -> None:
        icv = _cac(root, "AdditionalDocumentReference")
        _cbc(icv, "ID", "ICV")
        _cbc(icv, "UUID", str(identity.sequence_number))

        for ref_id, payload in (("PIH", identity.previous_digest), ("QR", QR_PLACEHOLDER)):
            reference = _cac(root, "AdditionalDocumentReference")
            _cbc(reference, "ID", ref_id)
            attachment = _cac(reference, "Attachment")
            _cbc(attachment, "EmbeddedDocumentBinaryObject", payload, mimeCode="text/plain")

    def _signature(self, root: etree._Element) -> None:
        signature = _cac(root, "Signature")
        _cbc(signature, "ID", SIGNATURE_ID)
        _cbc(signature, "SignatureMethod", XADES_URI)

    # ------------------------------------------------------------------
    # Parties
    # ------------------------------------------------------------------

    def _address(self, parent: etree._Element, address: Address) -> None:
        postal = _cac(parent, "PostalAddress")
        for name, value in (
            ("StreetName", address.street),
            ("BuildingNumber", address.building_number),
            ("CitySubdivisionName", address.district),
            ("CityName", address.city),
            ("PostalZone", address.postal_code),
        ):
            if value:
                _cbc(postal, name, value)
        _cbc(_cac(postal, "Country"), "IdentificationCode", address.country)

    def _supplier(self, root: etree._Element, request: InvoiceRequest) -> None:
        seller = request.seller
        party = _cac(_cac(root, "AccountingSupplierParty"), "Party")
        _cbc(_cac(party, "PartyIdentification"), "ID", seller.cr_number or seller.vat_number, schemeID="CRN")
        self._address(party, seller.address)
        tax_scheme = _cac(party, "PartyTaxScheme")
        _cbc(tax_scheme, "CompanyID", seller.vat_number)
        _tax_scheme(tax_scheme)
        _cbc(_cac(party, "PartyLegalEntity"), "RegistrationName", seller.registration_name)

    def _customer(
        self,
        root: etree._Element,
        request: InvoiceRequest,
        classification: Classification,
    ) -> None:
        customer = request.customer
        party = _cac(_cac(root, "AccountingCustomerParty"), "Party")

        if classification.profile == InvoiceProfile.STANDARD and customer is not None:
            if customer.cr_number:
                _cbc(_cac(party, "PartyIdentification"), "ID", customer.cr_number, schemeID="CRN")
            if customer.address is not None:
                self._address(party, customer.address)
            if customer.vat_number:
                tax_scheme = _cac(party, "PartyTaxScheme")
                _cbc(tax_scheme, "CompanyID", customer.vat_number)
                _tax_scheme(tax_scheme)
            name = customer.display_name or self._settings.walk_in_name
        else:
            name = (customer.name if customer is not None else None) or self._settings.walk_in_name

        _cbc(_cac(party, "PartyLegalEntity"), "RegistrationName", name)

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    def _tax_category(
        self,
        parent: etree._Element,
        element: str,
        category: str,
        percent: Decimal,
        reason_code: str | None = None,
        reason: str | None = None,
    ) -> None:
        tax_category = _cac(parent, element)
        _cbc(tax_category, "ID", category, schemeAgencyID="6", schemeID="UN/ECE 5305")
        _cbc(tax_category, "Percent", format_amount(percent))
        if reason_code:
            _cbc(tax_category, "TaxExemptionReasonCode", reason_code)
        if reason:
            _cbc(tax_category, "TaxExemptionReason", reason)
        _tax_scheme(tax_category, with_scheme_ids=True)

    def _document_allowance_charge(
        self, root: etree._Element, allowance_charge: AllowanceCharge, currency: str
    ) -> None:
        element = _cac(root, "AllowanceCharge")
        _cbc(element, "ChargeIndicator", "true" if allowance_charge.charge_indicator else "false")
        if allowance_charge.reason_code:
            _cbc(element, "AllowanceChargeReasonCode", allowance_charge.reason_code)
        if allowance_charge.reason:
            _cbc(element, "AllowanceChargeReason", allowance_charge.reason)
        _amount(element, "Amount", allowance_charge.amount, currency)
        self._tax_category(
            element, "TaxCategory", allowance_charge.tax_category, allowance_charge.vat_percent
        )

    def _tax_totals(
        self,
        root: etree._Element,
        request: InvoiceRequest,
        currency: str,
        subtotals: tuple[TaxSubtotal, ...],
        reporting_vat_total: Decimal,
    ) -> None:
        tax_total = _cac(root, "TaxTotal")
        _amount(tax_total, "TaxAmount", request.totals.vat_total, currency)
        for subtotal in subtotals:
            element = _cac(tax_total, "TaxSubtotal")
            _amount(element, "TaxableAmount", subtotal.taxable_amount, currency)
            _amount(element, "TaxAmount", subtotal.tax_amount, currency)
            self._tax_category(
                element,
                "TaxCategory",
                subtotal.category,
                subtotal.percent,
                subtotal.exemption_reason_code,
                subtotal.exemption_reason,
            )

        reporting_total = _cac(root, "TaxTotal")
        _amount(reporting_total, "TaxAmount", reporting_vat_total, self._settings.reporting_currency)

    def _monetary_total(self, root: etree._Element, request: InvoiceRequest, currency: str) -> None:
        totals = request.totals
        monetary = _cac(root, "LegalMonetaryTotal")
        _amount(monetary, "LineExtensionAmount", totals.line_extension_total, currency)
        _amount(monetary, "TaxExclusiveAmount", totals.tax_exclusive_total, currency)
        _amount(monetary, "TaxInclusiveAmount", totals.tax_inclusive_total, currency)
        for name, value in (
            ("AllowanceTotalAmount", totals.allowance_total),
            ("ChargeTotalAmount", totals.charge_total),
            ("PrepaidAmount", totals.prepaid_amount),
            ("PayableRoundingAmount", totals.payable_rounding_amount),
        ):
            if value:
                _amount(monetary, name, value, currency)
        _amount(monetary, "PayableAmount", totals.payable_amount, currency)

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def _line(self, root: etree._Element, line: LineItem, currency: str) -> None:
        element = _cac(root, "InvoiceLine")
        _cbc(element, "ID", line.line_id)
        unit_code = line.unit_code or self._settings.default_unit_code
        _cbc(element, "InvoicedQuantity", format(line.quantity, "f"), unitCode=unit_code)
        _amount(element, "LineExtensionAmount", line.net_amount, currency)

        reference = line.document_reference
        if reference is not None:
            doc_ref = _cac(element, "DocumentReference")
            _cbc(doc_ref, "ID", reference.id)
            if reference.uuid:
                _cbc(doc_ref, "UUID", reference.uuid)
            if reference.issue_date:
                _cbc(doc_ref, "IssueDate", reference.issue_date)
            if reference.issue_time:
                _cbc(doc_ref, "IssueTime", reference.issue_time)
            _cbc(doc_ref, "DocumentTypeCode", reference.type_code)

        for allowance_charge in line.allowance_charges:
            ac = _cac(element, "AllowanceCharge")
            _cbc(ac, "ChargeIndicator", "true" if allowance_charge.charge_indicator else "false")
            if allowance_charge.reason_code:
                _cbc(ac, "AllowanceChargeReasonCode", allowance_charge.reason_code)
            if allowance_charge.reason:
                _cbc(ac, "AllowanceChargeReason", allowance_charge.reason)
            _amount(ac, "Amount", allowance_charge.amount, currency)

        vat_amount = round_amount(line.vat_amount)
        tax_total = _cac(element, "TaxTotal")
        _amount(tax_total, "TaxAmount", vat_amount, currency)
        _amount(tax_total, "RoundingAmount", line.net_amount + vat_amount, currency)

        item = _cac(element, "Item")
        _cbc(item, "Name", line.description)
        classified = _cac(item, "ClassifiedTaxCategory")
        _cbc(classified, "ID", line.category)
        _cbc(classified, "Percent", format_amount(line.vat_percent))
        _tax_scheme(classified)

        _amount(_cac(element, "Price"), "PriceAmount", line.unit_price, currency)

    def _prepayment_line(
        self, root: etree._Element, prepayment: Prepayment, line_number: int, currency: str
    ) -> None:
        element = _cac(root, "InvoiceLine")
        _cbc(element, "ID", str(line_number))
        _cbc(element, "InvoicedQuantity", "0.000000", unitCode=self._settings.default_unit_code)
        _amount(element, "LineExtensionAmount", Decimal("0"), currency)

        doc_ref = _cac(element, "DocumentReference")
        _cbc(doc_ref, "ID", prepayment.invoice_id)
        if prepayment.uuid:
            _cbc(doc_ref, "UUID", prepayment.uuid)
        if prepayment.issue_date:
            _cbc(doc_ref, "IssueDate", prepayment.issue_date)
        if prepayment.issue_time:
            _cbc(doc_ref, "IssueTime", prepayment.issue_time)
        _cbc(doc_ref, "DocumentTypeCode", "386")

        tax_total = _cac(element, "TaxTotal")
        _amount(tax_total, "TaxAmount", Decimal("0"), currency)
        _amount(tax_total, "RoundingAmount", Decimal("0"), currency)
        subtotal = _cac(tax_total, "TaxSubtotal")
        _amount(subtotal, "TaxableAmount", prepayment.amount_ex_vat, currency)
        _amount(subtotal, "TaxAmount", prepayment.vat_amount, currency)
        self._tax_category(subtotal, "TaxCategory", "S", prepayment.vat_percent)

        item = _cac(element, "Item")
        _cbc(item, "Name", prepayment.description)
        classified = _cac(item, "ClassifiedTaxCategory")
        _cbc(classified, "ID", "S")
        _cbc(classified, "Percent", format_amount(prepayment.vat_percent))
        _tax_scheme(classified)

        _amount(_cac(element, "Price"), "PriceAmount", Decimal("0"), currency)
