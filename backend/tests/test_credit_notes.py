"""
Credit note tests.

Verifies:
- Only authorized invoices can be credited, once
- 0 < quantity <= quantity sold, reason required
- Proportional discount and per-line tax
- Credit notes go through the same authorization as invoices
"""

import pytest

from fiscalpos import fiscal_state as fs
from fiscalpos.models import CreditNote, SaleLine
from fiscalpos.services import credit_note_service, emission_service, quota_service, register_service
from fiscalpos.services.authority_client import AUTHORITY_REJECTED, AuthorityResponse
from fiscalpos.services.credit_note_service import CreditNoteError, DuplicateCreditNoteError


@pytest.fixture
def authorized_invoice(invoice):
    emission_service.emit_invoice(invoice.id)
    return invoice


def _lines(sale):
    coffee, bread = sorted(sale.lines, key=lambda line: line.tax_rate_bps, reverse=True)
    return coffee, bread


@pytest.mark.parametrize(
    "quantity,expected",
    [(1, 33), (2, 67), (3, 100)],
)
def test_proportional_discount_rounds_half_up(quantity, expected):
    line = SaleLine(quantity=3, discount_cents=100)
    assert credit_note_service.proportional_discount(line, quantity) == expected


class TestBuild:
    def test_partial_credit(self, authorized_invoice, operator):
        coffee, _ = _lines(authorized_invoice)
        note = credit_note_service.create_credit_note(
            operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": 1}], "Damaged bag"
        )
        assert note.fiscal_status == fs.UNSUBMITTED
        assert note.document_number == "NC-000000001"
        assert note.subtotal_taxed_cents == 1000
        assert note.subtotal_untaxed_cents == 0
        assert note.tax_cents == 150
        assert note.total_cents == 1150
        assert note.customer_id == authorized_invoice.customer_id

    def test_full_credit_matches_invoice(self, authorized_invoice, operator):
        items = [{"sale_line_id": line.id, "quantity": line.quantity} for line in authorized_invoice.lines]
        note = credit_note_service.create_credit_note(operator.id, authorized_invoice.id, items, "Order cancelled")
        assert note.total_cents == authorized_invoice.total_cents
        assert note.subtotal_untaxed_cents == authorized_invoice.subtotal_untaxed_cents
        assert note.tax_cents == authorized_invoice.tax_cents

    def test_total_never_exceeds_selected_lines(self, make_sale, customer, fiscal_ready, operator, products):
        sale = make_sale(
            [{"product_id": products["coffee"].id, "quantity": 3, "discount_cents": 100}],
            customer=customer,
            document_kind="INVOICE",
        )
        emission_service.emit_invoice(sale.id)
        line = sale.lines[0]

        note = credit_note_service.create_credit_note(
            operator.id, sale.id, [{"sale_line_id": line.id, "quantity": 2}], "Returned two"
        )
        assert note.subtotal_taxed_cents == 2000 - 67
        assert note.subtotal_taxed_cents <= line.subtotal_cents
        assert note.total_cents <= line.total_cents

    def test_quantity_above_sold_rejected(self, db_session, authorized_invoice, operator):
        coffee, _ = _lines(authorized_invoice)
        with pytest.raises(CreditNoteError) as excinfo:
            credit_note_service.create_credit_note(
                operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": 3}], "Too many"
            )
        assert excinfo.value.details["max_quantity"] == 2
        assert db_session.query(CreditNote).count() == 0

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity_rejected(self, authorized_invoice, operator, quantity):
        coffee, _ = _lines(authorized_invoice)
        with pytest.raises(CreditNoteError):
            credit_note_service.create_credit_note(
                operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": quantity}], "Zero"
            )

    def test_reason_required(self, authorized_invoice, operator):
        coffee, _ = _lines(authorized_invoice)
        with pytest.raises(CreditNoteError):
            credit_note_service.create_credit_note(
                operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": 1}], "   "
            )

    def test_empty_selection_rejected(self, authorized_invoice, operator):
        with pytest.raises(CreditNoteError):
            credit_note_service.create_credit_note(operator.id, authorized_invoice.id, [], "Nothing")

    def test_foreign_line_rejected(self, authorized_invoice, operator):
        with pytest.raises(CreditNoteError):
            credit_note_service.create_credit_note(
                operator.id, authorized_invoice.id, [{"sale_line_id": 9999, "quantity": 1}], "Wrong line"
            )

    def test_unauthorized_invoice_rejected(self, invoice, operator):
        line = invoice.lines[0]
        with pytest.raises(CreditNoteError):
            credit_note_service.create_credit_note(
                operator.id, invoice.id, [{"sale_line_id": line.id, "quantity": 1}], "Not yet"
            )

    def test_receipt_rejected(self, make_sale, operator):
        receipt = make_sale()
        with pytest.raises(CreditNoteError):
            credit_note_service.create_credit_note(
                operator.id, receipt.id, [{"sale_line_id": receipt.lines[0].id, "quantity": 1}], "Receipt"
            )

    def test_second_credit_note_rejected_before_remote_call(self, authorized_invoice, operator, authority):
        coffee, bread = _lines(authorized_invoice)
        credit_note_service.create_credit_note(
            operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": 1}], "First"
        )
        calls_before = authority.calls

        with pytest.raises(DuplicateCreditNoteError):
            credit_note_service.create_credit_note(
                operator.id, authorized_invoice.id, [{"sale_line_id": bread.id, "quantity": 1}], "Second"
            )
        assert authority.calls == calls_before

    @pytest.mark.parametrize("quantity", [1.5, "one"])
    def test_non_whole_quantity_rejected(self, authorized_invoice, operator, quantity):
        coffee, _ = _lines(authorized_invoice)
        with pytest.raises(CreditNoteError):
            credit_note_service.create_credit_note(
                operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": quantity}], "Half a bag"
            )

    def test_not_counted_in_cash_session_until_authorized(self, authorized_invoice, operator):
        coffee, _ = _lines(authorized_invoice)
        note = credit_note_service.create_credit_note(
            operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": 1}], "Refund"
        )
        assert register_service.get_open_session(operator.id).credit_notes_cents == 0

        emission_service.emit_credit_note(note.id)
        assert register_service.get_open_session(operator.id).credit_notes_cents == 1150

        emission_service.emit_credit_note(note.id)
        assert register_service.get_open_session(operator.id).credit_notes_cents == 1150

    def test_eligibility(self, authorized_invoice, invoice, operator):
        assert credit_note_service.check_eligibility(authorized_invoice.id)["eligible"]

        coffee, _ = _lines(authorized_invoice)
        credit_note_service.create_credit_note(
            operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": 1}], "Refund"
        )
        eligibility = credit_note_service.check_eligibility(authorized_invoice.id)
        assert not eligibility["eligible"]
        assert "NC-000000001" in eligibility["reason"]


class TestEmission:
    def test_credit_note_is_authorized(self, authorized_invoice, operator, authority):
        coffee, _ = _lines(authorized_invoice)
        note = credit_note_service.create_credit_note(
            operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": 1}], "Refund"
        )
        used_before = quota_service.get_subscription_state().free_invoices_used

        result = emission_service.emit_credit_note(note.id)

        assert result.success
        assert result.legal_number == "001-001-000000001"
        assert result.access_key[8:10] == "04"
        assert "<creditNote" in authority.submissions[-1]["payload"]
        assert quota_service.get_subscription_state().free_invoices_used == used_before

    def test_credit_note_not_gated_by_quota(self, db_session, authorized_invoice, operator):
        quota_service.get_subscription_state().free_invoices_used = 5
        db_session.commit()
        coffee, _ = _lines(authorized_invoice)
        note = credit_note_service.create_credit_note(
            operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": 1}], "Refund"
        )
        assert emission_service.emit_credit_note(note.id).success

    def test_rejected_credit_note_is_retryable(self, authorized_invoice, operator, authority):
        coffee, _ = _lines(authorized_invoice)
        note = credit_note_service.create_credit_note(
            operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": 1}], "Refund"
        )
        authority.responses.append(AuthorityResponse(AUTHORITY_REJECTED, message="Bad reference"))

        first = emission_service.emit_credit_note(note.id)
        assert first.state == fs.REJECTED

        second = emission_service.emit_credit_note(note.id)
        assert second.success
        assert second.legal_number == first.legal_number

    def test_rejected_credit_note_left_out_of_close(self, authorized_invoice, operator, authority):
        coffee, _ = _lines(authorized_invoice)
        note = credit_note_service.create_credit_note(
            operator.id, authorized_invoice.id, [{"sale_line_id": coffee.id, "quantity": 1}], "Refund"
        )
        authority.responses.append(AuthorityResponse(AUTHORITY_REJECTED, message="Bad reference"))
        emission_service.emit_credit_note(note.id)

        summary = register_service.close_session(operator.id, 10000 + authorized_invoice.total_cents)

        assert summary.credit_notes_cents == 0
        assert summary.session.credit_notes_cents == 0
