"""
Unsigned XML payload for invoices and credit notes.

Amounts are written as decimal strings with two places; the signing
service and gateway treat the document as opaque text.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import date


def _money(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"


def _rate(bps: int) -> str:
    return f"{bps // 100}.{bps % 100:02d}"


def _text(parent, tag: str, value) -> ET.Element:
    el = ET.SubElement(parent, tag)
    el.text = "" if value is None else str(value)
    return el


def _header(root, ctx, access_key: str, legal_number: str, issue_date: date, document_code: str) -> None:
    info = ET.SubElement(root, "issuer")
    _text(info, "environment", ctx.environment)
    _text(info, "taxId", ctx.business_tax_id)
    _text(info, "legalName", ctx.legal_name)
    _text(info, "tradeName", ctx.trade_name or ctx.legal_name)
    _text(info, "address", ctx.address)
    _text(info, "accessKey", access_key)
    _text(info, "documentCode", document_code)
    _text(info, "legalNumber", legal_number)
    _text(info, "issueDate", issue_date.strftime("%d/%m/%Y"))


def _buyer(root, customer) -> None:
    buyer = ET.SubElement(root, "buyer")
    _text(buyer, "idType", customer.id_type if customer else None)
    _text(buyer, "idNumber", customer.id_number if customer else None)
    _text(buyer, "name", customer.name if customer else None)
    _text(buyer, "email", customer.email if customer else None)


def _lines(root, lines) -> None:
    details = ET.SubElement(root, "lines")
    for line in lines:
        item = ET.SubElement(details, "line")
        _text(item, "productId", line.product_id)
        _text(item, "description", line.product.name if line.product else "")
        _text(item, "quantity", line.quantity)
        _text(item, "unitPrice", _money(line.unit_price_cents))
        _text(item, "discount", _money(line.discount_cents))
        _text(item, "taxRate", _rate(line.tax_rate_bps))
        _text(item, "subtotal", _money(line.subtotal_cents))
        _text(item, "tax", _money(line.tax_cents))


def _totals(root, doc) -> None:
    totals = ET.SubElement(root, "totals")
    _text(totals, "subtotalZeroRated", _money(doc.subtotal_untaxed_cents))
    _text(totals, "subtotalTaxed", _money(doc.subtotal_taxed_cents))
    _text(totals, "tax", _money(doc.tax_cents))
    _text(totals, "total", _money(doc.total_cents))


def build_invoice_payload(sale, ctx, *, access_key: str, legal_number: str, issue_date: date, document_code: str) -> str:
    root = ET.Element("invoice", {"id": "document", "version": "1.1.0"})
    _header(root, ctx, access_key, legal_number, issue_date, document_code)
    _buyer(root, sale.customer)
    _lines(root, sale.lines)
    _totals(root, sale)
    payment = ET.SubElement(root, "payment")
    _text(payment, "method", sale.payment_method)
    _text(payment, "amount", _money(sale.total_cents))
    return ET.tostring(root, encoding="unicode")


def build_credit_note_payload(credit_note, ctx, *, access_key: str, legal_number: str, issue_date: date, document_code: str) -> str:
    root = ET.Element("creditNote", {"id": "document", "version": "1.1.0"})
    _header(root, ctx, access_key, legal_number, issue_date, document_code)
    _buyer(root, credit_note.sale.customer if credit_note.sale else None)
    source = ET.SubElement(root, "modifiedDocument")
    _text(source, "documentCode", "01")
    _text(source, "legalNumber", credit_note.sale.legal_number)
    _text(source, "issueDate", credit_note.sale.created_at.strftime("%d/%m/%Y") if credit_note.sale.created_at else "")
    _text(source, "reason", credit_note.reason)
    _lines(root, credit_note.lines)
    _totals(root, credit_note)
    return ET.tostring(root, encoding="unicode")
