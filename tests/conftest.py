import io

import pikepdf
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from ustva_extractor.api import create_app
from ustva_extractor.store import NullStore, SqlStore

CII_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<rsm:CrossIndustryInvoice
    xmlns:rsm="urn:un:unece:uncefact:data:standard:CrossIndustryInvoice:100"
    xmlns:ram="urn:un:unece:uncefact:data:standard:ReusableAggregateBusinessInformationEntity:100"
    xmlns:udt="urn:un:unece:uncefact:data:standard:UnqualifiedDataType:100">
  <rsm:ExchangedDocument>
    <ram:ID>RE-2024-0042</ram:ID>
    <ram:TypeCode>380</ram:TypeCode>
    <ram:IssueDateTime>{date}</ram:IssueDateTime>
  </rsm:ExchangedDocument>
  <rsm:SupplyChainTradeTransaction>
    <ram:ApplicableHeaderTradeAgreement>
      <ram:SellerTradeParty>
        <ram:Name>Muster GmbH</ram:Name>
      </ram:SellerTradeParty>
    </ram:ApplicableHeaderTradeAgreement>
    <ram:ApplicableHeaderTradeSettlement>
      <ram:InvoiceCurrencyCode>EUR</ram:InvoiceCurrencyCode>
      <ram:SpecifiedTradeSettlementHeaderMonetarySummation>
        {sums}
      </ram:SpecifiedTradeSettlementHeaderMonetarySummation>
    </ram:ApplicableHeaderTradeSettlement>
  </rsm:SupplyChainTradeTransaction>
</rsm:CrossIndustryInvoice>
"""

CII_DATE = '<udt:DateTimeString format="102">20240314</udt:DateTimeString>'

CII_SUMS = """
        <ram:LineTotalAmount>89.00</ram:LineTotalAmount>
        <ram:TaxBasisTotalAmount currencyID="EUR">89.00</ram:TaxBasisTotalAmount>
        <ram:TaxTotalAmount currencyID="EUR">16.91</ram:TaxTotalAmount>
        <ram:GrandTotalAmount currencyID="EUR">105.91</ram:GrandTotalAmount>
        <ram:DuePayableAmount>105.91</ram:DuePayableAmount>
"""

UBL_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<Invoice xmlns="urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
    xmlns:cac="urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
    xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2">
  <cbc:CustomizationID>urn:cen.eu:en16931:2017#compliant#urn:xoev-de:kosit:standard:xrechnung_2.3</cbc:CustomizationID>
  <cbc:ID>R-1001</cbc:ID>
  <cbc:IssueDate>2024-03-14</cbc:IssueDate>
  <cbc:DocumentCurrencyCode>EUR</cbc:DocumentCurrencyCode>
  <cac:AccountingSupplierParty>
    <cac:Party>
      {party}
    </cac:Party>
  </cac:AccountingSupplierParty>
  <cac:TaxTotal>
    <cbc:TaxAmount currencyID="EUR">16.91</cbc:TaxAmount>
  </cac:TaxTotal>
  <cac:LegalMonetaryTotal>
    {totals}
  </cac:LegalMonetaryTotal>
</Invoice>
"""

UBL_PARTY = "<cac:PartyName><cbc:Name>Beispiel AG</cbc:Name></cac:PartyName>"

UBL_TOTALS = """
    <cbc:LineExtensionAmount currencyID="EUR">89.00</cbc:LineExtensionAmount>
    <cbc:TaxExclusiveAmount currencyID="EUR">89.00</cbc:TaxExclusiveAmount>
    <cbc:PayableAmount currencyID="EUR">105.91</cbc:PayableAmount>
"""


@pytest.fixture
def make_cii():
    def _make(sums: str = CII_SUMS, date: str = CII_DATE) -> str:
        return CII_TEMPLATE.format(sums=sums, date=date)

    return _make


@pytest.fixture
def make_ubl():
    def _make(totals: str = UBL_TOTALS, party: str = UBL_PARTY) -> str:
        return UBL_TEMPLATE.format(totals=totals, party=party)

    return _make


@pytest.fixture
def make_pdf():
    """PDF mit einer leeren Seite und optionalen Anhängen (name, bytes, mime)."""

    def _make(*attachments) -> bytes:
        pdf = pikepdf.new()
        pdf.add_blank_page()
        for name, data, mime in attachments:
            pdf.attachments[name] = pikepdf.AttachedFileSpec(pdf, data, filename=name, mime_type=mime)
        buf = io.BytesIO()
        pdf.save(buf)
        return buf.getvalue()

    return _make


@pytest.fixture
def sql_store():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    store = SqlStore(engine=engine)
    store.init_schema()
    yield store
    engine.dispose()


@pytest.fixture
def client():
    return TestClient(create_app(config={}, store=NullStore()))


@pytest.fixture
def db_client(sql_store):
    return TestClient(create_app(config={}, store=sql_store))
