import pytest

from ustva_extractor.routing import Route, dispatch, ingest_document, is_image, is_pdf, is_xml, route_text


def test_sniff_by_mime_and_filename():
    assert is_pdf("beleg.PDF", "application/octet-stream")
    assert is_pdf("upload", "application/pdf")
    assert is_xml("rechnung.xml", "")
    assert is_xml("upload", "application/xml")
    assert is_image("scan", "image/jpeg")
    assert is_image("scan.TIFF", "")
    assert not is_xml("scan.png", "image/png")


def test_dispatch_cii_xml(make_cii):
    result = dispatch("rechnung.xml", "application/xml", make_cii().encode("utf-8"))
    assert result.route is Route.XML_CII
    assert result.normalized.gross == 105.91
    assert "CrossIndustryInvoice" in result.raw_text
    assert result.hint is None


def test_dispatch_ubl_xml_with_bom(make_ubl):
    data = b"\xef\xbb\xbf" + make_ubl().encode("utf-8")
    result = dispatch("xrechnung.xml", "text/xml", data)
    assert result.route is Route.XML_UBL
    assert result.normalized.supplier == "Beispiel AG"


def test_dispatch_cii_without_root_needs_ocr():
    xml = b"<Wrapper><rsm:CrossIndustryInvoice xmlns:rsm='urn:x'/></Wrapper>"
    result = dispatch("kaputt.xml", "application/xml", xml)
    assert result.route is Route.NEEDS_OCR
    assert result.normalized is None
    assert result.hint


@pytest.mark.parametrize(
    "data",
    [b"<Order><ID>1</ID></Order>", b"<Invoice><oops></Invoice>", b"\xff\xfe\x00kein utf-8", b""],
)
def test_dispatch_unusable_xml_needs_ocr(data):
    assert dispatch("x.xml", "application/xml", data).route is Route.NEEDS_OCR


def test_dispatch_pdf_with_cii_attachment(make_pdf, make_cii):
    pdf = make_pdf(("factur-x.xml", make_cii().encode("utf-8"), "text/xml"))
    result = dispatch("rechnung.pdf", "application/pdf", pdf)
    assert result.route is Route.PDF_ZUGFERD_CII
    assert result.attachment == "factur-x.xml"
    assert result.normalized.net == 89.0


def test_dispatch_pdf_with_ubl_attachment(make_pdf, make_ubl):
    pdf = make_pdf(("invoice.xml", make_ubl().encode("utf-8"), "application/xml"))
    result = dispatch("rechnung.pdf", "application/pdf", pdf)
    assert result.route is Route.PDF_ZUGFERD_UBL
    assert result.normalized.format == "ubl"


def test_dispatch_pdf_without_attachment(make_pdf):
    result = dispatch("scan.pdf", "application/pdf", make_pdf())
    assert result.route is Route.PDF_NO_XML
    assert result.normalized is None
    assert result.hint


def test_dispatch_pdf_with_unknown_xml_attachment(make_pdf):
    pdf = make_pdf(("metadata.xml", b"<Order/>", "text/xml"))
    result = dispatch("scan.pdf", "application/pdf", pdf)
    assert result.route is Route.PDF_NO_XML
    assert result.attachment == "metadata.xml"


def test_dispatch_malformed_pdf():
    assert dispatch("kaputt.pdf", "application/pdf", b"not a pdf").route is Route.PDF_NO_XML


def test_dispatch_image_needs_ocr():
    result = dispatch("foto.jpg", "image/jpeg", b"\xff\xd8\xff")
    assert result.route is Route.NEEDS_OCR


def test_dispatch_is_deterministic(make_cii):
    data = make_cii().encode("utf-8")
    assert dispatch("a.xml", "text/xml", data) == dispatch("a.xml", "text/xml", data)


def test_ingest_document_local_ocr_for_images():
    calls = []

    def recognizer(data, pdf=False):
        calls.append(pdf)
        return "Muster GmbH\nGesamt 119,00 €\nUSt 19,00 €"

    result = ingest_document("foto.jpg", "image/jpeg", b"...", recognizer=recognizer)
    assert calls == [False]
    assert result.route is Route.OCR_LOCAL
    assert result.normalized.format == "ocr"
    assert result.normalized.net == 100.0
    assert result.hint is None


def test_ingest_document_local_ocr_for_pdf_without_xml(make_pdf):
    result = ingest_document("scan.pdf", "application/pdf", make_pdf(), recognizer=lambda data, pdf=False: "Netto 10,00")
    assert result.route is Route.OCR_LOCAL
    assert result.normalized.net == 10.0


def test_ingest_document_keeps_route_without_ocr_text():
    result = ingest_document("foto.png", "image/png", b"...", recognizer=lambda data, pdf=False: "  ")
    assert result.route is Route.NEEDS_OCR


def test_ingest_document_skips_ocr_for_xml_and_unknown(make_cii):
    def recognizer(data, pdf=False):
        raise AssertionError("OCR darf nicht laufen")

    assert ingest_document("r.xml", "text/xml", make_cii().encode(), recognizer=recognizer).route is Route.XML_CII
    assert ingest_document("a.docx", "application/msword", b"x", recognizer=recognizer).route is Route.NEEDS_OCR


def test_route_text_is_labelled_separately():
    result = route_text("Gesamt 119,00 €\nUSt 19,00 €")
    assert result.route is Route.OCR_TEXT
    assert result.normalized.net == 100.0


def test_dispatch_empty_ubl_root_is_ubl():
    result = dispatch("x.xml", "application/xml", b'<Invoice xmlns="urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"/>')
    assert result.route is Route.XML_UBL
    assert result.normalized.format == "ubl"
    assert result.normalized.gross is None
