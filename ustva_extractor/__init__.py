"""UStVA Beleg-Extractor: E-Rechnungen erkennen und normalisieren."""

__version__ = "0.3.0"
