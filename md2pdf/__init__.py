"""MD2PDF - multi-engine HTML to PDF generation service."""

__version__ = "0.1.0"
