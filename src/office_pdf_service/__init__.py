"""
Office to PDF Conversion Service package.

This module provides a FastAPI application (``office_pdf_service.webapi``)
that converts uploaded office documents to PDF with a headless LibreOffice.
"""

__all__ = ["__version__"]

__version__ = "2.0.0"
