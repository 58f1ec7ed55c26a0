"""
Statement Parsing Module

- Bank CSV parsers (Bancolombia, Nequi, Davivienda) and their registry
- Vision OCR extractor for PDF statements
- Import pipeline orchestration
"""

# Base classes
from .base import BaseBankParser

# Banks
from .banks import BancolombiaParser, NequiParser, DaviviendaParser

# Registry
from .registry import BankParserRegistry

# Extractors
from .extractors.ocr import StatementOCRAdapter, estimate_ocr_cost

# Pipeline
from .pipeline import ImportOrchestrator, ImportResult, StatementUpload

__all__ = [
    # Base
    'BaseBankParser',
    # Banks
    'BancolombiaParser',
    'NequiParser',
    'DaviviendaParser',
    # Registry
    'BankParserRegistry',
    # Extractors
    'StatementOCRAdapter',
    'estimate_ocr_cost',
    # Pipeline
    'ImportOrchestrator',
    'ImportResult',
    'StatementUpload',
]
