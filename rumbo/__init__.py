"""
Rumbo statement import

Bank statement ingestion for Colombian personal-finance accounts: CSV bank
parsers, vision OCR for PDFs, duplicate detection, account type suggestions,
balance reconciliation and AI categorization.
"""
__version__ = '1.0.0'
