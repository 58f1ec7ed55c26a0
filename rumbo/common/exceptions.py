"""
Exceptions raised by the statement-import pipeline.
"""


class StatementImportError(Exception):
    """
    Base class for import failures.

    Carries optional context that is appended to the message:
    - The filename that failed
    - The detected bank (if any)
    - Sample text that was inspected
    """

    def __init__(self, message: str, filename: str = None, bank_name: str = None, sample_text: str = None):
        self.reason = message
        self.filename = filename
        self.bank_name = bank_name
        self.sample_text = sample_text

        details = []
        if filename:
            details.append(f"Archivo: {filename}")
        if bank_name:
            details.append(f"Banco detectado: {bank_name}")
        if sample_text:
            details.append(f"Muestra: {sample_text[:200]}...")

        full_message = f"{message}\n" + "\n".join(details) if details else message
        super().__init__(full_message)


class FormatNotRecognizedError(StatementImportError):
    """No registered parser recognized the statement."""


class EmptyStatementError(StatementImportError):
    """The statement was recognized but yielded zero transactions."""


class UnsupportedFileTypeError(StatementImportError):
    pass


class PDFPasswordError(StatementImportError):
    """The PDF is encrypted and the password is missing or wrong."""


class OracleError(StatementImportError):
    pass


class OracleUnavailableError(OracleError):
    """The oracle call failed (network, quota, credentials, timeout)."""


class OracleMalformedError(OracleError):
    """The oracle answered, but not with the JSON structure that was asked for."""


class CategorizationError(StatementImportError):
    pass


class SuggestionValidationError(ValueError):
    """A single oracle suggestion failed validation and must be dropped."""


class ReconciliationStateError(RuntimeError):
    """An action was attempted in a reconciliation state that does not allow it."""
