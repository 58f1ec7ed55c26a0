"""
Bank Parser Registry

Keeps an ordered list of bank parsers and picks the one that owns a CSV export.

Detection runs in two passes so that a literal bank name always beats a
generic header shape:
    1. every parser's signatures, in registration order
    2. every parser's header patterns, in registration order
"""
from typing import List, Optional

from rumbo.common.exceptions import FormatNotRecognizedError
from rumbo.common.logging_config import get_logger
from rumbo.common.models import ParseResult
from .banks import default_parsers
from .base import BaseBankParser

logger = get_logger(__name__)

SAMPLE_LENGTH = 200


class BankParserRegistry:
    """
    Registry for bank CSV parsers.
    """

    def __init__(self, parsers: Optional[List[BaseBankParser]] = None):
        self.parsers: List[BaseBankParser] = list(parsers) if parsers is not None else default_parsers()

    def register(self, parser: BaseBankParser, position: Optional[int] = None) -> None:
        """Adds a parser at the end of the detection order, or at `position`."""
        if position is None:
            self.parsers.append(parser)
        else:
            self.parsers.insert(position, parser)

    def detect(self, raw_text: str) -> Optional[BaseBankParser]:
        """
        Find the parser for the given CSV text.

        Returns:
            First matching parser, or None if no parser recognizes the text
        """
        for parser in self.parsers:
            if parser.matches_signature(raw_text):
                logger.debug(f"Detected bank by signature: {parser.bank_name}")
                return parser

        for parser in self.parsers:
            if parser.matches_header(raw_text):
                logger.debug(f"Detected bank by header: {parser.bank_name}")
                return parser

        return None

    def parse(self, raw_text: str, filename: Optional[str] = None) -> ParseResult:
        parser = self.detect(raw_text)
        if parser is None:
            logger.warning("No parser recognized the statement.", filename=filename)
            raise FormatNotRecognizedError(
                "Formato de extracto no reconocido. Bancos soportados: "
                + ", ".join(self.list_parsers()),
                filename=filename,
                sample_text=raw_text[:SAMPLE_LENGTH],
            )
        return parser.parse(raw_text)

    def list_parsers(self) -> List[str]:
        return [p.bank_name for p in self.parsers]
