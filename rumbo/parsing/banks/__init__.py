from .bancolombia import BancolombiaParser
from .nequi import NequiParser
from .davivienda import DaviviendaParser

# Detection order: first match wins within each detection pass
PARSERS = [
    BancolombiaParser,
    NequiParser,
    DaviviendaParser,
]


def default_parsers():
    return [parser_cls() for parser_cls in PARSERS]


__all__ = [
    'BancolombiaParser',
    'NequiParser',
    'DaviviendaParser',
    'PARSERS',
    'default_parsers',
]
