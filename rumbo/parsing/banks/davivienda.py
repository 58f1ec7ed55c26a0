from ..base import BaseBankParser


class DaviviendaParser(BaseBankParser):
    """Davivienda CSV exports. Recognized only by name or domain."""
    bank_name = 'Davivienda'
    confidence = 0.8
    signatures = ('DAVIVIENDA', 'davivienda.com')
