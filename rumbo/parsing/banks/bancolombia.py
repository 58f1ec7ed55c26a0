import re

from ..base import BaseBankParser


class BancolombiaParser(BaseBankParser):
    """
    Bancolombia CSV exports.

    Two header shapes are in circulation:
        Fecha,Descripción,Valor                              (signed single amount)
        Fecha,Referencia,Descripcion,Retiros,Consignaciones  (split debit/credit)
    """
    bank_name = 'Bancolombia'
    confidence = 0.9
    signatures = ('BANCOLOMBIA',)
    header_patterns = (
        re.compile(r"Fecha,Descripci[oó]n,Valor", re.IGNORECASE),
        re.compile(r"Fecha,Referencia,Descripcion,Retiros,Consignaciones", re.IGNORECASE),
    )
