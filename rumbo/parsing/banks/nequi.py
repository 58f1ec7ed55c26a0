import re

from rumbo.common.models import AccountType
from ..base import BaseBankParser


class NequiParser(BaseBankParser):
    """
    Nequi (digital wallet) CSV exports: Fecha,Concepto,Monto with a single
    signed amount. Dates come as ISO or DD/MM/YYYY. Nequi only offers
    savings deposits, so the account type is fixed.
    """
    bank_name = 'Nequi'
    confidence = 0.85
    signatures = ('NEQUI', 'nequi.com.co')
    header_patterns = (
        re.compile(r"Fecha,Concepto,Monto", re.IGNORECASE),
    )
    date_formats = ('%Y-%m-%d', '%d/%m/%Y')
    default_columns = {'date': 0, 'description': 1, 'amount': 2}

    def detect_account_type(self, info_rows) -> AccountType:
        return AccountType.SAVINGS
