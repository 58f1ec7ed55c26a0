from .ocr import StatementOCRAdapter, estimate_ocr_cost

__all__ = ['StatementOCRAdapter', 'estimate_ocr_cost']
