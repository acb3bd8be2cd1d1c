from .hash import Hash
from .signature import SignatureManager

__all__ = ['Hash', 'SignatureManager']
