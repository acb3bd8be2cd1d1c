from .validator import Validator, ValidatorPerformance
from .validator_registry import ValidatorRegistry

__all__ = ['Validator', 'ValidatorPerformance', 'ValidatorRegistry']
