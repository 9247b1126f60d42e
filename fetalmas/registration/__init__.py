"""
Registration of atlases to subjects and propagation of their labels.
"""

from fetalmas.registration.propagation import RegistrationScheduler, TransformApplier

__all__ = [
    'RegistrationScheduler',
    'TransformApplier',
]
