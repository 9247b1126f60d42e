"""
fetalmas: multi-atlas segmentation of fetal brain MRI.

Registers gestational-age matched atlases to each subject, fuses their
propagated labels, corrects partial voluming of tissue segmentations and
parcellates the cortical plate.
"""

__version__ = '0.1.0'
