"""
Run reporting: PVC validation summary and failed jobs.
"""

from fetalmas.reporting.summary import Reporter

__all__ = ['Reporter']
