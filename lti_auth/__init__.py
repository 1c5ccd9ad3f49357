"""
Authentication, signing and claims translation for LTI 1.1, 2.0 and 1.3.
"""
__version__ = '1.0.0'
