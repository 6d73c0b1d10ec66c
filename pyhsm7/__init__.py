"""
pyhsm7: detached CMS (PKCS#7) signatures produced by a remote signing
oracle, and their verification.
"""

__version__ = '0.1.0'
