"""
License Oracle — chat front-end for remote agents plus a licence verification pipeline.

Architecture: Photo → OCR → Fingerprint + Adjudication → TON ledger → In-memory record
Philosophy:  OCR may fail. The ledger may be down. The user still gets a straight answer.
"""

__version__ = "1.0.0"
