"""
Signature inspection and verification for PDF documents.
"""
