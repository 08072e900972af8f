"""Minimal ASN.1 DER encoder used to build certificate structures."""
