"""Cryptographic helpers: certificates, keys and fingerprints."""

from samlsp.core.crypto.certs import (
    CertificateError,
    CertificateInfo,
    CertificateLoadError,
    KeyLoadError,
    PEMType,
    certificate_body,
    extract_certificate,
    find_signature_element,
    fingerprint,
    generate_private_key,
    generate_signing_certificate,
    get_certificate_info,
    get_certificate_pem,
    get_private_key_pem,
    load_certificate_pem,
    load_private_key_pem,
    normalize_certificate,
    normalize_fingerprint,
    normalize_pem,
    normalize_private_key,
    signature_certificate,
)

__all__ = [
    "CertificateError",
    "CertificateInfo",
    "CertificateLoadError",
    "KeyLoadError",
    "PEMType",
    "certificate_body",
    "extract_certificate",
    "find_signature_element",
    "fingerprint",
    "generate_private_key",
    "generate_signing_certificate",
    "get_certificate_info",
    "get_certificate_pem",
    "get_private_key_pem",
    "load_certificate_pem",
    "load_private_key_pem",
    "normalize_certificate",
    "normalize_fingerprint",
    "normalize_pem",
    "normalize_private_key",
    "signature_certificate",
]
