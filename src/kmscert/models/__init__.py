"""Value objects for certificate issuance.

All models are frozen dataclasses.  Use :func:`dataclasses.replace`
for modifications (copy-on-write).
"""

from kmscert.models.certificate import IssuanceRequest, IssuedCertificate
from kmscert.models.identity import DistinguishedName, Validity

__all__ = [
    "DistinguishedName",
    "IssuanceRequest",
    "IssuedCertificate",
    "Validity",
]
