import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from ..certinfo import CertificateInfo

__all__ = [
    'OverallStatus', 'VerificationResult', 'classify', 'document_status',
]


@enum.unique
class OverallStatus(enum.Enum):
    """
    Verdict on a signature, or on all signatures in a document.
    """

    VALID = 'valid'
    INVALID = 'invalid'
    TAMPERED = 'tampered'
    SELF_SIGNED = 'self-signed'
    EXPIRED = 'expired'
    UNTRUSTED = 'untrusted'
    NONE = 'none'
    """
    There are no signatures to judge.
    """

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    OverallStatus.NONE: -1,
    OverallStatus.VALID: 0,
    OverallStatus.EXPIRED: 1,
    OverallStatus.SELF_SIGNED: 1,
    OverallStatus.UNTRUSTED: 1,
    OverallStatus.INVALID: 2,
    OverallStatus.TAMPERED: 2,
}


@dataclass
class VerificationResult:
    """
    Outcome of the verification of a single signature.
    """

    field_name: str
    """
    Name of the signature field.
    """

    signer_name: str = 'Unknown'
    """
    Common name of the signer, as listed in the signer's certificate.
    """

    signer_email: Optional[str] = None
    signing_time: Optional[datetime] = None
    """
    Signing time as reported by the signer. This value is not
    authenticated by any third party.
    """

    reason: Optional[str] = None
    location: Optional[str] = None
    contact_info: Optional[str] = None

    certificates: List[CertificateInfo] = field(default_factory=list)
    """
    The certificates embedded in the signature, the signer's certificate
    first.
    """

    integrity_valid: bool = False
    """
    Indicates whether the signed bytes are unchanged and the signature value
    verifies against the signer's public key.
    """

    cert_trust_valid: bool = False
    """
    Local approximation of trust: the signer's certificate is neither
    expired nor self-signed. No path to a trust anchor was validated.
    """

    is_expired: bool = False
    is_self_signed: bool = False
    digest_algorithm: Optional[str] = None
    signature_mechanism: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def status(self) -> 'OverallStatus':
        return classify(self)

    def summary(self, delimiter=':'):
        """
        Provide a textual but machine-parsable summary of the verdict.
        """
        fingerprint = (
            self.certificates[0].fingerprint if self.certificates else 'NONE'
        )
        return delimiter.join(
            (self.field_name, fingerprint, self.status.value.upper())
        )

    def pretty_print_sections(self):
        about_signer = (
            f"Signer: \"{self.signer_name}\"\n"
            f"Signer e-mail: {self.signer_email or 'not available'}"
        )
        if self.certificates:
            leaf = self.certificates[0]
            about_signer += (
                f"\nCertificate subject: \"{leaf.subject_display}\"\n"
                f"Certificate issuer: \"{leaf.issuer_display}\"\n"
                f"Certificate SHA256 fingerprint: {leaf.fingerprint}\n"
                f"Certificate valid until: {leaf.valid_to.isoformat()}"
            )
        validity_info = (
            "The signature is cryptographically "
            f"{'' if self.integrity_valid else 'un'}sound.\n\n"
            f"The digest algorithm used was '{self.digest_algorithm}'.\n"
            f"The signature mechanism used was "
            f"'{self.signature_mechanism}'."
        )
        sections = [
            ("Signer info", about_signer),
            ("Integrity", validity_info),
        ]
        metadata = []
        if self.signing_time is not None:
            metadata.append(
                "Signing time as reported by signer: "
                f"{self.signing_time.isoformat()}"
            )
        for label, value in (("Reason", self.reason),
                             ("Location", self.location),
                             ("Contact info", self.contact_info)):
            if value:
                metadata.append(f"{label}: {value}")
        if metadata:
            sections.append(("Signature metadata", '\n'.join(metadata)))
        if self.errors:
            sections.append(("Errors", '\n'.join(self.errors)))
        if self.warnings:
            sections.append(("Warnings", '\n'.join(self.warnings)))
        return sections

    def pretty_print_details(self):
        def fmt_section(hdr, body):
            return '\n'.join(
                (hdr, '-' * len(hdr), body, '\n')
            )
        sections = self.pretty_print_sections()
        sections.append(
            ("Bottom line", f"The signature is judged {self.status.value}.")
        )
        return '\n'.join(
            fmt_section(hdr, body) for hdr, body in sections
        )

    def as_dict(self):
        return {
            'fieldName': self.field_name,
            'signerName': self.signer_name,
            'signerEmail': self.signer_email,
            'signingTime': self.signing_time,
            'reason': self.reason,
            'location': self.location,
            'contactInfo': self.contact_info,
            'certificates': [c.as_dict() for c in self.certificates],
            'integrityValid': self.integrity_valid,
            'certTrustValid': self.cert_trust_valid,
            'isExpired': self.is_expired,
            'isSelfSigned': self.is_self_signed,
            'digestAlgorithm': self.digest_algorithm,
            'signatureMechanism': self.signature_mechanism,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
        }


def classify(result: VerificationResult) -> OverallStatus:
    """
    Reduce a verification result to a single verdict.

    The checks are applied in order of precedence, and the first one that
    applies determines the verdict: errors, expiry, self-signed
    certificates, integrity, trust.
    """
    if result.errors:
        return OverallStatus.INVALID
    elif result.is_expired:
        return OverallStatus.EXPIRED
    elif result.is_self_signed:
        return OverallStatus.SELF_SIGNED
    elif not result.integrity_valid:
        return OverallStatus.TAMPERED
    elif not result.cert_trust_valid:
        return OverallStatus.UNTRUSTED
    return OverallStatus.VALID


def document_status(results: Sequence[VerificationResult]) -> OverallStatus:
    """
    Determine the verdict for a document as a whole: the most severe verdict
    on any of its signatures. Among verdicts of equal severity, the one for
    the signature appearing first in the document wins.

    Documents without signatures get :attr:`OverallStatus.NONE`.
    """
    worst = OverallStatus.NONE
    for result in results:
        status = classify(result)
        if status.severity > worst.severity:
            worst = status
    return worst
