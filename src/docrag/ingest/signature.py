"""Magic-byte sniffing and declared content type validation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

LOGGER = logging.getLogger(__name__)

MIN_SIGNATURE_BYTES = 8
MIN_PDF_BYTES = 10
PDF_ENCRYPT_SCAN_HEAD = 4096
PDF_EOF_SCAN_TAIL = 1024

OFFICE_ZIP_TYPES = frozenset({"docx", "xlsx", "pptx"})


@dataclass(frozen=True, slots=True)
class FileSignature:
    name: str
    label: str
    prefixes: Tuple[bytes, ...]
    offset: int = 0

    def matches(self, head: bytes) -> bool:
        window = head[self.offset :]
        return any(window.startswith(prefix) for prefix in self.prefixes)


# Order matters: the first match wins.
SIGNATURES: Tuple[FileSignature, ...] = (
    FileSignature("pdf", "PDF Document", (b"%PDF",)),
    FileSignature("png", "PNG Image", (b"\x89PNG\r\n\x1a\n",)),
    FileSignature(
        "jpeg",
        "JPEG Image",
        (b"\xff\xd8\xff\xe0", b"\xff\xd8\xff\xe1", b"\xff\xd8\xff\xe2", b"\xff\xd8\xff\xdb"),
    ),
    FileSignature("gif", "GIF Image", (b"GIF87a", b"GIF89a")),
    FileSignature("zip", "ZIP Archive", (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")),
    FileSignature("ole2", "Legacy Office Document", (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1",)),
)

MIME_TO_SIGNATURE: Dict[str, str] = {
    "application/pdf": "pdf",
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/gif": "gif",
    "application/zip": "zip",
    "application/x-zip-compressed": "zip",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "application/msword": "ole2",
    "application/vnd.ms-excel": "ole2",
    "application/vnd.ms-powerpoint": "ole2",
}

_LABELS = {signature.name: signature.label for signature in SIGNATURES}
_LABELS.update(
    {
        "docx": "Word Document",
        "xlsx": "Excel Spreadsheet",
        "pptx": "PowerPoint Presentation",
    }
)


@dataclass(slots=True)
class SignatureResult:
    is_valid: bool
    detected_type: Optional[str]
    declared_type: Optional[str]
    validatable: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "detectedType": self.detected_type,
            "declaredType": self.declared_type,
            "validatable": self.validatable,
            "message": self.message,
        }


@dataclass(slots=True)
class PdfValidation:
    is_valid: bool
    encrypted: bool
    message: str
    version: Optional[str] = None
    has_header: bool = True
    has_eof: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "version": self.version,
            "encrypted": self.encrypted,
            "message": self.message,
        }


def normalize_content_type(content_type: Optional[str]) -> Optional[str]:
    """Lower-case a MIME type and drop parameters such as ``; charset=utf-8``."""

    if not content_type:
        return None
    base = content_type.split(";", 1)[0].strip().lower()
    return base or None


def detect_signature(data: bytes) -> Optional[str]:
    """Return the name of the first signature matching ``data``'s leading bytes."""

    if len(data) < MIN_SIGNATURE_BYTES:
        return None
    head = bytes(data[:16])
    for signature in SIGNATURES:
        if signature.matches(head):
            return signature.name
    return None


def describe_type(type_name: Optional[str]) -> str:
    if not type_name:
        return "unknown"
    return _LABELS.get(type_name, type_name.upper())


def validate_signature(data: bytes, declared_type: Optional[str]) -> SignatureResult:
    """Check that ``data`` is what the caller claims it is.

    Declared types without a known signature are not validatable and pass.
    A declared OOXML type (docx/xlsx/pptx) detected as a plain ZIP archive is
    accepted because that is how those containers start.
    """

    declared = normalize_content_type(declared_type)
    detected = detect_signature(data)
    expected = MIME_TO_SIGNATURE.get(declared) if declared else None

    if expected is None:
        return SignatureResult(
            is_valid=True,
            detected_type=detected,
            declared_type=declared,
            validatable=False,
            message="No signature validation available for this content type",
        )

    if detected is None:
        return SignatureResult(
            is_valid=False,
            detected_type=None,
            declared_type=declared,
            validatable=True,
            message=(
                f"Could not detect file signature. The file may be corrupted "
                f"or is not a valid {describe_type(expected)}."
            ),
        )

    if detected == expected or (expected in OFFICE_ZIP_TYPES and detected == "zip"):
        return SignatureResult(
            is_valid=True,
            detected_type=detected,
            declared_type=declared,
            validatable=True,
            message="File signature matches declared type",
        )

    LOGGER.info("Signature mismatch: declared %s, detected %s", declared, detected)
    return SignatureResult(
        is_valid=False,
        detected_type=detected,
        declared_type=declared,
        validatable=True,
        message=(
            f"File content does not match declared type. Expected "
            f"{describe_type(expected)} but found {describe_type(detected)}."
        ),
    )


def validate_pdf(data: bytes) -> PdfValidation:
    """Cheap structural checks run before handing bytes to a PDF parser."""

    if len(data) < MIN_PDF_BYTES:
        return PdfValidation(
            is_valid=False,
            encrypted=False,
            has_header=False,
            message="File too small to be a valid PDF",
        )

    header = bytes(data[:8]).decode("latin-1")
    if not header.startswith("%PDF-"):
        return PdfValidation(
            is_valid=False,
            encrypted=False,
            has_header=False,
            message="Invalid PDF header - file does not start with %PDF-",
        )

    version = header[5:8]
    head = bytes(data[:PDF_ENCRYPT_SCAN_HEAD])
    tail = bytes(data[-PDF_EOF_SCAN_TAIL:])
    encrypted = b"/Encrypt" in head or b"/Encrypt" in tail
    has_eof = b"%%EOF" in tail

    if not has_eof:
        return PdfValidation(
            is_valid=False,
            encrypted=encrypted,
            version=version,
            has_eof=False,
            message="PDF appears to be corrupted - missing EOF marker",
        )

    return PdfValidation(
        is_valid=True,
        encrypted=encrypted,
        version=version,
        has_eof=True,
        message="Encrypted PDF detected" if encrypted else "Valid PDF",
    )


__all__ = [
    "FileSignature",
    "MIME_TO_SIGNATURE",
    "PdfValidation",
    "SIGNATURES",
    "SignatureResult",
    "describe_type",
    "detect_signature",
    "normalize_content_type",
    "validate_pdf",
    "validate_signature",
]
