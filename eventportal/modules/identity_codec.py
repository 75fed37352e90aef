"""
Identity Codec Module - Event Attendance Portal

Turns a participant id into the token embedded in QR codes and back.

The payload is the id XOR-ed with a repeating static key and base64-encoded,
wrapped as ``<scheme>://attendance/<payload>``. This makes casual tampering
inconvenient; it is not encryption and carries no integrity check.
"""

import base64
import binascii
import logging
import re


class QRCodeError(Exception):
    """Base class for QR token errors."""


class QRFormatError(QRCodeError):
    """The scanned value does not carry the attendance envelope."""


class InvalidToken(QRCodeError):
    """The envelope is present but the payload does not decode to an id."""


IDENTIFIER_PATTERN = re.compile(r'^[0-9a-f]{24,32}$')


class IdentityCodec:
    """Reversible obfuscation of participant ids for QR codes."""

    def __init__(self, secret_key: str, scheme: str = 'eventportal'):
        if not secret_key:
            raise ValueError("QR encryption key must not be empty")

        self.key = secret_key.encode('utf-8')
        self.scheme = scheme
        self.prefix = f"{scheme}://attendance/"
        self._token_pattern = re.compile(rf'^{re.escape(scheme)}://attendance/(.+)$')
        self.logger = logging.getLogger(__name__)

    def _xor(self, data: bytes) -> bytes:
        key_length = len(self.key)
        return bytes(b ^ self.key[i % key_length] for i, b in enumerate(data))

    def encode(self, raw_id: str) -> str:
        """
        Build the QR token for a participant id.

        Args:
            raw_id (str): Participant id

        Returns:
            str: Token of the form ``<scheme>://attendance/<payload>``
        """
        if not raw_id:
            raise ValueError("Cannot encode an empty identifier")

        payload = base64.b64encode(self._xor(raw_id.encode('utf-8'))).decode('ascii')
        return f"{self.prefix}{payload}"

    def decode(self, token: str) -> str:
        """
        Recover the participant id from a scanned token.

        Args:
            token (str): Scanned QR value

        Returns:
            str: Participant id

        Raises:
            QRFormatError: The value does not start with the attendance prefix
            InvalidToken: The payload is malformed or not an identifier
        """
        match = self._token_pattern.match((token or '').strip())
        if not match:
            raise QRFormatError("Invalid QR code format")

        try:
            raw = base64.b64decode(match.group(1), validate=True)
            decoded = self._xor(raw).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            self.logger.warning(f"QR payload could not be decoded: {str(e)}")
            raise InvalidToken("Invalid QR code") from e

        if not IDENTIFIER_PATTERN.match(decoded):
            raise InvalidToken("Invalid QR code")

        return decoded

    def is_token(self, value: str) -> bool:
        return bool(value) and value.strip().startswith(self.prefix)
