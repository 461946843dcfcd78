"""Credential material generated with PyNaCl (libsodium)"""

import secrets
from dataclasses import dataclass, field
from typing import Any, Optional

from nacl.public import PrivateKey
from nacl.encoding import Base64Encoder


@dataclass
class KeyPair:
    """Curve25519 keypair"""
    public: bytes  # 32 bytes
    private: bytes  # 32 bytes

    def to_dict(self) -> dict:
        return {
            'public': Base64Encoder.encode(self.public).decode('ascii'),
            'private': Base64Encoder.encode(self.private).decode('ascii'),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'KeyPair':
        return cls(
            public=Base64Encoder.decode(data['public'].encode('ascii')),
            private=Base64Encoder.decode(data['private'].encode('ascii')),
        )


@dataclass
class Credentials:
    """Authentication material for one linked device.

    Only the Credential Store and the protocol adapter look inside; the rest
    of the client treats it as opaque.
    """
    noise_key: KeyPair
    identity_key: KeyPair
    registration_id: int
    registered: bool = False
    me: Optional[dict] = None  # {'id': ..., 'name': ...} once paired
    extra: dict[str, Any] = field(default_factory=dict)  # fields pushed by the server

    def update(self, changes: dict):
        """Apply a creds.update partial"""
        for name, value in changes.items():
            if name == 'registered':
                self.registered = bool(value)
            elif name == 'me':
                self.me = value
            elif name in ('noise_key', 'identity_key', 'registration_id'):
                # Key material is generated locally and never replaced remotely
                continue
            else:
                self.extra[name] = value

    def to_dict(self) -> dict:
        return {
            'noiseKey': self.noise_key.to_dict(),
            'identityKey': self.identity_key.to_dict(),
            'registrationId': self.registration_id,
            'registered': self.registered,
            'me': self.me,
            'extra': self.extra,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Credentials':
        return cls(
            noise_key=KeyPair.from_dict(data['noiseKey']),
            identity_key=KeyPair.from_dict(data['identityKey']),
            registration_id=data['registrationId'],
            registered=data.get('registered', False),
            me=data.get('me'),
            extra=data.get('extra') or {},
        )

    def public_dict(self) -> dict:
        """Fields safe to present to the server at connect time"""
        return {
            'noiseKey': Base64Encoder.encode(self.noise_key.public).decode('ascii'),
            'identityKey': Base64Encoder.encode(self.identity_key.public).decode('ascii'),
            'registrationId': self.registration_id,
            'registered': self.registered,
            'me': self.me,
        }


def generate_key_pair() -> KeyPair:
    private_key = PrivateKey.generate()
    return KeyPair(public=bytes(private_key.public_key), private=bytes(private_key))


def generate_registration_id() -> int:
    """Random 14-bit registration id"""
    return secrets.randbelow(16383) + 1


def create_credentials() -> Credentials:
    """Generate fresh, unpaired credentials"""
    return Credentials(
        noise_key=generate_key_pair(),
        identity_key=generate_key_pair(),
        registration_id=generate_registration_id(),
    )
