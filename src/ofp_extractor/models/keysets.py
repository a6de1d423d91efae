"""
Key-set registry for OFP containers.

Provides a single source of truth for:
- The historical key-set candidates embedded in vendor flashing tools
- The "generatekey1" fallback constants
- Lookups by version label

Usage:
    from ofp_extractor.models import list_keysets, get_keyset

    for keyset in list_keysets():
        key = keyset.derive()

Order is significant: the resolver returns the *first* candidate whose
plaintext looks like XML, so rows must never be re-sorted.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..utils.crypto import deobfuscate, key_shuffle, md5_key


@dataclass(frozen=True)
class DerivedKey:
    """AES key/IV pair (16 ASCII hex characters each)."""
    key: bytes
    iv: bytes


@dataclass(frozen=True)
class KeySetCandidate:
    """One row of the key table: version label and three obfuscated constants."""
    version: str
    mc: str
    userkey: str
    ivec: str

    @property
    def mc_bytes(self) -> bytes:
        return bytes.fromhex(self.mc)

    @property
    def userkey_bytes(self) -> bytes:
        return bytes.fromhex(self.userkey)

    @property
    def ivec_bytes(self) -> bytes:
        return bytes.fromhex(self.ivec)

    def derive(self) -> DerivedKey:
        """Deobfuscate against ``mc`` and MD5-truncate into key and IV."""
        mc = self.mc_bytes
        return DerivedKey(
            key=md5_key(deobfuscate(self.userkey_bytes, mc)),
            iv=md5_key(deobfuscate(self.ivec_bytes, mc)),
        )


@dataclass(frozen=True)
class FallbackKeySet:
    """Legacy derivation: shuffle two keys against a third, then MD5-truncate."""
    version: str
    key1: str
    key2: str
    key3: str

    def derive(self) -> DerivedKey:
        hkey = bytes.fromhex(self.key3)
        return DerivedKey(
            key=md5_key(key_shuffle(bytes.fromhex(self.key2), hkey)),
            iv=md5_key(key_shuffle(bytes.fromhex(self.key1), hkey)),
        )


KEYSETS: Tuple[KeySetCandidate, ...] = (
    KeySetCandidate("V1.4.17/1.4.27", "27827963787265EF89D126B69A495A21", "82C50203285A2CE7D8C3E198383CE94C", "422DD5399181E223813CD8ECDF2E4D72"),
    KeySetCandidate("V1.6.17", "E11AA7BB558A436A8375FD15DDD4651F", "77DDF6A0696841F6B74782C097835169", "A739742384A44E8BA45207AD5C3700EA"),
    KeySetCandidate("V1.5.13", "67657963787565E837D226B69A495D21", "F6C50203515A2CE7D8C3E1F938B7E94C", "42F2D5399137E2B2813CD8ECDF2F4D72"),
    KeySetCandidate("V1.6.6/1.6.9/1.6.17/1.6.24/1.6.26/1.7.6", "3C2D518D9BF2E4279DC758CD535147C3", "87C74A29709AC1BF2382276C4E8DF232", "598D92E967265E9BCABE2469FE4A915E"),
    KeySetCandidate("V1.7.2", "8FB8FB261930260BE945B841AEFA9FD4", "E529E82B28F5A2F8831D860AE39E425D", "8A09DA60ED36F125D64709973372C1CF"),
    KeySetCandidate("V2.0.3", "E8AE288C0192C54BF10C5707E9C4705B", "D64FC385DCD52A3C9B5FBA8650F92EDA", "79051FD8D8B6297E2E4559E997F63B7F"),
    KeySetCandidate("MTK-1", "9E4F32639D21357D37D226B69A495D21", "A3D8D358E42F5A9E931DD3917D9A3218", "386935399137416B67416BECF22F519A"),
    KeySetCandidate("MTK-2", "892D57E92A4D8A975E3C216B7C9DE189", "D26DF2D9913785B145D18C7219B89F26", "516989E4A1BFC78B365C6BC57D944391"),
    KeySetCandidate("MTK-3", "3C4A618D9BF2E4279DC758CD535147C3", "87B13D29709AC1BF2382276C4E8DF232", "59B7A8E967265E9BCABE2469FE4A915E"),
    KeySetCandidate("MTK-4", "1C3288822BF824259DC852C1733127D3", "E7918D22799181CF2312176C9E2DF298", "3247F889A7B6DECBCA3E28693E4AAAFE"),
    KeySetCandidate("MTK-5", "1E4F32239D65A57D37D2266D9A775D43", "A332D3C3E42F5A3E931DD991729A321D", "3F2A35399A373377674155ECF28FD19A"),
    KeySetCandidate("MTK-6", "122D57E92A518AFF5E3C786B7C34E189", "DD6DF2D9543785674522717219989FB0", "12698965A132C76136CC88C5DD94EE91"),
    KeySetCandidate("V2.1.x", "D4D2CD61D4D2CD61D4D2CD61D4D2CD61", "D4D2CD61D4D2CD61D4D2CD61D4D2CD61", "D4D2CD61D4D2CD61D4D2CD61D4D2CD61"),
    KeySetCandidate("V3.0.x", "2442CE821A4F352D44D2CE8D1A4F352D", "2442CE821A4F352D44D2CE8D1A4F352D", "2442CE821A4F352D44D2CE8D1A4F352D"),
)

FALLBACK_KEYSET = FallbackKeySet(
    version="generatekey1",
    key1="42F2D5399137E2B2813CD8ECDF2F4D72",
    key2="F6C50203515A2CE7D8C3E1F938B7E94C",
    key3="67657963787565E837D226B69A495D21",
)


def list_keysets() -> List[KeySetCandidate]:
    """Return key-set candidates in resolution order."""
    return list(KEYSETS)


def get_keyset(version: str) -> Optional[KeySetCandidate]:
    """Look up a candidate by exact version label (case-insensitive)."""
    wanted = version.strip().lower()
    for keyset in KEYSETS:
        if keyset.version.lower() == wanted:
            return keyset
    return None
