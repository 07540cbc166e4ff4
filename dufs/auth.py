"""Access rules, HTTP Basic/Digest authentication and nonce handling."""

from __future__ import annotations

import base64
import binascii
import copy
import hashlib
import os
import re
import time
import uuid
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Iterator, Optional, Union

from passlib.hash import sha512_crypt

REALM = "DUFS"
DIGEST_AUTH_TIMEOUT = 604800  # 7 days

_READONLY_METHODS = frozenset({"GET", "OPTIONS", "HEAD", "PROPFIND", "CHECKAUTH", "LOGOUT"})
_HEX8 = re.compile(r"[0-9a-fA-F]{8}")

_NONCE_START_HASH = hashlib.md5()
_NONCE_START_HASH.update(uuid.uuid4().bytes)
_NONCE_START_HASH.update((os.getpid() & 0xFFFFFFFF).to_bytes(4, "big"))

HeaderValue = Union[str, bytes]


class AuthConfigError(ValueError):
    """Raised when auth rules cannot be parsed."""


class AccessPerm(IntEnum):
    """Permission level, ordered from weakest to strongest."""

    INDEX_ONLY = 0
    READ_ONLY = 1
    READ_WRITE = 2

    def indexonly(self) -> bool:
        return self is AccessPerm.INDEX_ONLY

    def readwrite(self) -> bool:
        return self is AccessPerm.READ_WRITE


class AccessPaths:
    """A tree of path components, each carrying a permission."""

    def __init__(self, perm: AccessPerm = AccessPerm.INDEX_ONLY) -> None:
        self.perm = AccessPerm(perm)
        self.children: dict[str, AccessPaths] = {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccessPaths):
            return NotImplemented
        return self.perm == other.perm and self.children == other.children

    def __repr__(self) -> str:
        return f"AccessPaths(perm={self.perm.name}, children={self.children!r})"

    def set_perm(self, perm: AccessPerm) -> None:
        """Raise the permission; children that become redundant are dropped."""
        if self.perm < perm:
            self.perm = AccessPerm(perm)
            self._purge_children(perm)

    def _purge_children(self, perm: AccessPerm) -> None:
        kept = {name: child for name, child in self.children.items() if child.perm > perm}
        for child in kept.values():
            child._purge_children(perm)
        self.children = kept

    def merge(self, paths: str) -> None:
        """Add comma separated ``path[:ro|:rw]`` items."""
        for item in paths.strip(",").split(","):
            path, sep, mode = item.partition(":")
            if not sep:
                perm = AccessPerm.READ_ONLY
            elif mode == "ro":
                perm = AccessPerm.READ_ONLY
            elif mode == "rw":
                perm = AccessPerm.READ_WRITE
            else:
                raise AuthConfigError(f"Invalid access path `{item}`")
            self.add(path, perm)

    def add(self, path: str, perm: AccessPerm) -> None:
        path = path.strip("/")
        if not path:
            self.set_perm(perm)
        else:
            self._add(path.split("/"), perm)

    def _add(self, parts: list[str], perm: AccessPerm) -> None:
        if not parts:
            self.set_perm(perm)
            return
        if self.perm >= perm:
            return
        child = self.children.setdefault(parts[0], AccessPaths())
        child._add(parts[1:], perm)

    def guard(self, path: str, method: str) -> Optional[AccessPaths]:
        target = self.find(path)
        if target is None:
            return None
        if not is_readonly_method(method) and not target.perm.readwrite():
            return None
        return target

    def find(self, path: str) -> Optional[AccessPaths]:
        parts = [p for p in path.strip("/").split("/") if p]
        return self._find(parts, self.perm)

    def _find(self, parts: list[str], perm: AccessPerm) -> Optional[AccessPaths]:
        if not self.perm.indexonly():
            perm = self.perm
        if not parts:
            return copy.deepcopy(self) if perm.indexonly() else AccessPaths(perm)
        child = self.children.get(parts[0])
        if child is None:
            return None if perm.indexonly() else AccessPaths(perm)
        return child._find(parts[1:], perm)

    def child_names(self) -> list[str]:
        return list(self.children)

    def entry_paths(self, base: Union[str, Path]) -> list[Path]:
        base = Path(base)
        if not self.perm.indexonly():
            return [base]
        return list(self._walk_entries(base))

    def _walk_entries(self, base: Path) -> Iterator[Path]:
        for name, child in self.children.items():
            path = base / name
            if child.perm.indexonly():
                yield from child._walk_entries(path)
            else:
                yield path


def _default_anonymous() -> Optional[AccessPaths]:
    return AccessPaths(AccessPerm.READ_WRITE)


@dataclass
class AccessControl:
    """Users, their passwords and access trees, plus anonymous access."""

    use_hashed_password: bool = False
    users: dict[str, tuple[str, AccessPaths]] = field(default_factory=dict)
    anonymous: Optional[AccessPaths] = field(default_factory=_default_anonymous)

    @classmethod
    def from_rules(cls, raw_rules: list[str]) -> AccessControl:
        if not raw_rules:
            return cls()
        use_hashed_password = False
        anonymous_paths: Optional[str] = None
        accounts: list[tuple[str, str, str]] = []
        for rule in split_rules(raw_rules):
            split = split_account_paths(rule)
            if split is None:
                raise AuthConfigError(f"Invalid auth `{rule}`")
            account, paths = split
            if not account:
                if anonymous_paths is not None:
                    raise AuthConfigError("Invalid auth, no duplicate anonymous rules")
                anonymous_paths = paths
            elif ":" in account:
                user, _, stored = account.partition(":")
                if not user or not stored:
                    raise AuthConfigError(f"Invalid auth `{rule}`")
                accounts.append((user, stored, paths))

        anonymous = None
        if anonymous_paths is not None:
            anonymous = AccessPaths()
            try:
                anonymous.merge(anonymous_paths)
            except AuthConfigError:
                raise AuthConfigError(f"Invalid auth value `@{anonymous_paths}`") from None

        users: dict[str, tuple[str, AccessPaths]] = {}
        for user, stored, paths in accounts:
            access_paths = AccessPaths()
            try:
                access_paths.merge(paths)
            except AuthConfigError:
                raise AuthConfigError(
                    f"Invalid auth value `{user}:{stored}@{paths}`"
                ) from None
            if anonymous_paths is not None:
                access_paths.merge(anonymous_paths)
            if stored.startswith("$6$"):
                use_hashed_password = True
            users[user] = (stored, access_paths)

        return cls(use_hashed_password=use_hashed_password, users=users, anonymous=anonymous)

    def exist(self) -> bool:
        return bool(self.users)

    def guard(
        self,
        path: str,
        method: str,
        authorization: Optional[HeaderValue],
        guard_options: bool,
    ) -> tuple[Optional[str], Optional[AccessPaths]]:
        """Return the authenticated user (if any) and the access granted (if any)."""
        if not self.users:
            return None, AccessPaths(AccessPerm.READ_WRITE)
        if authorization is not None:
            user = get_auth_user(authorization)
            if user is not None and user in self.users:
                stored, access_paths = self.users[user]
                if method == "OPTIONS":
                    return user, AccessPaths(AccessPerm.READ_ONLY)
                if check_auth(authorization, method, user, stored):
                    return user, access_paths.guard(path, method)
            return None, None
        if not guard_options and method == "OPTIONS":
            return None, AccessPaths(AccessPerm.READ_ONLY)
        if self.anonymous is not None:
            return None, self.anonymous.guard(path, method)
        return None, None


def www_authenticate(access_control: AccessControl) -> list[str]:
    """Values for the ``WWW-Authenticate`` headers of a 401 response."""
    basic = f'Basic realm="{REALM}"'
    if access_control.use_hashed_password:
        return [basic]
    digest = f'Digest realm="{REALM}", nonce="{create_nonce()}", qop="auth"'
    return [digest, basic]


def _as_bytes(value: HeaderValue) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def _decode_basic(value: bytes) -> Optional[str]:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None


def get_auth_user(authorization: HeaderValue) -> Optional[str]:
    raw = _as_bytes(authorization)
    if raw.startswith(b"Basic "):
        text = _decode_basic(raw[len(b"Basic "):])
        return None if text is None else text.split(":")[0]
    if raw.startswith(b"Digest "):
        try:
            digest_map = parse_digest_header(raw[len(b"Digest "):])
            return digest_map[b"username"].decode("utf-8")
        except (ValueError, KeyError):
            return None
    return None


def _md5_hex(*parts: bytes) -> str:
    return hashlib.md5(b"".join(parts)).hexdigest()


def check_auth(
    authorization: HeaderValue, method: str, auth_user: str, auth_pass: str
) -> bool:
    """Verify Basic or Digest credentials against the given user and password."""
    raw = _as_bytes(authorization)
    if raw.startswith(b"Basic "):
        text = _decode_basic(raw[len(b"Basic "):])
        if text is None or ":" not in text:
            return False
        user, _, given = text.partition(":")
        if user != auth_user:
            return False
        if auth_pass.startswith("$6$"):
            try:
                return bool(sha512_crypt.verify(given, auth_pass))
            except (ValueError, TypeError):
                return False
        return given == auth_pass

    if raw.startswith(b"Digest "):
        try:
            digest_map = parse_digest_header(raw[len(b"Digest "):])
            username = digest_map[b"username"].decode("utf-8")
            nonce = digest_map[b"nonce"]
            user_response = digest_map[b"response"]
        except (ValueError, KeyError):
            return False
        try:
            if not validate_nonce(nonce):
                return False
        except ValueError:
            return False
        if auth_user != username:
            return False

        ha1 = _md5_hex(f"{auth_user}:{REALM}:{auth_pass}".encode("utf-8")).encode()
        ha2 = _md5_hex(method.encode("utf-8"), b":", digest_map.get(b"uri", b"")).encode()
        qop = digest_map.get(b"qop")
        if qop in (b"auth", b"auth-int"):
            expected = _md5_hex(
                ha1, b":", nonce, b":",
                digest_map.get(b"nc", b""), b":",
                digest_map.get(b"cnonce", b""), b":",
                qop, b":", ha2,
            )
        else:
            expected = _md5_hex(ha1, b":", nonce, b":", ha2)
        return expected.encode() == user_response
    return False


def _now_secs() -> int:
    return int(time.time()) & 0xFFFFFFFF


def create_nonce() -> str:
    secs = _now_secs()
    h = _NONCE_START_HASH.copy()
    h.update(secs.to_bytes(4, "big"))
    return f"{secs:08x}{h.hexdigest()}"[:34]


def validate_nonce(nonce: HeaderValue) -> bool:
    """Return whether a nonce is still fresh; raise ValueError if it was never valid."""
    raw = _as_bytes(nonce)
    if len(raw) != 34:
        raise ValueError("invalid nonce")
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise ValueError("invalid nonce") from None
    if _HEX8.fullmatch(text[:8]):
        secs_nonce = int(text[:8], 16)
        dur = _now_secs() - secs_nonce
        if dur >= 0:
            h = _NONCE_START_HASH.copy()
            h.update(secs_nonce.to_bytes(4, "big"))
            if h.hexdigest()[:26] == text[8:34]:
                return dur < DIGEST_AUTH_TIMEOUT
    raise ValueError("invalid nonce")


def is_readonly_method(method: str) -> bool:
    return method in _READONLY_METHODS


def parse_digest_header(header: HeaderValue) -> dict[bytes, bytes]:
    """Parse ``key=value, key="value"`` pairs of a Digest authorization header."""
    header = _as_bytes(header)
    separators: list[int] = []
    assigns: list[int] = []
    escaped = False
    for pos, byte in enumerate(header):
        if byte == ord('"'):
            escaped = not escaped
        elif not escaped and byte == ord("="):
            assigns.append(pos)
        elif not escaped and byte == ord(","):
            separators.append(pos)
    separators.append(len(header))

    result: dict[bytes, bytes] = {}
    start = 0
    for end, assign in zip(separators, assigns):
        while start < len(header) and header[start] == ord(" "):
            start += 1
        if assign <= start or end <= assign + 1:
            raise ValueError("malformed digest header")
        key = header[start:assign]
        if header[assign + 1] == ord('"') and header[end - 1] == ord('"'):
            value = header[assign + 2:end - 1]
        else:
            value = header[assign + 1:end]
        result[key] = value
        start = end + 1
    return result


def split_account_paths(s: str) -> Optional[tuple[str, str]]:
    i = s.find("@/")
    if i < 0:
        return None
    return s[:i], s[i + 1:]


def split_rules(rules: list[str]) -> list[str]:
    """Split ``|`` joined rules, keeping ``|`` that belongs to a password."""
    output: list[str] = []
    for rule in rules:
        parts = rule.split("|")
        pending = ""
        for i, part in enumerate(parts):
            pending += part
            if "@/" in part:
                output.append(pending)
                pending = ""
            elif i < len(parts) - 1:
                pending += "|"
        if pending:
            output.append(pending)
    return output