"""Command line and configuration file handling for the file server."""

from __future__ import annotations

import argparse
import ipaddress
import os
import zipfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from functools import total_ordering
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Union
from urllib.parse import quote

import yaml

from dufs.auth import AccessControl, AuthConfigError
from dufs.http_logger import HttpLogger

_VERSION = "0.43.0"
_DESCRIPTION = "Dufs is a distinctive utility file server"
_DEFAULT_PORT = 5000
_FALSEY = frozenset({"", "n", "no", "f", "false", "off", "0"})

IpAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class ArgsError(ValueError):
    """Raised when arguments or configuration are invalid."""


class Compress(Enum):
    """Compression level used for folder archives."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    def to_compression(self) -> int:
        """The matching ``zipfile`` compression method."""
        return {
            Compress.NONE: zipfile.ZIP_STORED,
            Compress.LOW: zipfile.ZIP_DEFLATED,
            Compress.MEDIUM: zipfile.ZIP_BZIP2,
            Compress.HIGH: zipfile.ZIP_LZMA,
        }[self]


@total_ordering
@dataclass(frozen=True)
class BindAddr:
    """An IP address or a unix socket path to listen on."""

    ip: Optional[IpAddress] = None
    socket_path: Optional[str] = None

    @classmethod
    def parse_addrs(cls, addrs: Sequence[str]) -> list[BindAddr]:
        bind_addrs: list[BindAddr] = []
        invalid: list[str] = []
        for addr in addrs:
            ip = _parse_ip(addr)
            if ip is not None:
                bind_addrs.append(cls(ip=ip))
            elif os.name == "posix":
                bind_addrs.append(cls(socket_path=addr))
            else:
                invalid.append(addr)
        if invalid:
            raise ArgsError(f"Invalid bind address `{','.join(invalid)}`")
        return bind_addrs

    def is_ip(self) -> bool:
        return self.ip is not None

    def _sort_key(self) -> tuple:
        if self.ip is not None:
            return (0, self.ip.version, self.ip.packed)
        return (1, 0, self.socket_path or "")

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, BindAddr):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __str__(self) -> str:
        return str(self.ip) if self.ip is not None else str(self.socket_path)


def _parse_ip(addr: str) -> Optional[IpAddress]:
    if "%" in addr:
        return None
    try:
        return ipaddress.ip_address(addr)
    except ValueError:
        return None


def default_addrs() -> list[BindAddr]:
    return BindAddr.parse_addrs(["0.0.0.0", "::"])


def _encode_uri(value: str) -> str:
    return "/".join(quote(part, safe="") for part in value.split("/"))


def sanitize_path(path: Union[str, Path]) -> Path:
    """Return the canonical absolute form of an existing path."""
    path = Path(path)
    if not path.exists():
        raise ArgsError(f"Path `{path}` doesn't exist")
    try:
        return (Path.cwd() / path).resolve(strict=True)
    except OSError as exc:
        raise ArgsError(f"Failed to access path `{path}`") from exc


def sanitize_assets_path(path: Union[str, Path]) -> Path:
    path = sanitize_path(path)
    if not (path / "index.html").exists():
        raise ArgsError(f"Path `{path}` doesn't contains index.html")
    return path


def _port(value: Any) -> int:
    if isinstance(value, bool):
        raise ArgsError(f"Invalid port `{value}`")
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ArgsError(f"Invalid port `{value}`") from None
    if not 0 <= port <= 65535:
        raise ArgsError(f"Invalid port `{value}`")
    return port


def _cli_port(value: str) -> int:
    try:
        return _port(value)
    except ArgsError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def _compress(value: Any) -> Compress:
    try:
        return Compress(value)
    except ValueError:
        raise ArgsError(f"Invalid compress level `{value}`") from None


def _auth(rules: Sequence[str]) -> AccessControl:
    try:
        return AccessControl.from_rules(list(rules))
    except AuthConfigError as exc:
        raise ArgsError(str(exc)) from exc


def build_cli() -> argparse.ArgumentParser:
    """The command line parser."""
    parser = argparse.ArgumentParser(prog="dufs", description=_DESCRIPTION)
    parser.add_argument("-V", "--version", action="version", version=f"dufs {_VERSION}")
    parser.add_argument(
        "serve_path", nargs="?", type=Path, metavar="serve-path",
        help="Specific path to serve [default: .]",
    )
    parser.add_argument("-c", "--config", type=Path, metavar="file",
                        help="Specify configuration file")
    parser.add_argument("-b", "--bind", action="append", metavar="addrs",
                        help="Specify bind address or unix socket")
    parser.add_argument("-p", "--port", type=_cli_port, metavar="port",
                        help="Specify port to listen on [default: 5000]")
    parser.add_argument("--path-prefix", metavar="path", help="Specify a path prefix")
    parser.add_argument("--hidden", action="append", metavar="value",
                        help="Hide paths from directory listings, e.g. tmp,*.log,*.lock")
    parser.add_argument("-a", "--auth", action="append", metavar="rules",
                        help="Add auth roles, e.g. user:pass@/dir1:rw,/dir2")
    parser.add_argument("--auth-method", choices=["basic", "digest"], default=None,
                        help=argparse.SUPPRESS)
    parser.add_argument("-A", "--allow-all", action="store_true", help="Allow all operations")
    parser.add_argument("--allow-upload", action="store_true", help="Allow upload files/folders")
    parser.add_argument("--allow-delete", action="store_true", help="Allow delete files/folders")
    parser.add_argument("--allow-search", action="store_true", help="Allow search files/folders")
    parser.add_argument("--allow-symlink", action="store_true",
                        help="Allow symlink to files/folders outside root directory")
    parser.add_argument("--allow-archive", action="store_true",
                        help="Allow download folders as archive file")
    parser.add_argument("--enable-cors", action="store_true",
                        help="Enable CORS, sets `Access-Control-Allow-Origin: *`")
    parser.add_argument("--render-index", action="store_true",
                        help="Serve index.html when requesting a directory, "
                             "returns 404 if not found index.html")
    parser.add_argument("--render-try-index", action="store_true",
                        help="Serve index.html when requesting a directory, "
                             "returns directory listing if not found index.html")
    parser.add_argument("--render-spa", action="store_true",
                        help="Serve SPA(Single Page Application)")
    parser.add_argument("--assets", type=Path, metavar="path",
                        help="Set the path to the assets directory for overriding "
                             "the built-in assets")
    parser.add_argument("--log-format", metavar="format", help="Customize http log format")
    parser.add_argument("--log-file", type=Path, metavar="file",
                        help="Specify the file to save logs to, other than stdout/stderr")
    parser.add_argument("--compress", choices=[c.value for c in Compress], metavar="level",
                        help="Set zip compress level [default: low]")
    parser.add_argument("--tls-cert", type=Path, metavar="path",
                        help="Path to an SSL/TLS certificate to serve with HTTPS")
    parser.add_argument("--tls-key", type=Path, metavar="path",
                        help="Path to the SSL/TLS certificate's private key")
    return parser


_FLAG, _LIST, _MULTI, _VALUE, _PATH = "flag", "list", "multi", "value", "path"

_ENV_BINDINGS = (
    ("serve_path", "DUFS_SERVE_PATH", _PATH),
    ("config", "DUFS_CONFIG", _PATH),
    ("bind", "DUFS_BIND", _LIST),
    ("port", "DUFS_PORT", _VALUE),
    ("path_prefix", "DUFS_PATH_PREFIX", _VALUE),
    ("hidden", "DUFS_HIDDEN", _LIST),
    ("auth", "DUFS_AUTH", _MULTI),
    ("allow_all", "DUFS_ALLOW_ALL", _FLAG),
    ("allow_upload", "DUFS_ALLOW_UPLOAD", _FLAG),
    ("allow_delete", "DUFS_ALLOW_DELETE", _FLAG),
    ("allow_search", "DUFS_ALLOW_SEARCH", _FLAG),
    ("allow_symlink", "DUFS_ALLOW_SYMLINK", _FLAG),
    ("allow_archive", "DUFS_ALLOW_ARCHIVE", _FLAG),
    ("enable_cors", "DUFS_ENABLE_CORS", _FLAG),
    ("render_index", "DUFS_RENDER_INDEX", _FLAG),
    ("render_try_index", "DUFS_RENDER_TRY_INDEX", _FLAG),
    ("render_spa", "DUFS_RENDER_SPA", _FLAG),
    ("assets", "DUFS_ASSETS", _PATH),
    ("log_format", "DUFS_LOG_FORMAT", _VALUE),
    ("log_file", "DUFS_LOG_FILE", _PATH),
    ("compress", "DUFS_COMPRESS", _VALUE),
    ("tls_cert", "DUFS_TLS_CERT", _PATH),
    ("tls_key", "DUFS_TLS_KEY", _PATH),
)


def _resolve(namespace: argparse.Namespace) -> dict[str, Any]:
    """Merge parsed command line values with ``DUFS_*`` environment variables."""
    env = os.environ
    values: dict[str, Any] = {}
    for dest, var, kind in _ENV_BINDINGS:
        value = getattr(namespace, dest, None)
        from_env = env.get(var)
        if kind == _FLAG:
            value = bool(value) or (from_env is not None and from_env.lower() not in _FALSEY)
        elif kind == _LIST:
            if value:
                value = [part for item in value for part in item.split(",")]
            else:
                value = from_env.split(",") if from_env else None
        elif kind == _MULTI:
            if not value:
                value = [from_env] if from_env else None
        elif value is None and from_env:
            value = Path(from_env) if kind == _PATH else from_env
        values[dest] = value
    if values["port"] is not None:
        values["port"] = _port(values["port"])
    if values["compress"] is not None:
        values["compress"] = _compress(values["compress"])
    return values


def _cfg_str(value: Any) -> str:
    if not isinstance(value, str):
        raise ArgsError(f"expected a string, got `{value!r}`")
    return value


def _cfg_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ArgsError(f"expected a boolean, got `{value!r}`")
    return value


def _cfg_path(value: Any) -> Path:
    return Path(_cfg_str(value))


def _cfg_optional_path(value: Any) -> Optional[Path]:
    return None if value is None else _cfg_path(value)


def _cfg_str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [_cfg_str(item) for item in value]
    raise ArgsError(f"expected string or list of strings, got `{value!r}`")


def _cfg_addrs(value: Any) -> list[BindAddr]:
    return BindAddr.parse_addrs(_cfg_str_list(value))


def _cfg_auth(value: Any) -> AccessControl:
    if not isinstance(value, list):
        raise ArgsError(f"expected a list of strings, got `{value!r}`")
    return _auth([_cfg_str(item) for item in value])


def _cfg_logger(value: Any) -> HttpLogger:
    return HttpLogger.parse(_cfg_str(value))


def _cfg_compress(value: Any) -> Compress:
    return _compress(_cfg_str(value))


_CONFIG_FIELDS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "serve-path": ("serve_path", _cfg_path),
    "bind": ("addrs", _cfg_addrs),
    "port": ("port", _port),
    "path-prefix": ("path_prefix", _cfg_str),
    "hidden": ("hidden", _cfg_str_list),
    "auth": ("auth", _cfg_auth),
    "allow-all": ("allow_all", _cfg_bool),
    "allow-upload": ("allow_upload", _cfg_bool),
    "allow-delete": ("allow_delete", _cfg_bool),
    "allow-search": ("allow_search", _cfg_bool),
    "allow-symlink": ("allow_symlink", _cfg_bool),
    "allow-archive": ("allow_archive", _cfg_bool),
    "render-index": ("render_index", _cfg_bool),
    "render-spa": ("render_spa", _cfg_bool),
    "render-try-index": ("render_try_index", _cfg_bool),
    "enable-cors": ("enable_cors", _cfg_bool),
    "assets": ("assets", _cfg_optional_path),
    "log-format": ("http_logger", _cfg_logger),
    "log-file": ("log_file", _cfg_optional_path),
    "compress": ("compress", _cfg_compress),
    "tls-cert": ("tls_cert", _cfg_optional_path),
    "tls-key": ("tls_key", _cfg_optional_path),
}


@dataclass
class Args:
    """The effective server settings."""

    serve_path: Path = field(default_factory=lambda: Path("."))
    addrs: list[BindAddr] = field(default_factory=default_addrs)
    port: int = _DEFAULT_PORT
    path_is_file: bool = False
    path_prefix: str = ""
    uri_prefix: str = ""
    hidden: list[str] = field(default_factory=list)
    auth: AccessControl = field(default_factory=AccessControl)
    allow_all: bool = False
    allow_upload: bool = False
    allow_delete: bool = False
    allow_search: bool = False
    allow_symlink: bool = False
    allow_archive: bool = False
    render_index: bool = False
    render_spa: bool = False
    render_try_index: bool = False
    enable_cors: bool = False
    assets: Optional[Path] = None
    http_logger: HttpLogger = field(default_factory=HttpLogger)
    log_file: Optional[Path] = None
    compress: Compress = Compress.LOW
    tls_cert: Optional[Path] = None
    tls_key: Optional[Path] = None

    @classmethod
    def from_config(cls, data: Any) -> Args:
        """Build settings from a loaded YAML document with kebab-case keys."""
        args = cls()
        if data is None:
            return args
        if not isinstance(data, Mapping):
            raise ArgsError("configuration must be a mapping")
        for key, value in data.items():
            entry = _CONFIG_FIELDS.get(key)
            if entry is None:
                continue
            attr, convert = entry
            try:
                setattr(args, attr, convert(value))
            except ArgsError as exc:
                raise ArgsError(f"{key}: {exc}") from exc
        return args

    @classmethod
    def parse(cls, namespace: argparse.Namespace) -> Args:
        """Combine the command line, environment and configuration file."""
        cli = _resolve(namespace)
        args = cls()

        config_path = cli["config"]
        if config_path is not None:
            try:
                contents = Path(config_path).read_text(encoding="utf-8")
            except OSError as exc:
                raise ArgsError(f"Failed to read config at {config_path}") from exc
            try:
                args = cls.from_config(yaml.safe_load(contents))
            except (yaml.YAMLError, ArgsError) as exc:
                raise ArgsError(f"Failed to load config at {config_path}: {exc}") from exc

        if cli["serve_path"] is not None:
            args.serve_path = Path(cli["serve_path"])
        args.serve_path = sanitize_path(args.serve_path)

        if cli["port"] is not None:
            args.port = cli["port"]

        if cli["bind"] is not None:
            args.addrs = BindAddr.parse_addrs(cli["bind"])

        args.path_is_file = args.serve_path.is_file()
        if cli["path_prefix"] is not None:
            args.path_prefix = cli["path_prefix"]
        args.path_prefix = args.path_prefix.strip("/")
        args.uri_prefix = (
            f"/{_encode_uri(args.path_prefix)}/" if args.path_prefix else "/"
        )

        if cli["hidden"] is not None:
            args.hidden = list(cli["hidden"])
        else:
            args.hidden = [part for item in args.hidden for part in item.split(",")]

        args.enable_cors = args.enable_cors or cli["enable_cors"]

        if cli["auth"] is not None:
            args.auth = _auth(cli["auth"])

        args.allow_all = args.allow_all or cli["allow_all"]
        allow_all = args.allow_all
        for name in ("allow_upload", "allow_delete", "allow_search",
                     "allow_symlink", "allow_archive"):
            if not getattr(args, name):
                setattr(args, name, allow_all or cli[name])

        args.render_index = args.render_index or cli["render_index"]
        args.render_try_index = args.render_try_index or cli["render_try_index"]
        args.render_spa = args.render_spa or cli["render_spa"]

        if cli["assets"] is not None:
            args.assets = Path(cli["assets"])
        if args.assets is not None:
            args.assets = sanitize_assets_path(args.assets)

        if cli["log_format"] is not None:
            args.http_logger = HttpLogger.parse(cli["log_format"])

        if cli["log_file"] is not None:
            args.log_file = Path(cli["log_file"])

        if cli["compress"] is not None:
            args.compress = cli["compress"]

        if cli["tls_cert"] is not None:
            args.tls_cert = Path(cli["tls_cert"])
        if cli["tls_key"] is not None:
            args.tls_key = Path(cli["tls_key"])
        if args.tls_cert is not None and args.tls_key is None:
            raise ArgsError("No tls-key set")
        if args.tls_key is not None and args.tls_cert is None:
            raise ArgsError("No tls-cert set")

        return args


def parse_args(argv: Optional[Sequence[str]] = None) -> Args:
    """Parse a command line into settings."""
    namespace = build_cli().parse_args(argv)
    return Args.parse(namespace)