import os
import zipfile
from ipaddress import ip_address
from pathlib import Path

import pytest

from dufs.args import (
    Args,
    ArgsError,
    BindAddr,
    Compress,
    build_cli,
    default_addrs,
    parse_args,
    sanitize_assets_path,
    sanitize_path,
)
from dufs.auth import AccessPerm
from dufs.http_logger import HttpLogger


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in list(os.environ):
        if name.startswith("DUFS_"):
            monkeypatch.delenv(name)
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


def test_default():
    args = parse_args([])
    assert args.serve_path == sanitize_path(Path.cwd())
    assert args.port == 5000
    assert args.addrs == default_addrs()
    assert args.uri_prefix == "/"


def test_args_from_cli1(tmp_path):
    args = parse_args(["--hidden", "tmp,*.log,*.lock", str(tmp_path)])
    assert args.serve_path == sanitize_path(tmp_path)
    assert args.hidden == ["tmp", "*.log", "*.lock"]


def test_args_from_cli2():
    args = parse_args(["--hidden", "tmp", "--hidden", "*.log", "--hidden", "*.lock"])
    assert args.hidden == ["tmp", "*.log", "*.lock"]


def test_args_from_empty_config_file(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("")
    args = parse_args(["-c", str(config)])
    assert args.serve_path == sanitize_path(Path.cwd())
    assert args.port == 5000
    assert args.addrs == default_addrs()


def test_args_from_config_file1(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text(
        f"""
serve-path: {tmp_path}
bind: 0.0.0.0
port: 3000
allow-upload: true
hidden: tmp,*.log,*.lock
"""
    )
    args = parse_args(["-c", str(config)])
    assert args.serve_path == sanitize_path(tmp_path)
    assert args.addrs == [BindAddr(ip=ip_address("0.0.0.0"))]
    assert args.hidden == ["tmp", "*.log", "*.lock"]
    assert args.port == 3000
    assert args.allow_upload is True


def test_args_from_config_file2(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text(
        """
bind:
  - 127.0.0.1
  - 192.168.8.10
hidden:
  - tmp
  - '*.log'
  - '*.lock'
"""
    )
    args = parse_args(["-c", str(config)])
    assert args.addrs == [
        BindAddr(ip=ip_address("127.0.0.1")),
        BindAddr(ip=ip_address("192.168.8.10")),
    ]
    assert args.hidden == ["tmp", "*.log", "*.lock"]


def test_missing_serve_path_raises(tmp_path):
    with pytest.raises(ArgsError, match="doesn't exist"):
        parse_args([str(tmp_path / "missing")])


def test_missing_config_raises(tmp_path):
    with pytest.raises(ArgsError, match="Failed to read config"):
        parse_args(["-c", str(tmp_path / "missing.yaml")])


def test_invalid_config_value_raises(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("compress: ultra\n")
    with pytest.raises(ArgsError, match="Failed to load config"):
        parse_args(["-c", str(config)])


def test_path_prefix_sets_uri_prefix():
    args = parse_args(["--path-prefix", "/xyz/"])
    assert args.path_prefix == "xyz"
    assert args.uri_prefix == "/xyz/"


def test_path_prefix_is_encoded():
    args = parse_args(["--path-prefix", "a b/c"])
    assert args.uri_prefix == "/a%20b/c/"


def test_path_is_file(tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("x")
    args = parse_args([str(target)])
    assert args.path_is_file is True


def test_allow_all_enables_everything():
    args = parse_args(["-A"])
    assert [
        args.allow_upload,
        args.allow_delete,
        args.allow_search,
        args.allow_symlink,
        args.allow_archive,
    ] == [True] * 5


def test_defaults_disallow():
    args = parse_args([])
    assert (args.allow_upload, args.allow_delete, args.enable_cors) == (False, False, False)
    assert args.compress is Compress.LOW


def test_auth_rules():
    args = parse_args(["-a", "user:password@/:rw"])
    assert args.auth.exist() is True
    assert args.auth.users["user"][1].perm == AccessPerm.READ_WRITE


def test_invalid_auth_raises():
    with pytest.raises(ArgsError):
        parse_args(["-a", "user:password@/:xx"])


def test_log_format():
    args = parse_args(["--log-format", "$remote_addr $status"])
    assert args.http_logger == HttpLogger.parse("$remote_addr $status")


def test_compress_option():
    args = parse_args(["--compress", "high"])
    assert args.compress is Compress.HIGH


def test_compress_to_compression():
    assert Compress.NONE.to_compression() == zipfile.ZIP_STORED
    assert Compress.LOW.to_compression() == zipfile.ZIP_DEFLATED
    assert Compress.MEDIUM.to_compression() == zipfile.ZIP_BZIP2
    assert Compress.HIGH.to_compression() == zipfile.ZIP_LZMA


def test_tls_cert_without_key_raises(tmp_path):
    with pytest.raises(ArgsError, match="No tls-key set"):
        parse_args(["--tls-cert", str(tmp_path / "cert.pem")])


def test_tls_key_without_cert_raises(tmp_path):
    with pytest.raises(ArgsError, match="No tls-cert set"):
        parse_args(["--tls-key", str(tmp_path / "key.pem")])


def test_tls_pair(tmp_path):
    args = parse_args(["--tls-cert", "c.pem", "--tls-key", "k.pem"])
    assert (args.tls_cert, args.tls_key) == (Path("c.pem"), Path("k.pem"))


def test_assets_requires_index(tmp_path):
    with pytest.raises(ArgsError, match="index.html"):
        sanitize_assets_path(tmp_path)
    (tmp_path / "index.html").write_text("x")
    assert sanitize_assets_path(tmp_path) == tmp_path.resolve()


def test_assets_option(tmp_path):
    (tmp_path / "index.html").write_text("x")
    args = parse_args(["--assets", str(tmp_path)])
    assert args.assets == tmp_path.resolve()


def test_port_out_of_range_exits():
    with pytest.raises(SystemExit):
        build_cli().parse_args(["-p", "70000"])


def test_env_port(monkeypatch):
    monkeypatch.setenv("DUFS_PORT", "8080")
    assert parse_args([]).port == 8080


def test_env_invalid_port(monkeypatch):
    monkeypatch.setenv("DUFS_PORT", "abc")
    with pytest.raises(ArgsError):
        parse_args([])


def test_env_flag_and_list(monkeypatch):
    monkeypatch.setenv("DUFS_ALLOW_UPLOAD", "true")
    monkeypatch.setenv("DUFS_HIDDEN", "a,b")
    args = parse_args([])
    assert args.allow_upload is True
    assert args.hidden == ["a", "b"]


def test_env_falsey_flag(monkeypatch):
    monkeypatch.setenv("DUFS_ALLOW_DELETE", "false")
    assert parse_args([]).allow_delete is False


def test_cli_overrides_env(monkeypatch):
    monkeypatch.setenv("DUFS_PORT", "8080")
    assert parse_args(["-p", "9090"]).port == 9090


def test_bind_comma_separated():
    args = parse_args(["-b", "127.0.0.1,::1"])
    assert args.addrs == [
        BindAddr(ip=ip_address("127.0.0.1")),
        BindAddr(ip=ip_address("::1")),
    ]


def test_bind_addr_ordering():
    v6 = BindAddr(ip=ip_address("::1"))
    v4 = BindAddr(ip=ip_address("10.0.0.1"))
    v4_low = BindAddr(ip=ip_address("1.2.3.4"))
    sock = BindAddr(socket_path="/tmp/dufs.sock")
    assert sorted([sock, v6, v4, v4_low]) == [v4_low, v4, v6, sock]


def test_bind_addr_is_ip():
    assert BindAddr.parse_addrs(["127.0.0.1"])[0].is_ip() is True
    assert BindAddr(socket_path="/run/dufs.sock").is_ip() is False


def test_default_addrs():
    assert default_addrs() == [
        BindAddr(ip=ip_address("0.0.0.0")),
        BindAddr(ip=ip_address("::")),
    ]


def test_from_config_ignores_unknown_keys():
    args = Args.from_config({"unknown": 1, "port": 4000, "render-spa": True})
    assert args.port == 4000
    assert args.render_spa is True


def test_from_config_rejects_bad_types():
    with pytest.raises(ArgsError):
        Args.from_config({"allow-upload": "yes"})
    with pytest.raises(ArgsError):
        Args.from_config({"port": 70000})


def test_from_config_auth_list():
    args = Args.from_config({"auth": ["user:password@/dir1:rw"]})
    assert args.auth.exist() is True
    assert args.auth.users["user"][1].child_names() == ["dir1"]