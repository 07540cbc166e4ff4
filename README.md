# dufs

Building blocks of a small utility file server: path-based access control
with Basic and Digest authentication, a configurable access-log line,
command-line and YAML configuration parsing, logging set-up, body streaming
helpers, and helpers for binding listeners and announcing where the server
is reachable.

## What this package does not do

It does not serve files. There is no HTTP request handling, no directory
listing, upload, WebDAV or archive download, and no `dufs` command to start
a server. The modules here parse and hold the settings such a server needs,
decide who may access which path, and prepare the listening sockets.

## Access control (`dufs.auth`)

Rules take the form `user:pass@/path[:ro|:rw],/other`. A rule starting with
`@` applies to anonymous visitors, and several rules can be joined with `|`
(a `|` inside a password is kept). A path without a suffix is read-only;
`:rw` grants write access. Invalid rules raise `AuthConfigError`.

```python
from dufs.auth import AccessControl, AccessPerm

control = AccessControl.from_rules(["admin:password@/:rw|@/public"])
control.exist()  # True: at least one named user is configured

# An anonymous read below /public is let through read-only.
user, paths = control.guard("/public/a.txt", "GET", None, False)
assert user is None and paths.perm is AccessPerm.READ_ONLY
```

`AccessControl.guard(path, method, authorization, guard_options)` returns
the authenticated user name (or `None`) and the granted `AccessPaths` (or
`None` when access is refused). Without any configured users everything is
read-write.

`AccessPaths` is the tree behind each user: `find()` resolves the permission
for a path, `entry_paths(base)` lists the directories a user may enter,
`child_names()` lists the first-level entries, and `guard()` refuses write
methods where only reading is allowed. `GET`, `HEAD`, `OPTIONS`, `PROPFIND`,
`CHECKAUTH` and `LOGOUT` count as read-only (`is_readonly_method()`).

`www_authenticate(control)` returns the values for the `WWW-Authenticate`
headers of a 401 response: a Digest challenge with a fresh nonce followed by
a Basic one, or only Basic when a stored password is a `$6$` SHA-512 crypt
hash. `get_auth_user()` extracts the user name from an `Authorization`
value, and `check_auth(authorization, method, user, stored)` verifies Basic
or Digest credentials. Nonces (`create_nonce()`, `validate_nonce()`) are
valid for seven days within the running process.

## Access logging (`dufs.http_logger`)

```python
from dufs.http_logger import HttpLogger

logger = HttpLogger.parse('$remote_addr "$request" $status $http_user_agent')
data = logger.data("GET", "/index.html", {"user-agent": "curl/8.0"})
data["remote_addr"] = "127.0.0.1"
data["status"] = "200"
print(logger.format(data))  # 127.0.0.1 "GET /index.html" 200 curl/8.0
```

Variables start with `$`; `$http_<name>` reads a request header, with
underscores turned into dashes. `data()` fills in `request`, `remote_user`
and header values; anything missing is written as `-`. The default format is
`$remote_addr "$request" $status`. `logger.log(data, err)` writes the line
through the `dufs` logger of the standard `logging` module, at error level
when `err` is given; an empty format logs nothing.

`dufs.logger.init(log_file=None)` installs a handler on that logger writing
`<timestamp> <LEVEL> - <message>` lines to standard output (errors and
warnings to standard error) or appending them to a file. A file that cannot
be opened raises `LoggerInitError`.

## Command line and configuration (`dufs.args`)

```python
from dufs.args import parse_args

args = parse_args(["--allow-upload", "--hidden", "tmp,*.log", "-p", "8080", "."])
args.port          # 8080
args.hidden        # ['tmp', '*.log']
args.allow_upload  # True
```

`build_cli()` returns the `argparse` parser; `Args.parse(namespace)` turns
its result into settings, also reading `DUFS_*` environment variables
(`DUFS_PORT`, `DUFS_AUTH`, `DUFS_ALLOW_UPLOAD`, ...) for options not given.
`-c/--config` loads a YAML file using the same kebab-case names as the
options (`serve-path`, `bind`, `port`, `hidden`, `auth`, `allow-upload`,
`log-format`, `compress`, ...); `Args.from_config()` does this for an
already loaded document. Values given on the command line replace those
from the file, and flags can only switch a setting on. `--allow-all` turns on
upload, delete, search, symlink and archive.

Defaults: serve the current directory on port 5000, bound to `0.0.0.0` and
`::` (`default_addrs()`). The serve path and the `--assets` directory must
exist, the latter with an `index.html`. A TLS certificate and key must be
given together. Every such problem raises `ArgsError`.

Bind addresses that are not IP addresses are taken as unix socket paths on
POSIX systems (`BindAddr`). Zip archives of folders can be compressed at
the levels `none`, `low` (default), `medium` and `high`; `Compress`
maps them to `zipfile` methods with `to_compression()`.

## Listening (`dufs.listening`)

`interface_addrs()` lists the machine's IPv4 and IPv6 addresses,
`check_addrs()` keeps only the bind addresses whose family is present and
expands unspecified ones for display, `create_listener(ip, port)` opens a
non-blocking TCP socket (IPv6-only for IPv6 addresses), and
`format_listening()` renders the banner:

```
Listening on:
  http://127.0.0.1:5000/
  http://[::1]:5000/
```

## Body helpers (`dufs.http_utils`)

`length_limited_stream(reader, limit, capacity=4096)` yields chunks from a
binary reader until `limit` bytes have been produced or the reader is
exhausted. `body_full(content)` returns text or bytes as a complete body.

## Tests

Install with the `test` extra and run `pytest` from the project root.