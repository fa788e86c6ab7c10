# anubiskit

Pieces for putting a bot-filtering gate in front of a web application:
WSGI middleware, X-Forwarded-For arithmetic, an Open Graph tag cache, a
DroneBL blocklist lookup and IP-to-ASN / GeoIP rule checkers. Everything is
built on the standard library; outgoing HTTP requests for Open Graph tags
go through `httpx`.

## Modules

| Module | What it does |
| --- | --- |
| `anubiskit.hashing` | `sha256sum(text)` gives a hex SHA-256 digest; `fast_hash(text)` gives a 64-bit xxHash as lower-case hex with no padding; `xxh64(data, seed)` returns the raw integer. |
| `anubiskit.middleware` | WSGI middleware: `x_forwarded_for_update`, `x_forwarded_for_to_x_real_ip`, `remote_x_real_ip`, `unchanging_cache`, `no_store_cache`, `no_browsing`, `gzip_middleware`. `compute_xff_header` and `parse_xff` do the header work on their own. Importing it registers `.mjs` as `text/javascript` with `mimetypes`. |
| `anubiskit.logs` | `init_logging(level)`, `request_logger(environ)`, `ErrorLogFilter`, `filtered_http_logger()`. |
| `anubiskit.dnsbl` | `lookup(ip_str)` queries DroneBL and returns a `DroneBLResponse`; `reverse`, `reverse4`, `reverse6` build the reversed query names. |
| `anubiskit.ogtags` | `OGTagCache`, `OpenGraphConfig`, `MemoryStore`, `OGHandledError`, `is_og_meta_tag`. |
| `anubiskit.iptoasn` | `LookupResponse`, `IPToASNWithCache`, `MockIPToASNService`, `mock_ip_to_asn_service()`, `NotFoundError`. |
| `anubiskit.thoth` | `Client`, `ASNChecker`, `GeoIPChecker`, `auth_metadata`, `use_client`, `from_context`, `with_mock_thoth`. |
| `anubiskit.docker` | `unbreak_docker()` runs `docker network connect bridge <hostname>` and returns whether it succeeded. |

## Hashing

```python
from anubiskit.hashing import fast_hash, sha256sum

sha256sum("hello")
# '2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824'

key = fast_hash("User-Agent: bot/1.0")  # at most 16 hex digits
```

## Forwarded-for handling

`compute_xff_header(remote_addr, orig_xff_header, pref)` appends the peer
address to an incoming `X-Forwarded-For` chain, then walks it from the
right, dropping private, loopback, link-local and CGNAT addresses as the
`XFFComputePreferences` ask, and stops at the first entry that is not an
address. With `flatten=True` only the last kept hop is returned; if
nothing is kept the result is `""`.

```python
from anubiskit.middleware import XFFComputePreferences, compute_xff_header

compute_xff_header(
    "127.0.0.1:80",
    "1.1.1.1,10.0.0.1",
    XFFComputePreferences(strip_private=True),
)
# '1.1.1.1,127.0.0.1'
```

A remote address without a port raises `CantSplitHostPortError`; a host
part that is not an IP address raises `CantParseRemoteIPError` (both are
`ValueError`s).

`parse_xff(header)` returns the first public address in a header value,
or `""`.

### Middleware

Each middleware takes a WSGI application and returns a new one, so they
stack:

```python
from anubiskit.middleware import gzip_middleware, no_browsing, x_forwarded_for_update

app = x_forwarded_for_update(True, no_browsing(gzip_middleware(6, app)))
```

- `x_forwarded_for_update(strip_private, app)` rewrites
  `HTTP_X_FORWARDED_FOR` from `REMOTE_ADDR`/`REMOTE_PORT` (stripping
  loopback, CGNAT and link-local, flattening, and private addresses if
  asked). A remote address of `@` (a Unix socket) leaves the chain alone.
- `x_forwarded_for_to_x_real_ip(app)` sets `HTTP_X_REAL_IP` from
  `parse_xff` when it is not already set.
- `remote_x_real_ip(use_remote_address, bind_network, app)` sets
  `HTTP_X_REAL_IP` from `REMOTE_ADDR`, or to `127.0.0.1` when
  `bind_network` is `"unix"`; it returns `app` unchanged when disabled.
- `unchanging_cache(app, version)` adds `Cache-Control: public,
  max-age=31536000` unless `version` is `"devel"`; `no_store_cache(app)`
  adds `Cache-Control: no-store`. Neither replaces a `Cache-Control` the
  application already set.
- `no_browsing(app)` answers `404` for any path ending in `/`.
- `gzip_middleware(level, app)` compresses responses for clients whose
  `Accept-Encoding` mentions `gzip`. `level` is `-2` (Huffman only), `-1`
  (default) or `0`–`9`; anything else raises `ValueError`.

## Logging

`init_logging(level)` sends JSON records to stderr at a level named
`DEBUG`, `INFO`, `WARN` or `ERROR` (optionally with `+n`/`-n`), printing a
warning and falling back to info on a bad name; it returns the
`logging` level it used. `request_logger(environ)` returns a logger adapter
that adds the user agent, accept-language, priority, X-Forwarded-For and
X-Real-Ip to every record. `ErrorLogFilter(unwrap)` is a writable stream
that drops any message containing `context canceled` and passes the rest to
`unwrap`; `filtered_http_logger()` is a stderr logger using it.

## DNS blocklist

```python
from anubiskit.dnsbl import reverse, lookup

reverse("1.2.3.4")        # '4.3.2.1'
lookup("192.0.2.1")       # DroneBLResponse.AllGood if not listed
```

`lookup` raises `ValueError` for input that is not an IP address and lets
other resolver errors through.

## IP-to-ASN and GeoIP checks

`IPToASNWithCache(next_service)` answers reserved, private and
documentation ranges as not announced without asking `next_service`, and
remembers the CIDRs of each answer it gets for later longest-prefix
matches. `mock_ip_to_asn_service()` returns a `MockIPToASNService` with a
few canned answers (`1.1.1.1` → AS13335, US; `2.2.2.2` → AS420, CA;
`127.0.0.1` and `::1` not announced); unknown addresses raise
`NotFoundError`.

```python
from anubiskit.thoth import with_mock_thoth

with with_mock_thoth() as client:
    cloudflare = client.asn_checker_for([13335])
    cloudflare.check({"X-Real-Ip": "1.1.1.1"})    # True
    cloudflare.check({"X-Real-Ip": "2.2.2.2"})    # False

    in_us = client.geoip_checker_for(["us"])
    in_us.check({"X-Real-Ip": "127.0.0.1"})       # False: not announced
```

`check` takes a header mapping or a WSGI environ (`HTTP_X_REAL_IP`). Each
lookup is given 0.5 seconds; failures and timeouts are logged and the
check answers `False`. `hash()` returns a stable identifier for the rule.
`use_client(client)` makes a client current for a block and
`from_context()` returns it. `auth_metadata(token)` returns the
`authorization: Bearer <token>` metadata pair.

## Open Graph passthrough

```python
from anubiskit.ogtags import MemoryStore, OGTagCache, OpenGraphConfig

cache = OGTagCache(
    "http://localhost:3000",
    OpenGraphConfig(enabled=True, time_to_live=300),
    MemoryStore(),
)
tags = cache.get_og_tags("/blog/post?id=1", "example.com")
```

The target may be an `http://`/`https://` URL, a bare `host:port`, or a
`unix:` socket path; an empty target means `http://localhost`.
`get_og_tags` keeps only `<meta>` tags whose `property` or `name` starts
with `og:`, `twitter:` or `fediverse:` or is `description`, `keywords` or
`author`, and caches them for `time_to_live` seconds (per host too when
`consider_host` is set). If `override` is non-empty it is returned without
contacting the backend.

It returns `None` when the connection is refused, the backend answers
with a status other than 200 (remembered as empty), or the content type is
not HTML or XHTML. A missing `Content-Type` or a body over 8 MiB raises
`ValueError`; a timeout raises `TimeoutError` and is remembered as empty
for half the lifetime; other request failures raise `ConnectionError`.

## What this package does not do

It has no command-line program and no server of its own: the middleware
has to be mounted in a WSGI server you provide. `Client` does not open a
network connection to a remote IP-intelligence service; it works with
whatever lookup service object you give it, such as the mock one or an
`IPToASNWithCache` wrapping your own. Cached Open Graph tags live only in
process memory.