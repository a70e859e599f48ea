"""Compile-time query validation, offline or against a live database.

Offline mode checks every embedded query statement against metadata
recorded ahead of time under ``.sqlx/query-<sha256>.json``.  Online mode
needs a reachable database; in a sandbox without one it fails with a
connection-refused-class ``LiveDependencyError``.
"""

from __future__ import annotations

import json
import logging
import re
import socket
from collections.abc import Callable
from pathlib import Path
from urllib.parse import urlsplit

from reprobuild.core.hasher import sha256_hex
from reprobuild.errors import LiveDependencyError, QueryMetadataError
from reprobuild.models.build import BuildFlags, SourceSet

logger = logging.getLogger(__name__)

METADATA_DIR = ".sqlx"

# query!("..."), query_as!(Type, "..."), query_scalar!(r#"..."#), ...
DEFAULT_QUERY_PATTERN = re.compile(
    r"""query(?:_as|_scalar|_file)?(?:_unchecked)?!\(\s*
        (?:[A-Za-z_][\w:<>]*\s*,\s*)?
        (?:r\#"(?P<raw>.*?)"\#|"(?P<plain>(?:[^"\\]|\\.)*)")
    """,
    re.DOTALL | re.VERBOSE,
)

DEFAULT_SOURCE_SUFFIXES: tuple[str, ...] = (".rs",)

_SIMPLE_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "\\": "\\", '"': '"', "'": "'", "0": "\0"}

_RUST_ESCAPE_RE = re.compile(
    r"""\\(?:
        u\{(?P<unicode>[0-9A-Fa-f_]{1,8})\}
        |x(?P<byte>[0-7][0-9A-Fa-f])
        |(?P<continuation>\r?\n\s*)
        |(?P<simple>.)
    )""",
    re.DOTALL | re.VERBOSE,
)

Connector = Callable[[tuple[str, int], float], socket.socket]


def unescape_rust(literal: str) -> str:
    """Decode the escapes of a Rust (non-raw) string literal body.

    Raises ``QueryMetadataError`` for escapes Rust itself would reject.
    """

    def _replace(match: re.Match[str]) -> str:
        if match.group("unicode") is not None:
            code = int(match.group("unicode").replace("_", ""), 16)
            if code > 0x10FFFF or 0xD800 <= code <= 0xDFFF:
                raise QueryMetadataError(f"Invalid unicode escape {match.group(0)!r} in query literal")
            return chr(code)
        if match.group("byte") is not None:
            return chr(int(match.group("byte"), 16))
        if match.group("continuation") is not None:
            return ""
        simple = _SIMPLE_ESCAPES.get(match.group("simple"))
        if simple is None:
            raise QueryMetadataError(f"Unknown escape {match.group(0)!r} in query literal")
        return simple

    return _RUST_ESCAPE_RE.sub(_replace, literal)


def offline_env(flags: BuildFlags) -> dict[str, str]:
    """Compiler environment entries derived from the query-check flag."""
    return {"SQLX_OFFLINE": "true" if flags.offline_query_check else "false"}


class QueryValidator:
    """Validates embedded queries in a ``SourceSet``.

    Parameters
    ----------
    database_url:
        Used only in online mode.
    connect_timeout:
        Seconds to wait for the database socket in online mode.
    connector:
        Opens the database connection; defaults to
        ``socket.create_connection``.
    """

    def __init__(
        self,
        database_url: str = "postgres://localhost:5432/postgres",
        *,
        connect_timeout: float = 2.0,
        pattern: re.Pattern[str] = DEFAULT_QUERY_PATTERN,
        suffixes: tuple[str, ...] = DEFAULT_SOURCE_SUFFIXES,
        connector: Connector | None = None,
    ) -> None:
        self.database_url = database_url
        self.connect_timeout = connect_timeout
        self._pattern = pattern
        self._suffixes = suffixes
        self._connector = connector or socket.create_connection

    # ------------------------------------------------------------------
    # Query extraction
    # ------------------------------------------------------------------

    def extract_queries(self, source: SourceSet, root: Path | None = None) -> list[str]:
        """Return every embedded query statement, sorted and de-duplicated.

        Files are read from *root* when given (a materialized copy of
        *source*), otherwise from ``source.root``.
        """
        base = Path(root) if root is not None else source.root
        queries: set[str] = set()
        for entry in source.entries:
            if not entry.path.endswith(self._suffixes):
                continue
            text = (base / entry.path).read_text(encoding="utf-8", errors="replace")
            for match in self._pattern.finditer(text):
                raw = match.group("raw")
                queries.add(raw if raw is not None else unescape_rust(match.group("plain")))
        return sorted(queries)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, source: SourceSet, flags: BuildFlags, root: Path | None = None) -> int:
        """Validate all queries in *source*; return how many were checked."""
        base = Path(root) if root is not None else source.root
        queries = self.extract_queries(source, base)
        if flags.offline_query_check:
            self._validate_offline(source, base, queries)
        else:
            self._validate_online(queries)
        return len(queries)

    def _validate_offline(self, source: SourceSet, base: Path, queries: list[str]) -> None:
        missing: list[str] = []
        for query in queries:
            digest = sha256_hex(query.encode("utf-8"))
            rel = f"{METADATA_DIR}/query-{digest}.json"
            path = base / rel
            if rel not in source.paths or not path.is_file():
                missing.append(digest[:12])
                continue
            try:
                recorded = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise QueryMetadataError(f"Malformed query metadata {rel}: {exc}") from exc
            if not isinstance(recorded, dict):
                raise QueryMetadataError(f"Malformed query metadata {rel}: expected a JSON object")
            if recorded.get("query", query) != query:
                missing.append(digest[:12])

        if missing:
            raise QueryMetadataError(
                f"{len(missing)} quer{'y' if len(missing) == 1 else 'ies'} lack recorded "
                f"metadata in {METADATA_DIR}/ (hashes: {', '.join(missing)}). "
                "Regenerate it with `cargo sqlx prepare` against a live database."
            )
        logger.info("Offline query validation: %d queries matched recorded metadata", len(queries))

    def _validate_online(self, queries: list[str]) -> None:
        parts = urlsplit(self.database_url)
        host = parts.hostname or "localhost"
        port = parts.port or 5432
        logger.info("Online query validation: connecting to %s:%d", host, port)
        try:
            conn = self._connector((host, port), self.connect_timeout)
        except OSError as exc:
            raise LiveDependencyError(
                f"error communicating with database: {exc.strerror or exc} "
                f"({host}:{port})"
            ) from exc
        conn.close()
        logger.info("Online query validation: database reachable, %d queries delegated", len(queries))
