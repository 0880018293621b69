from __future__ import annotations

import os
import re
import sys
import argparse
import threading
import json as _json
import concurrent.futures as _fut

from typing import List, Dict, Any, Optional

from ans104.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_GATEWAY,
    DEFAULT_MAX_DEPTH,
    DEFAULT_OUTPUT_BASE,
)
from ans104.errors import Ans104Error, FatalError, FetchError
from ans104.fetch import GatewaySource
from ans104.sinks import FileSink
from ans104.walker import BundleWalker, Leaf, NestedBundle, Skipped, WalkReport


_TX_ID_RE = re.compile(r"^[A-Za-z0-9_-]{43}$")


def _open_source(source: str, gateway: str):
    """Open a local bundle file, or fetch a transaction body by id.

    Args:
        source: Filesystem path or 43-character base64url transaction id.
        gateway: Gateway base URL used for transaction ids.

    Raises:
        FileNotFoundError: ``source`` is neither an existing file nor a tx id.
    """
    if os.path.isfile(source):
        return open(source, "rb")
    if _TX_ID_RE.match(source):
        return GatewaySource(source, gateway=gateway)
    raise FileNotFoundError(f"No such file or transaction id: {source}")


def _source_label(source: str) -> str:
    if os.path.isfile(source):
        return os.path.basename(source)
    return source


def _report_counts(report: Optional[WalkReport]) -> Dict[str, Any]:
    if report is None:
        return {"found": 0, "emitted": 0, "bundles": 0, "skipped": [], "bytes": 0}
    return {
        "found": report.items_found,
        "emitted": report.items_emitted,
        "bundles": report.bundles_found,
        "skipped": [{"id": i, "reason": r} for i, r in report.skipped],
        "bytes": report.bytes_emitted,
    }


def _unbundle_one(
    source: str,
    *,
    output: str,
    gateway: str,
    max_depth: int,
    chunk_size: int,
    metadata: bool,
    cancel: threading.Event,
) -> Dict[str, Any]:
    """Walk a single source into ``output``-prefixed files."""
    res: Dict[str, Any] = {"source": source, "status": "unknown"}
    sink = FileSink(output, metadata=metadata)
    walker = BundleWalker(sink, max_depth=max_depth, chunk_size=chunk_size, cancel=cancel)
    try:
        with _open_source(source, gateway) as raw:
            report = walker.walk(raw, bundled_in=_source_label(source))
    except FatalError as exc:
        res.update(_report_counts(exc.report))
        res["status"] = "fatal"
        res["message"] = str(exc)
        res["offset"] = exc.offset
        return res
    except (Ans104Error, OSError) as exc:
        res.update(_report_counts(None))
        res["status"] = "fail"
        res["message"] = str(exc)
        return res
    res.update(_report_counts(report))
    res["status"] = "ok"
    return res


def _print_result(res: Dict[str, Any], quiet: bool) -> None:
    for sk in res.get("skipped", []):
        print(f"Warning: skipped item {sk['id']}: {sk['reason']}", file=sys.stderr)
    if res["status"] == "fatal":
        where = f" at offset {res['offset']}" if res.get("offset") is not None else ""
        print(f"Error: {res['source']}: {res['message']}{where}; results are incomplete", file=sys.stderr)
    elif res["status"] == "fail":
        print(f"Error: {res['source']}: {res['message']}", file=sys.stderr)
    if not quiet or res["status"] != "ok":
        print(
            f"{res['source']}: found={res['found']} emitted={res['emitted']} "
            f"bundles={res['bundles']} skipped={len(res['skipped'])}"
        )


def cmd_unbundle(
    sources: List[str],
    *,
    output: str = DEFAULT_OUTPUT_BASE,
    gateway: str = DEFAULT_GATEWAY,
    max_depth: int = DEFAULT_MAX_DEPTH,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    jobs: int = 1,
    metadata: bool = True,
    as_json: bool = False,
    quiet: bool = False,
    cancel: Optional[threading.Event] = None,
) -> bool:
    """Decode bundles and write every leaf item under ``output``.

    Args:
        sources: Local bundle files and/or transaction ids.
        output: Output base; files are named ``<output>-<item id>``.
        gateway: Gateway base URL for transaction ids.
        max_depth: Deepest nested bundle level to expand.
        chunk_size: Largest single read while streaming payloads.
        jobs: Sources processed in parallel.
        metadata: Write ``<output>-<item id>.json`` next to each item.
        as_json: Print one JSON summary instead of text.
        quiet: Only print summaries for sources that did not complete.
        cancel: Shared event; setting it stops all walks and removes partial files.

    Returns:
        True when every source was traversed completely (skipped items allowed).
    """
    if cancel is None:
        cancel = threading.Event()

    def _runner(src: str) -> Dict[str, Any]:
        return _unbundle_one(
            src,
            output=output,
            gateway=gateway,
            max_depth=max_depth,
            chunk_size=chunk_size,
            metadata=metadata,
            cancel=cancel,
        )

    results: List[Dict[str, Any]] = []
    if jobs <= 1 or len(sources) == 1:
        for src in sources:
            results.append(_runner(src))
    else:
        with _fut.ThreadPoolExecutor(max_workers=jobs) as ex:
            futs = [ex.submit(_runner, src) for src in sources]
            try:
                for fut in futs:
                    results.append(fut.result())
            except KeyboardInterrupt:
                cancel.set()
                raise

    failed = sum(1 for r in results if r["status"] != "ok")
    if as_json:
        print(_json.dumps({"results": results, "failed": failed}))
    else:
        for r in results:
            _print_result(r, quiet)
        if len(results) > 1:
            print(f"Summary: sources={len(results)} failed={failed}")
    return failed == 0


def cmd_list(
    source: str,
    *,
    gateway: str = DEFAULT_GATEWAY,
    max_depth: int = DEFAULT_MAX_DEPTH,
    as_json: bool = False,
) -> bool:
    """Print item metadata without writing any payloads."""
    walker = BundleWalker(None, max_depth=max_depth)
    label = _source_label(source)
    fatal: Optional[FatalError] = None
    try:
        with _open_source(source, gateway) as raw:
            try:
                report = walker.walk(raw, bundled_in=label)
            except FatalError as exc:
                fatal = exc
                report = exc.report or WalkReport()
    except FetchError as exc:
        print(f"Error: {label}: {exc}", file=sys.stderr)
        return False
    if as_json:
        items = []
        for r in report.results:
            if isinstance(r, Skipped):
                items.append({"id": r.entry.id_b64, "skipped": r.reason, "bundled_in": r.bundled_in})
            else:
                items.append(r.header.to_json(bundled_in=r.bundled_in, is_bundle=isinstance(r, NestedBundle)))
        doc: Dict[str, Any] = {"items": items, "complete": report.complete}
        if fatal is not None:
            doc["error"] = str(fatal)
            doc["offset"] = fatal.offset
        print(_json.dumps(doc, indent=2))
    else:
        for r in report.results:
            indent = "  " * r.depth
            if isinstance(r, Leaf):
                print(f"{indent}item\t{r.header.payload_length}\t{r.entry.id_b64}")
            elif isinstance(r, NestedBundle):
                print(f"{indent}bundle\t{r.bundle.item_count} items\t{r.entry.id_b64}")
            else:
                print(f"{indent}skipped\t{r.entry.declared_size}\t{r.entry.id_b64}\t{r.reason}")
        print(f"Items: {report.items_found} (leaves {report.items_emitted}, bundles {report.bundles_found}, skipped {len(report.skipped)})")
        if fatal is not None:
            print(f"Error: {fatal} at offset {fatal.offset}; listing is incomplete", file=sys.stderr)
    return fatal is None


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="ans104",
        description="Decode ANS-104 bundled data transactions (nested bundles included).",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_unbundle = sub.add_parser("unbundle", help="Extract every data item of one or more bundles")
    ap_unbundle.add_argument("sources", nargs="+", help="Bundle file paths or transaction ids")
    ap_unbundle.add_argument("--output", "-o", default=DEFAULT_OUTPUT_BASE, help="Output base name (default: bundle)")
    ap_unbundle.add_argument("--gateway", default=DEFAULT_GATEWAY, help=f"Gateway URL (default: {DEFAULT_GATEWAY})")
    ap_unbundle.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH, help="Deepest nested bundle level to expand")
    ap_unbundle.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE, help="Payload read size in bytes")
    ap_unbundle.add_argument("--jobs", "-j", type=int, default=1, help="Sources processed in parallel")
    ap_unbundle.add_argument("--no-metadata", action="store_true", help="Do not write per-item .json metadata")
    ap_unbundle.add_argument("--json", action="store_true", help="Emit JSON result summary")
    ap_unbundle.add_argument("--quiet", help="limit outputs to failures only", action="store_true")

    ap_list = sub.add_parser("list", help="List bundle items without extracting payloads")
    ap_list.add_argument("source", help="Bundle file path or transaction id")
    ap_list.add_argument("--gateway", default=DEFAULT_GATEWAY, help=f"Gateway URL (default: {DEFAULT_GATEWAY})")
    ap_list.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH, help="Deepest nested bundle level to expand")
    ap_list.add_argument("--json", action="store_true", help="Emit item metadata as JSON")

    args = ap.parse_args(argv)
    cancel = threading.Event()
    try:
        if args.cmd == "unbundle":
            if args.chunk_size <= 0:
                raise ValueError("--chunk-size must be positive")
            success = cmd_unbundle(
                args.sources,
                output=args.output,
                gateway=args.gateway,
                max_depth=args.max_depth,
                chunk_size=args.chunk_size,
                jobs=args.jobs,
                metadata=not args.no_metadata,
                as_json=args.json,
                quiet=args.quiet,
                cancel=cancel,
            )
        elif args.cmd == "list":
            success = cmd_list(args.source, gateway=args.gateway, max_depth=args.max_depth, as_json=args.json)
        else:
            raise RuntimeError("Unknown command")
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        cancel.set()
        print("Interrupted; partial outputs removed", file=sys.stderr)
        sys.exit(130)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (Ans104Error, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
