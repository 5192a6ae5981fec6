from __future__ import annotations

import argparse
import json
import os
import sys

import requests

from amgr.settings import ENV_PREFIX, ConfigError, load_settings, parse_duration


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _add_serve_args(p: argparse.ArgumentParser) -> None:
    # Defaults are None so unset flags fall back to Settings defaults.
    p.add_argument("--addr", help="address to listen on")
    p.add_argument("--port", type=int, help="port to listen on")
    p.add_argument("--debug", action="store_true", default=None, help="enable debug logging")
    p.add_argument("--log-format", choices=["console", "json"])
    p.add_argument("--dir", help="directory where files will be managed")
    p.add_argument(
        "--external-dir",
        help="if running in a container, the directory on the host that maps to --dir",
    )
    p.add_argument("--db-path", help="sqlite file for the event log")
    p.add_argument("--orchestrator", choices=["marathon", "docker"])
    p.add_argument("--marathon-hosts", help='comma-delimited list of marathon hosts, "host:port"')
    p.add_argument("--marathon-query-interval", type=parse_duration, help="time between registry refreshes, e.g. 10s")
    p.add_argument("--marathon-timeout", type=parse_duration, help="marathon request timeout, e.g. 10s")
    p.add_argument("--docker-label", help="only consider containers carrying this label")
    p.add_argument("--key-mode", choices=["path", "name"], help="match volume host paths or artifact names")
    p.add_argument("--queue-capacity", type=int, help="max pending changes before uploads are rejected")
    p.add_argument("--restart-batch-count", type=int, help="flush restarts after this many changes")
    p.add_argument("--restart-batch-timeout", type=parse_duration, help="flush restarts at least this often")
    p.add_argument(
        "--flush-on-stop",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="restart the pending partial batch on shutdown",
    )


def _serve(args: argparse.Namespace) -> int:
    from main import serve

    overrides = {
        "addr": args.addr,
        "port": args.port,
        "debug": args.debug,
        "log_format": args.log_format,
        "dir": args.dir,
        "external_dir": args.external_dir,
        "db_path": args.db_path,
        "orchestrator": args.orchestrator,
        "marathon_hosts": args.marathon_hosts,
        "marathon_query_interval_s": args.marathon_query_interval,
        "marathon_timeout_s": args.marathon_timeout,
        "docker_label": args.docker_label,
        "key_mode": args.key_mode,
        "queue_capacity": args.queue_capacity,
        "restart_batch_count": args.restart_batch_count,
        "restart_batch_timeout_s": args.restart_batch_timeout,
        "flush_on_stop": args.flush_on_stop,
    }
    try:
        settings = load_settings(overrides)
    except ConfigError as e:
        print(f"problem with application configuration. {e}", file=sys.stderr)
        return 1
    serve(settings)
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        description="Artifact Manager CLI",
        epilog=(
            "Environment variables override any serve flag. They are the flag names upper-cased, "
            f"with hyphens replaced by underscores and prefixed with {ENV_PREFIX!r}."
        ),
    )
    p.add_argument("--api", default="http://localhost:8900", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_serve = sub.add_parser("serve", help="Run the artifact manager server")
    _add_serve_args(s_serve)

    s_up = sub.add_parser("upload", help="Upload an artifact")
    s_up.add_argument("file")
    s_up.add_argument("--name", help="file name in the managed directory (default: basename of FILE)")
    s_up.add_argument("--src", help="path (relative to the managed directory) the symlink should point to")
    s_up.add_argument("--dst", help="symlink name to create or replace")

    s_look = sub.add_parser("lookup", help="Show workloads depending on a key")
    s_look.add_argument("key")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--kind", choices=["poll", "upload", "restart"])

    args = p.parse_args(argv)

    if args.cmd == "serve":
        return _serve(args)

    base = args.api.rstrip("/")

    if args.cmd == "upload":
        params = {"name": args.name or os.path.basename(args.file)}
        if args.src or args.dst:
            params.update({"src": args.src, "dst": args.dst})
        with open(args.file, "rb") as f:
            r = requests.post(f"{base}/", params=params, data=f, timeout=300)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "lookup":
        _print(requests.get(f"{base}/dependencies", params={"key": args.key}, timeout=10).json())
        return 0

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.kind:
            params["kind"] = args.kind
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
