"""Static server for published HTML reports (``/report/<name>.html``)."""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Tuple

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import FileResponse, PlainTextResponse, Response
from starlette.routing import Route

from config import load_config

logger = logging.getLogger("report_server")

REPORT_HEADERS = {
    "X-Frame-Options": "SAMEORIGIN",
    "Cache-Control": "public, max-age=3600",
}


def resolve_report_path(report_dir: Path, filename: str) -> Tuple[Optional[Path], int]:
    """Map a request filename to a file in ``report_dir``.

    Returns ``(path, 200)`` or ``(None, status)`` with 400 for names that are
    not ``.html`` files, 403 for names escaping the directory, 404 when absent.
    """
    if not filename.endswith(".html"):
        return None, 400
    root = report_dir.resolve()
    candidate = (root / filename).resolve()
    if "/" in filename or "\\" in filename or candidate.parent != root:
        return None, 403
    if not candidate.is_file():
        return None, 404
    return candidate, 200


def create_app(report_dir: Path) -> Starlette:
    async def serve_report(request: Request) -> Response:
        filename = request.path_params["filename"]
        path, status = resolve_report_path(report_dir, filename)
        if path is None:
            logger.info(f"Report request {filename!r} rejected with {status}")
            return PlainTextResponse({400: "Invalid report name", 403: "Forbidden", 404: "Report not found"}[status], status_code=status)
        return FileResponse(path, media_type="text/html", headers=REPORT_HEADERS)

    async def handle_root(request: Request) -> Response:
        return PlainTextResponse("automation report server")

    routes = [
        Route("/", endpoint=handle_root, methods=["GET"]),
        Route("/report/{filename}", endpoint=serve_report, methods=["GET"]),
    ]
    return Starlette(routes=routes)


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve published automation reports over HTTP")
    parser.add_argument("--bind", default="127.0.0.1:8000", help="host:port to listen on")
    parser.add_argument("--config", help="Path to config file")
    parser.add_argument("--report-dir", help="Override the report directory")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    overrides = {"report_dir": args.report_dir} if args.report_dir else None
    config = load_config(Path(args.config) if args.config else None, overrides)
    host, port = args.bind.split(":")
    logger.info(f"Serving {config.reporting.report_dir} on http://{host}:{port}/report/")
    uvicorn.run(create_app(config.reporting.report_dir), host=host, port=int(port), log_level="info")


if __name__ == "__main__":
    main()
