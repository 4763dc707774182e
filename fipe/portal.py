"""Web portal and JSON API for batch FIPE price lookups."""
from __future__ import annotations

import argparse
import html
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import quote

import uvicorn
from fastapi import Body, FastAPI, File, Form, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from mangum import Mangum
from starlette.concurrency import run_in_threadpool

from .codes import NoValidCodesError, decode_upload, merge_texts
from .config import FipeConfig, configure_logging
from .export import ExportRow, render_export, summarize
from .model import FipeLookupModel, LookupResult

logger = logging.getLogger(__name__)

ModelFactory = Callable[[FipeConfig], FipeLookupModel]


def _default_model_factory(config: FipeConfig) -> FipeLookupModel:
    return FipeLookupModel(base_url=config.base_url, concurrency=config.concurrency, timeout=config.timeout)


def create_app(
    config: Optional[FipeConfig] = None,
    model_factory: ModelFactory = _default_model_factory,
) -> FastAPI:
    """Build the ASGI application serving the form, the JSON API and exports."""

    active_config = config or FipeConfig.from_env()
    app = FastAPI(title="FIPE Batch Lookup", version="1.0")

    # CORS: open now; restrict in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _run_batch(codes: object = None, text: Optional[str] = None) -> List[LookupResult]:
        model = model_factory(active_config)
        try:
            return model.batch_lookup(codes, text)
        finally:
            model.close()

    @app.get("/api/health")
    def health() -> dict:
        return {
            "ok": True,
            "apiBase": active_config.base_url,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    @app.post("/api/fipe")
    def lookup_codes(payload: Any = Body(default=None)) -> JSONResponse:
        """
        JSON API:
          body: { "codes": ["001004-9", "0010049"], "text": "001004-9; 005340-6" }
        Returns { "count": n, "results": [...] } in first-seen code order.
        """
        body = payload if isinstance(payload, dict) else {}
        text = body.get("text")
        try:
            results = _run_batch(body.get("codes"), text if isinstance(text, str) else None)
        except NoValidCodesError as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})

        return JSONResponse(
            content={"count": len(results), "results": [result.to_dict() for result in results]}
        )

    @app.post("/api/export")
    def export_results(
        payload: Optional[Dict[str, Any]] = Body(default=None),
        format: str = Query("json"),  # noqa: A002
    ) -> Response:
        items = (payload or {}).get("results")
        if not isinstance(items, list) or not items:
            return JSONResponse(status_code=400, content={"error": "No results to export."})
        try:
            results = [LookupResult.from_dict(item) for item in items]
            content, filename, mime_type = render_export(results, format)
        except ValueError as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})

        return Response(
            content=content.encode("utf-8"),
            media_type=mime_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get("/", response_class=HTMLResponse)
    def form() -> HTMLResponse:
        return HTMLResponse(content=_render_template(api_base=active_config.base_url))

    @app.post("/upload", response_class=HTMLResponse)
    async def upload(
        text: str = Form(""),
        file: Optional[UploadFile] = File(None),
    ) -> HTMLResponse:
        file_text = ""
        if file is not None:
            file_text = decode_upload(await file.read())

        try:
            results = await run_in_threadpool(_run_batch, None, merge_texts(text, file_text))
        except NoValidCodesError as exc:
            html_text = _render_template(api_base=active_config.base_url, text=text, error=str(exc))
            return HTMLResponse(content=html_text)

        stats = summarize(results)
        message = f"{stats['okCount']} of {stats['count']} code(s) returned data."
        html_text = _render_template(
            api_base=active_config.base_url,
            text=text,
            success=message,
            results=results,
            downloads=_build_downloads(results),
        )
        return HTMLResponse(content=html_text)

    return app


def _build_downloads(results: List[LookupResult]) -> List[Dict[str, str]]:
    downloads = []
    for fmt in ("csv", "json"):
        content, filename, mime_type = render_export(results, fmt)
        downloads.append(
            {
                "label": f"Download {fmt.upper()}",
                "filename": filename,
                "href": f"data:{mime_type},{quote(content)}",
            }
        )
    return downloads


def _render_template(
    *,
    api_base: str,
    text: str = "",
    error: Optional[str] = None,
    success: Optional[str] = None,
    results: Optional[Iterable[LookupResult]] = None,
    downloads: Optional[List[Dict[str, str]]] = None,
) -> str:
    def _escape(value: object) -> str:
        return html.escape(str(value), quote=True)

    message_html = ""
    if error:
        message_html = f'<div class="message error">{_escape(error)}</div>'
    elif success:
        message_html = f'<div class="message success">{_escape(success)}</div>'

    table_html = ""
    if results:
        row_fragments = []
        for result in results:
            row = ExportRow.from_result(result)
            cells = [row.code, row.status, row.brand, row.model, row.model_year, row.fuel, row.value,
                     row.reference_month, row.error]
            row_class = "ok" if result.ok else "failed"
            row_fragments.append(
                f'<tr class="{row_class}">' + "".join(f"<td>{_escape(cell)}</td>" for cell in cells) + "</tr>"
            )
        table_html = (
            "<table class=\"results\">"
            "<thead><tr><th>Code</th><th>Status</th><th>Brand</th><th>Model</th><th>Year</th>"
            "<th>Fuel</th><th>Value</th><th>Reference month</th><th>Error</th></tr></thead>"
            f"<tbody>{''.join(row_fragments)}</tbody>"
            "</table>"
        )

    download_html = ""
    if downloads:
        download_html = "".join(
            f'<a class="button" download="{_escape(item["filename"])}" href="{_escape(item["href"])}">'
            f"{_escape(item['label'])}</a> "
            for item in downloads
        )

    return f"""
<!DOCTYPE html>
<html lang=\"en\">
<head>
  <meta charset=\"utf-8\" />
  <title>FIPE Batch Lookup</title>
  <style>
    body {{ font-family: Arial, sans-serif; margin: 2rem auto; max-width: 1000px; color: #1f2933; }}
    h1 {{ margin-bottom: 1rem; }}
    form {{ background: #f8fafc; border: 1px solid #d2d6dc; padding: 1.5rem; border-radius: 8px; }}
    label {{ display: block; margin-bottom: 0.5rem; font-weight: 600; }}
    textarea {{ width: 100%; font-family: monospace; margin-bottom: 1rem; }}
    input[type="file"] {{ margin-bottom: 1rem; }}
    button {{ background: #2563eb; color: white; border: none; padding: 0.75rem 1.5rem; border-radius: 4px; cursor: pointer; }}
    button:hover {{ background: #1d4ed8; }}
    .message {{ margin: 1rem 0; padding: 0.75rem 1rem; border-radius: 4px; }}
    .message.error {{ background: #fee2e2; color: #991b1b; border: 1px solid #fecaca; }}
    .message.success {{ background: #dcfce7; color: #166534; border: 1px solid #bbf7d0; }}
    table.results {{ width: 100%; border-collapse: collapse; margin-top: 1.5rem; }}
    table.results th, table.results td {{ border: 1px solid #e5e7eb; padding: 0.5rem; text-align: left; }}
    table.results thead {{ background: #f1f5f9; }}
    tr.failed td {{ color: #991b1b; }}
    .button {{ display: inline-block; margin-top: 1rem; padding: 0.75rem 1.5rem; background: #059669; color: white; text-decoration: none; border-radius: 4px; }}
    .button:hover {{ background: #047857; }}
    small {{ color: #64748b; }}
  </style>
</head>
<body>
  <h1>FIPE Batch Lookup</h1>
  <p>Paste FIPE codes (format <code>000000-0</code>) separated by spaces, commas, semicolons or new lines,
  or upload a text/CSV file containing them.</p>
  {message_html}
  <form method=\"post\" enctype=\"multipart/form-data\" action=\"/upload\">
    <label for=\"text\">FIPE codes</label>
    <textarea id=\"text\" name=\"text\" rows=\"8\">{_escape(text)}</textarea>
    <label for=\"file\">Upload file (optional)</label>
    <input id=\"file\" name=\"file\" type=\"file\" accept=\".txt,.csv,text/plain,text/csv\" />
    <button type=\"submit\">Look up prices</button>
  </form>
  {table_html}
  {download_html}
  <p><small>Upstream API: {_escape(api_base)}</small></p>
</body>
</html>
"""


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    defaults = FipeConfig.from_env()
    parser = argparse.ArgumentParser(description="Run the FIPE batch lookup portal")
    parser.add_argument("--host", default=defaults.host, help="Host interface to bind the portal server to.")
    parser.add_argument("--port", type=int, default=defaults.port, help="Port to bind the portal server to.")
    parser.add_argument(
        "--base-url",
        default=defaults.base_url,
        help="FIPE price API base URL; the code is appended as the last path segment.",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=defaults.concurrency,
        help="Maximum number of lookups running at the same time.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=defaults.timeout,
        help="Timeout (in seconds) for each HTTP request to the FIPE API.",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level for the fipe logger.")
    return parser.parse_args(argv)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level.upper())
    config = FipeConfig(
        base_url=args.base_url.rstrip("/"),
        concurrency=args.concurrency,
        timeout=args.timeout,
        host=args.host,
        port=args.port,
    )
    logger.info("Serving FIPE portal on http://%s:%d (API %s)", config.host, config.port, config.base_url)
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level=args.log_level.lower())
    return 0


# =============================================================================
# ASGI app for Lambda/Web Adapter
# =============================================================================
app = create_app()
handler = Mangum(app, lifespan="off")

__all__ = ["app", "create_app", "handler", "main"]


if __name__ == "__main__":  # pragma: no cover - manual execution entrypoint
    raise SystemExit(main())
