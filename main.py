import argparse
import json
import logging
from pathlib import Path
from string import Template
from typing import List, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from candle_query import MissingParameter, parse_candle_query, resolve_duration
from candle_store import CandleDataError, CandleRepository, CsvCandleRepository
from settings import Settings, load_settings


UP_COLOR = "#089981"
DOWN_COLOR = "#f23645"
UP_VOLUME_COLOR = "rgba(8, 153, 129, 0.4)"
DOWN_VOLUME_COLOR = "rgba(242, 54, 69, 0.4)"
SMA_COLOR = "#2962ff"
EMA_COLOR = "#ff9800"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

CHART_COLORS = {
    "up_color": UP_COLOR,
    "down_color": DOWN_COLOR,
    "up_volume_color": UP_VOLUME_COLOR,
    "down_volume_color": DOWN_VOLUME_COLOR,
    "sma_color": SMA_COLOR,
    "ema_color": EMA_COLOR,
}

def api_error(message: str, code: int) -> JSONResponse:
    """Every failure response goes through here: ``{"error": ..., "code": ...}``."""
    return JSONResponse(status_code=code, content={"error": message, "code": code})


def load_chart_template(path: Path) -> Template:
    """Read the chart page once; a missing file must stop startup."""
    return Template(path.read_text(encoding="utf-8"))


def render_chart_page(template: Template) -> str:
    return template.substitute(CHART_COLORS)


router = APIRouter()


@router.get("/api/candle/")
def api_candle(request: Request) -> Response:
    settings: Settings = request.app.state.settings
    repository: CandleRepository = request.app.state.repository

    try:
        query = parse_candle_query(request.query_params)
    except MissingParameter as exc:
        return api_error(exc.message, exc.status_code)

    duration = resolve_duration(query.duration_key, settings.durations)
    try:
        series = repository.get_all_candle(query.product_code, duration, query.limit)
    except CandleDataError as exc:
        logging.warning(
            "Candles unavailable for %s (duration=%s, limit=%d): %s",
            query.product_code,
            query.duration_key,
            query.limit,
            exc,
        )
        return api_error(str(exc), status.HTTP_503_SERVICE_UNAVAILABLE)

    if query.sma_requested:
        for period in query.sma_periods:
            series.add_sma(period)
    if query.ema_requested:
        for period in query.ema_periods:
            series.add_ema(period)

    try:
        body = json.dumps(series.to_records(), allow_nan=False)
    except (TypeError, ValueError) as exc:
        logging.error("Failed to serialize candles for %s: %s", query.product_code, exc)
        return api_error(str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response(content=body, media_type="application/json")


@router.get("/chart/", response_class=HTMLResponse)
@router.get("/chart/{rest:path}", response_class=HTMLResponse)
def view_chart(request: Request, rest: str = "") -> Response:
    """Serve the single-page chart UI."""
    try:
        page = render_chart_page(request.app.state.chart_template)
    except (KeyError, ValueError) as exc:
        logging.error("Failed to render chart page: %s", exc)
        return api_error(str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTMLResponse(page)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = "Not found" if exc.status_code == status.HTTP_404_NOT_FOUND else str(exc.detail)
    return api_error(message, exc.status_code)


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[CandleRepository] = None,
) -> FastAPI:
    if settings is None:
        settings = load_settings()

    app = FastAPI(
        title="Candle Chart",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.repository = repository or CsvCandleRepository(settings.data_dir)
    app.state.chart_template = load_chart_template(settings.template_path)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.include_router(router)
    return app


app = create_app()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve candle data and the chart page.")
    parser.add_argument("--config", type=Path, help="Path to config.ini")
    parser.add_argument("--host", help="Override the listen host")
    parser.add_argument("--port", type=int, help="Override the listen port")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    settings = load_settings(args.config)
    overrides = {"host": args.host, "port": args.port}
    settings = settings.model_copy(update={k: v for k, v in overrides.items() if v is not None})
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    logging.info(
        "Serving %s on %s:%d (durations: %s)",
        settings.data_dir,
        settings.host,
        settings.port,
        ", ".join(settings.durations),
    )
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
