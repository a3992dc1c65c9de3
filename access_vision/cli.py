"""Command-line interface for the Access Vision detection service."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from access_vision.config import (
    get_database_config_from_env,
    get_detection_config_from_env,
    get_recognition_config_from_env,
)
from access_vision.core.capture import CameraCapture, load_image_data_url
from access_vision.core.exceptions import AccessVisionError, CameraUnavailableError
from access_vision.core.gateway import RosterLogGateway
from access_vision.core.overlay import overlays_for_faces
from access_vision.core.recognition_client import MODES, RecognitionClient
from access_vision.core.session import DetectionSession
from access_vision.core.storage_postgres import PostgresGateway
from access_vision.core.types import AccessEvent, RosterEntry

app = typer.Typer(help="Continuous face detection and access logging for school gates.")


def _recognition_client(url: Optional[str]) -> RecognitionClient:
    config = get_recognition_config_from_env()
    if url:
        return RecognitionClient(url=url, api_key=config.api_key, timeout=config.timeout)
    if not config.is_configured:
        typer.echo("RECOGNITION_URL is not set (or pass --recognition-url).", err=True)
        raise typer.Exit(code=2)
    return RecognitionClient.from_config(config)


@app.command()
def serve(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
    ssl_cert: Optional[Path] = None,
    ssl_key: Optional[Path] = None,
) -> None:
    """Start the dashboard API and Socket.IO server.

    Browsers only grant camera access over HTTPS (or on localhost), so pass
    --ssl-cert/--ssl-key when the dashboard is opened from another machine.
    """
    from access_vision.web.app import run_server

    scheme = "https" if ssl_cert and ssl_key else "http"
    typer.echo(f"Starting server on {scheme}://{host}:{port}")
    run_server(
        host=host,
        port=port,
        debug=debug,
        ssl_cert=str(ssl_cert) if ssl_cert else None,
        ssl_key=str(ssl_key) if ssl_key else None,
    )


@app.command()
def init() -> None:
    """Create the people and access_logs tables if they do not exist."""
    gateway = PostgresGateway.from_config(get_database_config_from_env())
    try:
        gateway.ensure_initialized()
    except AccessVisionError as e:
        typer.echo(f"Database initialization failed: {e}", err=True)
        raise typer.Exit(code=1)
    finally:
        gateway.close()
    typer.echo("Database initialized successfully")


async def _run_watch(
    session: DetectionSession,
    client: RecognitionClient,
    duration: Optional[float],
) -> None:
    def print_event(event: AccessEvent) -> None:
        typer.echo(json.dumps(event.to_dict()))

    session.subscribe_events(print_event)
    session.start()
    try:
        if duration:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        await session.close()
        await client.aclose()


@app.command()
def watch(
    camera: int = 0,
    width: int = 640,
    height: int = 480,
    interval_ms: Optional[int] = None,
    cooldown_ms: Optional[int] = None,
    duration: Optional[float] = typer.Option(None, help="Stop after N seconds."),
    recognition_url: Optional[str] = None,
) -> None:
    """Run detection on a local camera and log access events until Ctrl-C."""
    detection = get_detection_config_from_env()
    client = _recognition_client(recognition_url)
    gateway = PostgresGateway.from_config(get_database_config_from_env())
    session = DetectionSession(
        session_id="cli",
        client=client,
        gateway=gateway,
        capture=CameraCapture(camera_index=camera, width=width, height=height),
        interval_ms=interval_ms or detection.interval_ms,
        cooldown_ms=cooldown_ms if cooldown_ms is not None else detection.cooldown_ms,
    )

    typer.echo(f"Watching camera {camera} every {session.interval_ms}ms (Ctrl-C to stop)")
    try:
        asyncio.run(_run_watch(session, client, duration))
    except CameraUnavailableError as e:
        typer.echo(f"Camera unavailable: {e}", err=True)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        typer.echo("Stopped")
    finally:
        gateway.close()


@app.command()
def detect(
    image: Path,
    mode: str = typer.Option("detect", help=f"One of: {', '.join(MODES)}"),
    with_roster: bool = typer.Option(True, help="Send the enrollable roster from the database."),
    recognition_url: Optional[str] = None,
    output_json: Optional[Path] = None,
) -> None:
    """Run one recognition round trip on an image file and print the faces."""
    if mode not in MODES:
        typer.echo(f"Unknown mode: {mode}", err=True)
        raise typer.Exit(code=2)

    roster: list[RosterEntry] = []
    if with_roster:
        gateway: RosterLogGateway = PostgresGateway.from_config(get_database_config_from_env())
        try:
            roster = gateway.list_enrollable()
        except AccessVisionError as e:
            typer.echo(f"Detection failed: roster unavailable: {e}", err=True)
            raise typer.Exit(code=1)
        finally:
            gateway.close()

    client = _recognition_client(recognition_url)
    frame = load_image_data_url(image)

    async def run_once() -> dict:
        try:
            result = await client.detect(frame, roster, mode=mode)
        finally:
            await client.aclose()
        payload = result.to_dict()
        payload["overlays"] = overlays_for_faces(result.faces)
        return payload

    try:
        payload = asyncio.run(run_once())
    except AccessVisionError as e:
        typer.echo(f"Detection failed: {e}", err=True)
        raise typer.Exit(code=1)

    text = json.dumps(payload, indent=2)
    if output_json:
        output_json.parent.mkdir(parents=True, exist_ok=True)
        output_json.write_text(text, encoding="utf-8")
        typer.echo(f"Wrote results to: {output_json}")
    typer.echo(text)
