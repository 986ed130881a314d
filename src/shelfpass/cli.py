"""Typer CLI for Shelfpass."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="shelfpass", help="Shelfpass: library access QR tokens")
console = Console()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the Shelfpass API server."""
    import uvicorn
    from shelfpass.app import create_app
    from shelfpass.common.config import get_settings
    from shelfpass.common.logging import setup_logging

    setup_logging(get_settings().log_level)
    console.print(f"[bold green]Starting Shelfpass on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def issue(
    user_id: str = typer.Argument(..., help="Member id"),
    name: str = typer.Option(..., help="Full name"),
    email: str = typer.Option(..., help="Email"),
    subscription_until: str = typer.Option("", help="Subscription end date (YYYY-MM-DD)"),
    role: str = typer.Option("student", help="student or admin"),
    last_version: int = typer.Option(0, help="Last issued version for this member"),
    png: Optional[Path] = typer.Option(None, help="Also write the QR image here"),
):
    """Issue a token offline from profile fields (no DB, no eligibility check)."""
    from shelfpass.common.config import get_settings
    from shelfpass.deps import get_token_issuer
    from shelfpass.tokens.issuer import MemberSnapshot

    settings = get_settings()
    token = get_token_issuer().issue(
        MemberSnapshot(
            user_id=user_id,
            full_name=name,
            email=email,
            subscription_valid_until=subscription_until,
            role=role,
        ),
        last_version=last_version,
    )
    console.print_json(token.payload)
    console.print(f"  Expires: {token.claim.expires_at}  Refresh at: {token.refresh_at.isoformat()}")

    if png is not None:
        from shelfpass.tokens.render import render_png

        png.write_bytes(render_png(
            token.payload,
            error_correction=settings.qr_error_correction,
            box_size=settings.qr_box_size,
            border=settings.qr_border,
        ))
        console.print(f"  QR image written to {png}")


@app.command()
def inspect(
    payload: str = typer.Argument(..., help="Scanned payload JSON, or @file"),
):
    """Decode a payload offline: format, hash, decryption and expiry only."""
    from shelfpass.common.exceptions import ExpiredTokenError, ShelfpassError
    from shelfpass.deps import get_key_material
    from shelfpass.tokens.codec import decode_envelope, parse_payload

    if payload.startswith("@"):
        payload = Path(payload[1:]).read_text(encoding="utf-8")

    try:
        claim = decode_envelope(parse_payload(payload), get_key_material())
        if datetime.now(timezone.utc) > claim.expires_at_dt:
            raise ExpiredTokenError()
    except ShelfpassError as e:
        console.print(f"[bold red]{e.code}[/bold red] ({e.reason}): {e.message}")
        raise typer.Exit(1)

    table = Table(show_header=False)
    for key, value in claim.to_dict().items():
        table.add_row(key, str(value))
    console.print("[bold green]VALID[/bold green] (live member state not checked)")
    console.print(table)


@app.command()
def vector(
    out: Optional[Path] = typer.Option(None, help="Write the vector JSON here"),
):
    """Emit a conformance vector (fixed claim, configured key) for client test suites."""
    from shelfpass.deps import get_key_material
    from shelfpass.tokens.codec import UserClaim, canonical_json, encode_claim, format_timestamp

    keys = get_key_material()
    generated = datetime(2025, 1, 1, 9, 30, tzinfo=timezone.utc)
    claim = UserClaim(
        user_id="7f3c2a10-0000-4000-8000-000000000001",
        full_name="Ada Lovelace",
        email="ada@example.com",
        subscription_valid_until="2025-12-31",
        role="student",
        generated_at=format_timestamp(generated),
        expires_at=format_timestamp(generated + timedelta(minutes=20)),
        qr_id="qr_1735723800000_abc123xyz",
        version=1,
    )
    envelope = encode_claim(claim, keys)
    doc = {
        "key_fingerprint": keys.fingerprint,
        "claim": claim.to_dict(),
        "canonical_json": canonical_json(claim),
        "envelope": envelope.to_dict(),
        "payload": envelope.to_payload(),
    }
    text = json.dumps(doc, indent=2, ensure_ascii=False)
    if out is not None:
        out.write_text(text + "\n", encoding="utf-8")
        console.print(f"Vector written to {out}")
    else:
        console.print_json(text)


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check Shelfpass server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] v{data['version']}")
    except (httpx.HTTPError, ValueError, KeyError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
