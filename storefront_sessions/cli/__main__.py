"""storefront-sessions CLI - Main Entry Point.

Commands:
    gen-secret - Generate a strong token secret
    issue      - Mint a session token for a customer id
    inspect    - Verify and decode a session token
    serve      - Run the demo storefront with uvicorn
    version    - Show version information
"""

import json
import secrets
import sys
import time
from typing import Optional

import click

from . import __version__, __cli_name__
from .utils.colors import success, error, warning, info, dim, kv, section, _CHECK, _CROSS
from storefront_sessions.faults import Fault


@click.group()
@click.version_option(version=__version__, prog_name=__cli_name__)
@click.option('--config', '-c', 'config_paths', multiple=True, type=click.Path(dir_okay=False),
              help='YAML or JSON config file (repeatable)')
@click.option('--env-file', type=click.Path(dir_okay=False), help='.env file with SFS_* keys')
@click.option('--dev', is_flag=True, help='Force dev mode (allows the insecure default secret)')
@click.pass_context
def cli(ctx, config_paths: tuple, env_file: Optional[str], dev: bool):
    """Signed cart session tokens for headless storefronts.

    \b
    Quick start:
      storefront-sessions gen-secret
      export SFS_TOKENS__SECRET_KEY=...
      storefront-sessions serve
    """
    ctx.ensure_object(dict)
    ctx.obj['config_paths'] = list(config_paths)
    ctx.obj['env_file'] = env_file
    ctx.obj['dev'] = dev


def _load_settings(ctx, **overrides):
    """Load and validate settings, exiting on configuration faults."""
    from storefront_sessions.config import Settings

    if ctx.obj.get('dev'):
        overrides['mode'] = 'dev'

    try:
        return Settings.load(
            paths=ctx.obj.get('config_paths'),
            env_file=ctx.obj.get('env_file'),
            overrides=overrides,
        ).validate()
    except Fault as e:
        error(f"  {_CROSS} {e.message}")
        sys.exit(2)


# ============================================================================
# Commands
# ============================================================================

@cli.command('gen-secret')
@click.option('--bytes', 'nbytes', type=click.IntRange(16, 128), default=32, show_default=True,
              help='Random bytes of entropy')
def gen_secret(nbytes: int):
    """
    Print a random secret for SFS_TOKENS__SECRET_KEY.

    Examples:
      storefront-sessions gen-secret
      storefront-sessions gen-secret --bytes 64
    """
    click.echo(secrets.token_urlsafe(nbytes))


@cli.command('issue')
@click.option('--customer-id', type=str, help='Customer id (new guest id if omitted)')
@click.option('--issuer', type=str, help='Override tokens.issuer')
@click.option('--ttl', type=click.IntRange(min=1), help='Override expiration.ttl (seconds)')
@click.option('--header', 'as_header', is_flag=True, help='Print as a request header line')
@click.pass_context
def issue(ctx, customer_id: Optional[str], issuer: Optional[str], ttl: Optional[int], as_header: bool):
    """
    Mint a signed session token.

    Examples:
      storefront-sessions issue
      storefront-sessions issue --customer-id 42 --header
    """
    from storefront_sessions.sessions import SessionToken, TokenCodec, generate_customer_id

    overrides = {}
    if issuer:
        overrides['tokens'] = {'issuer': issuer}
    if ttl:
        overrides['expiration'] = {'ttl': ttl, 'renewal_window': min(3600, ttl - 1)}

    settings = _load_settings(ctx, **overrides)
    policy = settings.to_policy()
    codec = TokenCodec(secret=policy.token.secret, issuer=policy.token.issuer, leeway=policy.token.leeway)

    issued_at, expires_at, _ = policy.expiration.calculate(int(time.time()))
    token = SessionToken(
        customer_id=customer_id or generate_customer_id(),
        issued_at=issued_at,
        not_before=issued_at,
        expires_at=expires_at,
        issuer=policy.token.issuer,
    )
    encoded = codec.encode(token)

    if as_header:
        click.echo(f"{policy.transport.header_name}: {policy.transport.scheme} {encoded}")
    else:
        click.echo(encoded)


@cli.command('inspect')
@click.argument('token')
@click.option('--json', 'as_json', is_flag=True, help='Machine-readable output')
@click.pass_context
def inspect(ctx, token: str, as_json: bool):
    """
    Verify a session token and show its claims.

    Accepts the bare token or a full "Session <token>" header value.
    Exits with status 1 when the token does not verify.

    Examples:
      storefront-sessions inspect eyJhbGciOi...
      storefront-sessions inspect "Session eyJhbGciOi..." --json
    """
    from storefront_sessions.sessions import VerificationFault, TokenCodec

    settings = _load_settings(ctx)
    policy = settings.to_policy()
    codec = TokenCodec(secret=policy.token.secret, issuer=policy.token.issuer, leeway=policy.token.leeway)

    prefix = f"{policy.transport.scheme} "
    if token.startswith(prefix):
        token = token[len(prefix):].strip()

    now = int(time.time())
    result = codec.decode(token, now=now)

    if isinstance(result, VerificationFault):
        if as_json:
            click.echo(json.dumps({"valid": False, "error": result.code, "message": result.message}))
        else:
            error(f"  {_CROSS} {result.message}")
            kv("code", result.code)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps({
            "valid": True,
            "customer_id": result.customer_id,
            "iss": result.issuer,
            "iat": result.issued_at,
            "nbf": result.not_before,
            "exp": result.expires_at,
            "claims": result.claims,
            "renew": policy.expiration.should_renew(result.expires_at, now),
        }))
        return

    success(f"  {_CHECK} Token verified")
    section("Claims")
    kv("customer_id", result.customer_id)
    kv("iss", result.issuer)
    kv("iat", result.issued_at)
    kv("nbf", result.not_before)
    kv("exp", result.expires_at)
    kv("remaining", f"{result.remaining(now)}s")
    for name, value in sorted(result.claims.items()):
        kv(name, json.dumps(value))
    if policy.expiration.should_renew(result.expires_at, now):
        warning("  Inside the renewal window; the next request renews it")


@cli.command('serve')
@click.option('--host', type=str, default='127.0.0.1', show_default=True, help='Bind host')
@click.option('--port', type=int, default=8000, show_default=True, help='Bind port')
@click.option('--log-level', type=click.Choice(['debug', 'info', 'warning', 'error']), default='info',
              show_default=True)
@click.pass_context
def serve(ctx, host: str, port: int, log_level: str):
    """
    Run the demo storefront.

    Examples:
      storefront-sessions serve
      storefront-sessions --dev serve --port 8080
    """
    import uvicorn
    from storefront_sessions.demo import create_app

    settings = _load_settings(ctx)
    app = create_app(settings)

    info(f"  Serving demo storefront on http://{host}:{port}")
    dim(f"  header={settings.transport.header_name} store={settings.store.type} mode={settings.mode}")
    if settings.middleware.trusted_user_header:
        warning(f"  Trusting the {settings.middleware.trusted_user_header} request header for logins")

    try:
        uvicorn.run(app, host=host, port=port, log_level=log_level)
    except KeyboardInterrupt:
        click.echo()
        info(f"  {_CHECK} Server stopped")


@cli.command('version')
def version():
    """Show version information."""
    kv(__cli_name__, __version__)
    kv("python", sys.version.split()[0])


def main():
    """Entry point for `storefront-sessions` command."""
    cli(obj={})


if __name__ == '__main__':
    main()
