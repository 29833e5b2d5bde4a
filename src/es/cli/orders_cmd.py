"""Order lookup commands for enrollment-sync CLI."""

from __future__ import annotations

from typing import Annotated

import typer

from es.cli.common import get_settings
from es.cli.output import cli_error, print_json
from es.config.secrets import Secret, SecretProviderError, get_secret_provider
from es.courses.mapper import map_order
from es.orders.client import OrderClientError, OrderNotFoundError, create_client

app = typer.Typer(
    name="orders",
    help="Look up orders in the commerce API (read-only).",
    no_args_is_help=True,
)


@app.command("show")
def orders_show(
    order_id: Annotated[str, typer.Argument(help="Commerce order ID.")],
    raw: Annotated[bool, typer.Option("--raw", help="Print the API payload instead of course records.")] = False,
) -> None:
    """Fetch one order and show the course records it maps to."""
    settings = get_settings()
    try:
        provider = get_secret_provider(settings.secret_provider, settings.op_vault)
        client = create_client(settings.orders_api_url, provider.get(Secret.ORDERS_API_KEY))
    except SecretProviderError as e:
        cli_error(str(e))

    try:
        order = client.fetch_order_by_id(order_id)
    except OrderNotFoundError:
        cli_error(f"Order {order_id} not found")
    except OrderClientError as e:
        cli_error(f"Commerce API error: {e}")
    finally:
        client.close()

    if raw:
        print_json(order.raw)
        return

    records = map_order(order)
    if not records:
        typer.echo(f"Order {order.order_number or order_id} has no course line items.")
        return
    print_json([record.to_dict() for record in records])
