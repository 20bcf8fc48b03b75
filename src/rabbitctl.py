#!/usr/bin/env python3
"""
CLI tool for the RabbitMQ operator
Provides a kubectl-like interface for managing RabbitMQ resources
"""

import asyncio
import base64
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import click
import yaml
from tabulate import tabulate

from admission import admit
from config import DatabaseConfig
from db import DEFAULT_NAMESPACE, DatabaseManager
from errors import ValidationError
from plugins.reconcilers.rabbitmq.conditions import READY
from plugins.reconcilers.rabbitmq.models import KIND_QUEUE, KIND_USER, KIND_VHOST

KIND_ALIASES = {
    "rabbitvhost": KIND_VHOST,
    "rabbitvhosts": KIND_VHOST,
    "vhost": KIND_VHOST,
    "vhosts": KIND_VHOST,
    "rabbituser": KIND_USER,
    "rabbitusers": KIND_USER,
    "user": KIND_USER,
    "users": KIND_USER,
    "rabbitqueue": KIND_QUEUE,
    "rabbitqueues": KIND_QUEUE,
    "queue": KIND_QUEUE,
    "queues": KIND_QUEUE,
}


def resolve_kind(value: str) -> str:
    """Map a kind name or alias to its canonical kind."""
    kind = KIND_ALIASES.get(value.lower())
    if kind is None:
        raise click.BadParameter(
            f"unknown resource kind '{value}' "
            f"(expected one of {KIND_VHOST}, {KIND_USER}, {KIND_QUEUE})"
        )
    return kind


def load_documents(stream) -> List[Dict[str, Any]]:
    """Read every non-empty YAML (or JSON) document from a stream."""
    return [doc for doc in yaml.safe_load_all(stream) if doc]


def parse_manifest(doc: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn a manifest document into the pieces the store needs.

    Raises:
        ValidationError: If the document has no kind or name, or is rejected
            at admission.
    """
    if not isinstance(doc, dict) or not doc.get("kind"):
        raise ValidationError("manifest is missing 'kind'")
    kind = KIND_ALIASES.get(str(doc["kind"]).lower())
    if kind is None:
        raise ValidationError(f"Unknown resource kind: {doc['kind']}")

    metadata = doc.get("metadata") or {}
    name = metadata.get("name")
    if not name:
        raise ValidationError(f"{kind} manifest is missing metadata.name")
    namespace = metadata.get("namespace") or DEFAULT_NAMESPACE

    spec = admit(kind, name, doc.get("spec") or {}, namespace=namespace)
    return {"kind": kind, "namespace": namespace, "name": name, "spec": spec}


def ready_status(resource: Dict[str, Any]) -> str:
    for condition in resource.get("conditions") or []:
        if condition.get("type") == READY:
            return condition.get("status", "Unknown")
    return "Unknown"


def age(timestamp: Optional[datetime]) -> str:
    """Render the time since ``timestamp`` the way kubectl does."""
    if timestamp is None:
        return "<unknown>"
    seconds = int((datetime.now(timezone.utc) - timestamp).total_seconds())
    if seconds < 120:
        return f"{seconds}s"
    if seconds < 7200:
        return f"{seconds // 60}m"
    if seconds < 172800:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def _jsonable(resource: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(resource, default=str))


class RabbitCtl:
    """CLI client that talks to the operator's object store"""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or DatabaseManager.from_config(DatabaseConfig.from_env())

    def run(self, coro_fn, *args, **kwargs):
        """Run one store operation inside a fresh connection pool."""

        async def wrapper():
            await self.db.connect()
            try:
                return await coro_fn(*args, **kwargs)
            finally:
                await self.db.close()

        return asyncio.run(wrapper())

    async def apply(self, manifests: List[Dict[str, Any]]) -> List[str]:
        await self.db.initialize_schema()
        lines = []
        for manifest in manifests:
            existing = await self.db.get_resource_by_name(
                manifest["kind"], manifest["namespace"], manifest["name"]
            )
            resource, created = await self.db.apply_resource(
                manifest["kind"],
                manifest["namespace"],
                manifest["name"],
                manifest["spec"],
            )
            if created:
                action = "created"
            elif existing and existing["generation"] != resource["generation"]:
                action = "configured"
            else:
                action = "unchanged"
            lines.append(f"{manifest['kind'].lower()}/{manifest['name']} {action}")
        return lines

    async def get(
        self, kind: str, namespace: Optional[str], name: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        if name:
            resource = await self.db.get_resource_by_name(
                kind, namespace or DEFAULT_NAMESPACE, name
            )
            return [resource] if resource else []
        return await self.db.list_resources(kind=kind, namespace=namespace)

    async def describe(
        self, kind: str, namespace: str, name: str
    ) -> Optional[Dict[str, Any]]:
        resource = await self.db.get_resource_by_name(kind, namespace, name)
        if resource is None:
            return None
        resource["events"] = await self.db.list_events(resource["id"])
        return resource

    async def delete(self, kind: str, namespace: str, name: str) -> bool:
        resource = await self.db.get_resource_by_name(kind, namespace, name)
        if resource is None:
            return False
        await self.db.delete_resource(resource["id"])
        return True

    async def reconcile(self, kind: str, namespace: str, name: str) -> bool:
        return await self.db.mark_resource_for_reconciliation(kind, namespace, name)

    async def secret(self, namespace: str, name: str) -> Optional[Dict[str, str]]:
        data = await self.db.get_secret(namespace, name)
        if data is None:
            return None
        return {
            key: base64.b64decode(value).decode("utf-8", errors="replace")
            for key, value in data.items()
        }


namespace_option = click.option(
    "--namespace", "-n", default=DEFAULT_NAMESPACE, show_default=True
)


@click.group()
@click.pass_context
def cli(ctx):
    """RabbitMQ operator CLI - kubectl-like interface for RabbitMQ resources"""
    ctx.ensure_object(dict)


def _client(ctx) -> RabbitCtl:
    if "client" not in ctx.obj:
        ctx.obj["client"] = RabbitCtl()
    return ctx.obj["client"]


@cli.command()
@click.option(
    "--filename",
    "-f",
    "filename",
    type=click.File("r"),
    required=True,
    help="YAML or JSON manifest, '-' for stdin",
)
@click.pass_context
def apply(ctx, filename):
    """Apply resources from a YAML/JSON file"""
    try:
        manifests = [parse_manifest(doc) for doc in load_documents(filename)]
    except (ValidationError, yaml.YAMLError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not manifests:
        click.echo("No resources found in file", err=True)
        sys.exit(1)

    client = _client(ctx)
    for line in client.run(client.apply, manifests):
        click.echo(line)


@cli.command()
@click.argument("kind")
@click.argument("name", required=False)
@click.option("--namespace", "-n", default=None, help="Limit to one namespace")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_context
def get(ctx, kind, name, namespace, output):
    """List resources of a kind"""
    kind = resolve_kind(kind)
    client = _client(ctx)
    resources = client.run(client.get, kind, namespace, name)

    if name and not resources:
        click.echo(f"Error: {kind.lower()} '{name}' not found", err=True)
        sys.exit(1)

    if output == "json":
        click.echo(json.dumps([_jsonable(r) for r in resources], indent=2))
        return
    if output == "yaml":
        click.echo(
            yaml.safe_dump([_jsonable(r) for r in resources], default_flow_style=False)
        )
        return

    headers = ["NAMESPACE", "NAME", "READY", "STATUS", "GENERATION", "AGE"]
    rows = [
        [
            r["namespace"],
            r["name"],
            ready_status(r),
            r["status"],
            f"{r['observed_generation']}/{r['generation']}",
            age(r.get("created_at")),
        ]
        for r in resources
    ]
    click.echo(tabulate(rows, headers=headers, tablefmt="plain"))


@cli.command()
@click.argument("kind")
@click.argument("name")
@namespace_option
@click.option(
    "--output", "-o", type=click.Choice(["text", "json", "yaml"]), default="text"
)
@click.pass_context
def describe(ctx, kind, name, namespace, output):
    """Describe a resource with its conditions and recent events"""
    kind = resolve_kind(kind)
    client = _client(ctx)
    resource = client.run(client.describe, kind, namespace, name)

    if resource is None:
        click.echo(f"Error: {kind.lower()} '{name}' not found", err=True)
        sys.exit(1)

    if output == "json":
        click.echo(json.dumps(_jsonable(resource), indent=2))
        return
    if output == "yaml":
        click.echo(yaml.safe_dump(_jsonable(resource), default_flow_style=False))
        return

    click.echo(f"Name:         {resource['name']}")
    click.echo(f"Namespace:    {resource['namespace']}")
    click.echo(f"Kind:         {resource['kind']}")
    click.echo(f"Status:       {resource['status']}")
    click.echo(f"Message:      {resource.get('status_message') or ''}")
    click.echo(
        f"Generation:   {resource['generation']} "
        f"(observed {resource['observed_generation']})"
    )
    click.echo(f"Last Reconcile: {resource.get('last_reconcile_time') or 'Never'}")
    click.echo("Spec:")
    spec_yaml = yaml.safe_dump(resource["spec"], default_flow_style=False)
    click.echo("  " + spec_yaml.rstrip("\n").replace("\n", "\n  "))

    click.echo("Conditions:")
    rows = [
        [c.get("type"), c.get("status"), c.get("reason"), c.get("message")]
        for c in resource.get("conditions") or []
    ]
    headers = ["Type", "Status", "Reason", "Message"]
    click.echo(tabulate(rows, headers=headers, tablefmt="simple"))

    click.echo("\nEvents:")
    events = resource.get("events") or []
    if not events:
        click.echo("  <none>")
        return
    rows = [
        [e["event_type"], e["reason"], age(e.get("created_at")), e["message"]]
        for e in events
    ]
    headers = ["Type", "Reason", "Age", "Message"]
    click.echo(tabulate(rows, headers=headers, tablefmt="simple"))


@cli.command()
@click.argument("kind")
@click.argument("name")
@namespace_option
@click.confirmation_option(prompt="Are you sure you want to delete this resource?")
@click.pass_context
def delete(ctx, kind, name, namespace):
    """Delete a resource (removes it from the broker too)"""
    kind = resolve_kind(kind)
    client = _client(ctx)

    if client.run(client.delete, kind, namespace, name):
        click.echo(f"{kind.lower()}/{name} marked for deletion")
    else:
        click.echo(f"Error: {kind.lower()} '{name}' not found", err=True)
        sys.exit(1)


@cli.command()
@click.argument("kind")
@click.argument("name")
@namespace_option
@click.pass_context
def reconcile(ctx, kind, name, namespace):
    """Manually trigger reconciliation for a resource"""
    kind = resolve_kind(kind)
    client = _client(ctx)

    if client.run(client.reconcile, kind, namespace, name):
        click.echo("Reconciliation triggered successfully")
    else:
        click.echo(f"Error: {kind.lower()} '{name}' not found", err=True)
        sys.exit(1)


@cli.command()
@click.argument("name")
@namespace_option
@click.option("--show-values", is_flag=True, help="Print secret values in clear text")
@click.pass_context
def secret(ctx, name, namespace, show_values):
    """Show a secret, e.g. the credentials written for a RabbitUser"""
    client = _client(ctx)
    data = client.run(client.secret, namespace, name)

    if data is None:
        click.echo(f"Error: secret '{name}' not found", err=True)
        sys.exit(1)

    rows = [
        [key, value if show_values else f"{len(value)} bytes"]
        for key, value in sorted(data.items())
    ]
    click.echo(tabulate(rows, headers=["KEY", "VALUE"], tablefmt="plain"))


if __name__ == "__main__":
    cli()
