#!/usr/bin/env python3
"""packetbotctl: operator helper for inspecting and running retention passes."""

from __future__ import annotations

from typing import Optional

import typer
from rich import print
from rich.console import Console
from rich.table import Table
from rich.text import Text

from packetbot.common.config import (
    DEFAULT_CONFIG_PATH,
    ConfigError,
    ConfigLoader,
    LoggingSettings,
    load_discord_settings,
    load_retention_settings,
)
from packetbot.common.discord_client import ChatClient, ChatClientError, DiscordClient
from packetbot.common.logger import configure_logging
from packetbot.retention.enforcer import RetentionEnforcer
from packetbot.retention.policy import iter_tags, parse_policy

APP = typer.Typer(add_completion=False, help="packetbot retention operator helper")
CONSOLE = Console()


def build_client(config: str) -> ChatClient:
    try:
        settings = load_discord_settings(ConfigLoader.load(config))
    except ConfigError as exc:
        print(f"[bold red]Config error:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc
    client = DiscordClient(
        token=settings.token,
        api_base=settings.api_base,
        timeout=settings.timeout_s,
        max_attempts=settings.max_attempts,
    )
    try:
        client.connect()
    except ChatClientError as exc:
        print(f"[bold red]Unable to connect:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    return client


@APP.command("check-topic")
def check_topic(topic: str = typer.Argument(..., help="Channel topic text to evaluate")) -> None:
    """Show how a channel topic's tags are interpreted."""

    configure_logging("packetbotctl", LoggingSettings(level="WARNING"))
    tags = list(iter_tags(topic))
    policy = parse_policy(topic, where="topic")
    table = Table(title="Topic tags", show_header=False)
    table.add_row("Tags", Text(", ".join(f"[{tag}]" for tag in tags) or "-"))
    table.add_row("Expire", f"{policy.expire_in_days}d" if policy else "no expiry")
    CONSOLE.print(table)


@APP.command()
def policies(
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to packetbot YAML configuration"),
) -> None:
    """List every text channel the bot can see with its retention policy."""

    configure_logging("packetbotctl", LoggingSettings(level="WARNING"))
    client = build_client(config)
    table = Table(title="Channel retention policies")
    table.add_column("Guild")
    table.add_column("Channel")
    table.add_column("Expire")
    try:
        for guild_id in client.guild_ids():
            guild = client.get_guild(guild_id)
            for channel in client.get_guild_channels(guild_id):
                if not channel.is_text:
                    continue
                policy = parse_policy(channel.topic, where=f"{guild.name}/#{channel.name}")
                table.add_row(Text(guild.name), Text(f"#{channel.name}"), f"{policy.expire_in_days}d" if policy else "-")
    except ChatClientError as exc:
        print(f"[bold red]Request failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    CONSOLE.print(table)


@APP.command()
def sweep(
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to packetbot YAML configuration"),
    dry_run: bool = typer.Option(True, "--dry-run/--apply", help="Only report what would be deleted"),
    max_per_pass: Optional[int] = typer.Option(None, min=1, help="Override the per-channel deletion cap"),
) -> None:
    """Run a single retention pass now."""

    configure_logging("packetbotctl", LoggingSettings(level="INFO"))
    try:
        settings = load_retention_settings(ConfigLoader.load(config))
    except ConfigError as exc:
        print(f"[bold red]Config error:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc
    settings.dry_run = dry_run
    if max_per_pass is not None:
        settings.max_per_pass = max_per_pass

    report = RetentionEnforcer(build_client(config), settings).run_pass()

    table = Table(title="Retention pass" + (" (dry run)" if dry_run else ""), show_header=False)
    table.add_row("Guilds", str(report.guilds))
    table.add_row("Channels with policy", str(report.channels_scanned))
    table.add_row("Selected", str(report.selected))
    table.add_row("Deleted", str(report.deleted))
    table.add_row("Failures", str(report.guild_failures + report.channel_failures + report.delete_failures))
    CONSOLE.print(table)


if __name__ == "__main__":
    APP()
