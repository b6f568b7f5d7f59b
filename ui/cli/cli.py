"""CLI entrypoint for app-tidy."""

from __future__ import annotations

import logging

import typer

from ui.cli import commands

app = typer.Typer(help="Quit windowless apps and undo recent closes")
whitelist_app = typer.Typer(help="Keep-alive whitelist commands")
config_app = typer.Typer(help="Configuration commands")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("run")
def run_cmd() -> None:
    """Run the daemon in the foreground."""
    commands.run()


@app.command("scan")
def scan_cmd() -> None:
    """Show running apps and their window counts."""
    commands.scan()


@whitelist_app.command("list")
def whitelist_list_cmd() -> None:
    """List kept-alive apps."""
    commands.whitelist_list()


@whitelist_app.command("add")
def whitelist_add_cmd(
    app_id: str = typer.Argument(..., help="Bundle identifier, e.g. com.spotify.client"),
) -> None:
    """Never quit an app."""
    commands.whitelist_add(app_id=app_id)


@whitelist_app.command("remove")
def whitelist_remove_cmd(app_id: str = typer.Argument(..., help="Bundle identifier")) -> None:
    """Allow an app to be quit again."""
    commands.whitelist_remove(app_id=app_id)


@config_app.command("show")
def config_show_cmd() -> None:
    """Show effective configuration."""
    commands.config_show()


@config_app.command("set")
def config_set_cmd(
    key: str = typer.Argument(..., help="Preference name, e.g. app_timeout_seconds"),
    value: str = typer.Argument(..., help="New value"),
) -> None:
    """Persist a user preference."""
    commands.config_set(key=key, value=value)


app.add_typer(whitelist_app, name="whitelist")
app.add_typer(config_app, name="config")


def main() -> None:
    """Console script entrypoint."""
    app()


if __name__ == "__main__":
    main()
