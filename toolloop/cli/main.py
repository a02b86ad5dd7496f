"""
CLI 主入口 - 使用 Click 框架
CLI main entry - using Click framework.
"""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
from collections.abc import Iterable
from typing import Any

import click

from toolloop.config.defaults import CONFIG_FILE, build_default_config
from toolloop.config.manager import ConfigManager

logger = logging.getLogger("toolloop.cli")


def _load_capabilities(specs: Iterable[str]) -> list[Any]:
    """
    加载 ``module:attr`` 形式的能力工厂（返回 Capability 列表的可调用对象或列表）
    Load ``module:attr`` capability factories (a callable returning
    capabilities, or the list itself).
    """
    capabilities: list[Any] = []
    for spec in specs:
        module_name, _, attr = spec.partition(":")
        if not module_name or not attr:
            raise click.BadParameter(f"expected 'module:attr', got '{spec}'", param_hint="--load")
        try:
            target = getattr(importlib.import_module(module_name), attr)
        except (ImportError, AttributeError) as exc:
            raise click.BadParameter(f"cannot load '{spec}': {exc}", param_hint="--load") from exc
        loaded = target() if callable(target) else target
        capabilities.extend(loaded)
    return capabilities


def _load_history(path: str | None) -> tuple[Any, ...]:
    """
    读取 JSON 聊天历史（消息数组，或带 ``messages`` 键的对象）
    Read a JSON chat history: an array of messages, or an object with a
    ``messages`` key.
    """
    from toolloop.agent.types import ChatMessage

    if path is None:
        return ()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise click.BadParameter(f"cannot read '{path}': {exc}", param_hint="--history") from exc

    if isinstance(data, dict):
        data = data.get("messages")
    if not isinstance(data, list) or not all(isinstance(m, dict) for m in data):
        raise click.BadParameter(
            "expected a JSON array of message objects", param_hint="--history"
        )
    try:
        return tuple(ChatMessage.from_dict(m) for m in data)
    except ValueError as exc:
        raise click.BadParameter(f"invalid message: {exc}", param_hint="--history") from exc


async def _load_config(config_path: str) -> ConfigManager:
    config = ConfigManager(build_default_config(), config_path)
    await config.load()
    return config


def _build_registry(config: ConfigManager, capabilities: list[Any]):
    from toolloop.capabilities.factory import build_registry, remote_catalog_from_config

    remote_conf = config.section("capabilities").get("remote_catalog") or {}
    return build_registry(
        capabilities,
        enabled_categories=config.get("capabilities.enabled_categories") or None,
        remote_catalog=remote_catalog_from_config(remote_conf),
        ttl_seconds=float(remote_conf.get("ttl_seconds", 30.0)),
    )


@click.group()
def cli() -> None:
    """ToolLoop - 智能体工具编排引擎"""
    pass


@cli.command()
@click.argument("message")
@click.option("--config", "config_path", default=CONFIG_FILE, help="配置文件路径")
@click.option("--max-steps", type=int, default=None, help="最大步骤数")
@click.option("--max-calls", type=int, default=None, help="最大能力调用数")
@click.option("--dev", is_flag=True, help="开发模式：返回全部步骤")
@click.option("--debug", is_flag=True, help="输出调试日志")
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出完整结果")
@click.option(
    "--history",
    "history_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON 聊天历史文件",
)
@click.option("--load", "load_specs", multiple=True, help="能力工厂 module:attr")
def run(
    message: str,
    config_path: str,
    max_steps: int | None,
    max_calls: int | None,
    dev: bool,
    debug: bool,
    as_json: bool,
    load_specs: tuple[str, ...],
    history_path: str | None,
) -> None:
    """执行一次编排请求 / Run one orchestration request."""
    from toolloop.agent.runner import Orchestrator
    from toolloop.agent.types import OrchestrationRequest
    from toolloop.config.settings import OrchestratorSettings
    from toolloop.errors import ToolLoopError
    from toolloop.intellect.registry import ProviderRegistry
    from toolloop.kernel.logging import get_log_manager

    capabilities = _load_capabilities(load_specs)
    history = _load_history(history_path)

    async def main() -> int:
        config = await _load_config(config_path)
        log_manager = get_log_manager()
        log_manager.configure_from_settings(config.section("logging"))
        if debug:
            log_manager.set_level("DEBUG")

        if max_steps is not None:
            config.set("orchestrator.max_steps", max_steps)
        if max_calls is not None:
            config.set("orchestrator.max_calls", max_calls)
        settings = OrchestratorSettings.from_config(config)

        providers = ProviderRegistry()
        providers.initialize_from_config(config.get("providers", []) or [])
        provider = providers.active
        if provider is None:
            raise click.ClickException(
                f"没有可用的补全提供者，请在 {config_path} 的 providers 中配置"
            )

        registry = _build_registry(config, capabilities)
        orchestrator = Orchestrator(provider, registry, settings=settings)
        request = OrchestrationRequest(
            user_message=message,
            chat_history=history,
            budgets=settings.budgets,
            development_mode=dev or settings.development_mode,
        )
        try:
            result = await orchestrator.run(
                request, progress=lambda m: click.echo(m, err=True)
            )
        finally:
            await providers.close_all()

        if as_json:
            click.echo(json.dumps(result.to_dict(), ensure_ascii=False, indent=2, default=str))
        else:
            click.echo(result.final_answer)
        return 0 if result.success else 1

    try:
        exit_code = asyncio.run(main())
    except (ToolLoopError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    raise SystemExit(exit_code)


@cli.command()
@click.option("--config", "config_path", default=CONFIG_FILE, help="配置文件路径")
def init(config_path: str) -> None:
    """初始化配置 / Initialize configuration."""
    from toolloop.errors import ToolLoopError

    config = ConfigManager(build_default_config(), config_path)
    if config.exists:
        click.echo(f"配置文件已存在: {config_path}")
        if not click.confirm("是否覆盖?"):
            return

    try:
        asyncio.run(config.save())
    except ToolLoopError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"配置文件已创建: {config_path}")


@cli.command()
@click.option("--config", "config_path", default=CONFIG_FILE, help="配置文件路径")
@click.option("--load", "load_specs", multiple=True, help="能力工厂 module:attr")
def catalog(config_path: str, load_specs: tuple[str, ...]) -> None:
    """列出可用能力 / List available capabilities."""
    from toolloop.errors import ToolLoopError

    capabilities = _load_capabilities(load_specs)

    async def main() -> list[Any]:
        config = await _load_config(config_path)
        registry = _build_registry(config, capabilities)
        return await registry.list_capabilities()

    try:
        descriptors = asyncio.run(main())
    except ToolLoopError as exc:
        raise click.ClickException(str(exc)) from exc
    if not descriptors:
        click.echo("没有可用的能力")
        return

    for descriptor in sorted(descriptors, key=lambda d: (d.category, d.name)):
        click.echo(
            f"  - [{descriptor.category}] {descriptor.name} "
            f"({descriptor.origin.value}): {descriptor.description}"
        )


@cli.command()
def version() -> None:
    """显示版本信息 / Show version info."""
    from toolloop import __app_name__, __version__

    click.echo(f"{__app_name__} v{__version__}")


if __name__ == "__main__":
    cli()
