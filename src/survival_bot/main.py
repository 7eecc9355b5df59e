"""CLI 入口模块 - Survival Trading Bot 命令行接口。"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

import click
import uvicorn

from survival_bot import __version__
from survival_bot.config import DEFAULT_KILL_SECRET, Settings, get_settings
from survival_bot.errors import InvariantViolation, SurvivalBotError
from survival_bot.journal.store import TradingStore
from survival_bot.runtime import open_runtime
from survival_bot.scheduler import CycleScheduler
from survival_bot.types import CycleResult
from survival_bot.utils.logging import get_logger, setup_logging


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Survival Trading Bot - 由决策机器人驱动的现货交易循环。

    每个循环读取账户状态，请求决策，执行买卖并记录全部过程。
    余额归零即永久停机。
    """
    if version:
        click.echo(f"survival-bot version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _require_config(settings: Settings) -> None:
    """缺少必要配置时退出。"""
    logger = get_logger("survival_bot.main")
    missing = settings.validate_for_mode()
    if missing:
        logger.error(
            "missing_required_config",
            mode=settings.mode.value,
            missing_keys=missing,
            hint="请在 .env 文件中配置必要的密钥",
        )
        sys.exit(1)


async def _run_once(settings: Settings) -> CycleResult:
    runtime = await open_runtime(settings)
    try:
        return await runtime.engine.run_cycle()
    finally:
        await runtime.aclose()


async def _run_loop(settings: Settings, interval_min: int) -> None:
    runtime = await open_runtime(settings)
    scheduler = CycleScheduler(runtime.engine, interval_sec=interval_min * 60)
    try:
        await scheduler.run_forever()
    finally:
        await runtime.aclose()


async def _serve(settings: Settings) -> None:
    from survival_bot.api.server import create_app

    runtime = await open_runtime(settings)
    scheduler = CycleScheduler(runtime.engine, interval_sec=settings.cycle_interval_min * 60)
    app = create_app(
        settings,
        runtime.store,
        runtime.engine,
        runtime.broadcaster,
        scheduler=scheduler,
    )
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level=settings.log_level.lower(),
        )
    )
    try:
        await server.serve()
    finally:
        await runtime.aclose()


async def _set_lifecycle(settings: Settings, reason: str | None) -> dict[str, object]:
    settings.ensure_directories()
    store = TradingStore(settings.database_url)
    try:
        await store.init()
        lifecycle = await store.kill_bot(reason) if reason is not None else await store.revive_bot()
        return lifecycle.to_dict()
    finally:
        await store.close()


@cli.command()
def once() -> None:
    """执行单次交易循环。

    检查存活 → 余额 → 风控 → 请求决策 → 执行 → 记录
    """
    setup_logging()
    logger = get_logger("survival_bot.main")
    settings = get_settings()
    _require_config(settings)

    logger.info(
        "starting_single_run",
        mode=settings.mode.value,
        timestamp=datetime.now().isoformat(),
    )

    try:
        result = asyncio.run(_run_once(settings))
        logger.info(
            "run_completed",
            status=result.status,
            cycle_number=result.cycle_number,
            action=result.action,
            result=result.result,
            error=result.error,
            elapsed_ms=round(result.elapsed_ms, 2),
            closed_by_risk=result.closed_by_risk,
            warnings=result.warnings,
        )
    except KeyboardInterrupt:
        logger.info("run_interrupted", message="User interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("run_failed", error=str(e))
        sys.exit(1)


@cli.command()
@click.option(
    "--interval-min",
    "-i",
    type=int,
    default=None,
    help="循环间隔（分钟），默认读取 CYCLE_INTERVAL_MIN",
)
def loop(interval_min: int | None) -> None:
    """按固定间隔循环执行交易循环（不启动 API）。

    启动后立即执行第一次循环。使用 Ctrl+C 停止。
    """
    setup_logging()
    logger = get_logger("survival_bot.main")
    settings = get_settings()
    _require_config(settings)

    interval = interval_min or settings.cycle_interval_min
    logger.info("starting_loop", mode=settings.mode.value, interval_min=interval)

    try:
        asyncio.run(_run_loop(settings, interval))
    except KeyboardInterrupt:
        logger.info("loop_stopped", message="User stopped loop")
        sys.exit(0)


@cli.command()
def serve() -> None:
    """启动 HTTP API 与定时调度器。"""
    setup_logging()
    logger = get_logger("survival_bot.main")
    settings = get_settings()
    _require_config(settings)

    logger.info(
        "starting_server",
        mode=settings.mode.value,
        host=settings.api_host,
        port=settings.api_port,
        interval_min=settings.cycle_interval_min,
    )
    try:
        asyncio.run(_serve(settings))
    except KeyboardInterrupt:
        logger.info("server_stopped", message="User stopped server")
        sys.exit(0)


@cli.command()
@click.argument("reason")
def kill(reason: str) -> None:
    """手动停机，必须提供原因。"""
    setup_logging()
    settings = get_settings()
    try:
        state = asyncio.run(_set_lifecycle(settings, reason))
    except InvariantViolation as e:
        raise click.BadParameter(str(e), param_hint="REASON") from e
    except SurvivalBotError as e:
        click.echo(f"[ERROR] {e}")
        sys.exit(1)
    click.echo(f"[DEAD] Bot killed: {state['death_reason']}")


@cli.command()
def revive() -> None:
    """解除停机状态。"""
    setup_logging()
    settings = get_settings()
    try:
        asyncio.run(_set_lifecycle(settings, None))
    except SurvivalBotError as e:
        click.echo(f"[ERROR] {e}")
        sys.exit(1)
    click.echo("[ALIVE] Bot revived")


@cli.command()
def status() -> None:
    """显示系统状态和配置摘要。"""
    setup_logging()
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("Survival Trading Bot - Status")
    click.echo("=" * 50)
    click.echo()

    mode_marker = "[PAPER]" if settings.is_paper_mode else "[LIVE]"
    mode_text = "Paper Trading" if settings.is_paper_mode else "Live Trading"
    click.echo(f"{mode_marker} Mode: {mode_text}")
    click.echo()

    click.echo("[Connections]")
    binance_status = "[OK] Configured" if settings.binance_api_key else "[--] Not configured"
    discord_status = "[OK] Configured" if settings.discord_bot_token else "[--] Not configured"
    click.echo(f"   Binance API: {binance_status}")
    click.echo(f"   Binance Testnet: {'Yes' if settings.binance_testnet else 'No'}")
    click.echo(f"   Discord Bot: {discord_status}")
    click.echo(f"   Oracle user: {settings.oracle_user_id or '-'}")
    click.echo(f"   Quote asset: {settings.quote_asset}")
    click.echo()

    click.echo("[Risk Parameters]")
    click.echo(f"   Minimum reserve: {settings.min_balance_usdc} {settings.quote_asset}")
    click.echo(f"   Max open positions: {settings.max_open_positions}")
    click.echo(f"   Max stop loss: {settings.max_stop_loss_pct}%")
    click.echo(f"   Conservative after: {settings.conservative_loss_streak} losses")
    click.echo(f"   Cycle interval: {settings.cycle_interval_min} min")
    click.echo()

    click.echo("[Storage & Logging]")
    click.echo(f"   Database: {settings.database_url}")
    click.echo(f"   Data dir: {settings.data_dir}")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo()

    missing = settings.validate_for_mode()
    if missing:
        click.echo(f"[ERROR] {settings.mode.value} mode configuration incomplete, missing:")
        for key in missing:
            click.echo(f"   - {key}")
    else:
        click.echo(f"[OK] {settings.mode.value} mode configuration complete")
    if settings.kill_secret == DEFAULT_KILL_SECRET:
        click.echo("[WARN] KILL_SECRET is still the default value")

    click.echo()
    click.echo("=" * 50)


@cli.command()
def check() -> None:
    """检查系统依赖和配置。"""
    setup_logging()
    logger = get_logger("survival_bot.main")

    click.echo("Checking system dependencies...")
    click.echo()

    all_ok = True

    packages = [
        ("pydantic", "Configuration validation"),
        ("pydantic_settings", "Settings loading"),
        ("httpx", "HTTP client"),
        ("binance", "Binance exchange client"),
        ("sqlalchemy", "Persistence"),
        ("aiosqlite", "SQLite async driver"),
        ("fastapi", "HTTP API"),
        ("uvicorn", "ASGI server"),
        ("structlog", "Structured logging"),
        ("click", "CLI framework"),
        ("tenacity", "Retry mechanism"),
    ]

    for pkg_name, desc in packages:
        try:
            __import__(pkg_name)
            click.echo(f"  [OK] {pkg_name} - {desc}")
        except ImportError:
            click.echo(f"  [MISSING] {pkg_name} - {desc}")
            all_ok = False

    click.echo()

    env_file = Path(".env")
    if env_file.exists():
        click.echo("  [OK] .env configuration file exists")
    else:
        click.echo("  [WARN] .env file not found (using defaults)")

    click.echo()

    if all_ok:
        click.echo("[OK] All dependency checks passed")
    else:
        click.echo("[ERROR] Some dependencies missing. Run: pip install -e .")

    logger.info("dependency_check_completed", all_ok=all_ok)


# 支持 python -m survival_bot.main 调用
if __name__ == "__main__":
    cli()
