"""CLI 入口"""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel
from rich.table import Table

from .common.config import config
from .common.exceptions import (
    ConfigError,
    SessionUnavailableError,
    StorageError,
)
from .common.logger import console, get_logger, setup_file_logging
from .common.types import ALL_FIELDS

logger = get_logger(__name__)

app = typer.Typer(
    name="adharvest",
    help="adharvest CLI - 广告详情页字段采集",
    add_completion=False,
)


def run_async_safely(coro):
    """在 CLI 同步上下文中安全执行协程。"""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    # 已有运行中的事件循环，需要在新线程中创建新的事件循环
    result_holder: dict[str, object] = {"result": None, "error": None}

    def _runner():
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            result_holder["result"] = loop.run_until_complete(coro)
        except BaseException as exc:  # noqa: BLE001
            result_holder["error"] = exc
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            asyncio.set_event_loop(None)

    thread = threading.Thread(target=_runner, daemon=True)
    thread.start()
    thread.join()

    if result_holder["error"] is not None:
        raise result_holder["error"]  # type: ignore[misc]
    return result_holder["result"]


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _check_fields(names: list[str], option: str) -> list[str]:
    unknown = [name for name in names if name not in ALL_FIELDS]
    if unknown:
        raise typer.BadParameter(f"未知字段: {', '.join(unknown)}", param_hint=option)
    return names


def _build_summary_table(summary: dict) -> Table:
    table = Table(title="结果统计", show_lines=False)
    table.add_column("结果", style="cyan")
    table.add_column("数量", justify="right")
    for outcome, count in summary.get("outcomes", {}).items():
        table.add_row(outcome, str(count))
    table.add_row("written", str(summary.get("written_rows", 0)))
    table.add_row("requeued", str(summary.get("requeued", 0)))
    table.add_row("duplicates", str(summary.get("skipped_duplicates", 0)))
    for reason, count in summary.get("rotations", {}).items():
        table.add_row(f"rotation:{reason}", str(count))
    return table


async def _run_harvest(
    workbook: str,
    sheets: list[str],
    direction: str,
    fields: list[str],
    required_fields: list[str],
    concurrency: int | None,
    max_runtime_minutes: float | None,
    headless: bool | None,
    force: bool,
    summary_path: Path,
) -> dict:
    from .browser.engine import BrowserEngine
    from .browser.manager import SessionManager
    from .crawler.orchestrator import Orchestrator
    from .crawler.retry import RetryController
    from .extraction.extractor import FieldExtractor
    from .storage.excel_store import ExcelTableStore
    from .storage.sink import ResultSink
    from .storage.work_source import MergedWorkSource, build_work_source

    store = ExcelTableStore(workbook, create=False)
    try:
        sources = [
            build_work_source(
                store,
                sheet,
                direction,
                fields=fields,
                required_fields=required_fields,
                batch_size=concurrency,
            )
            for sheet in sheets
        ]
        orchestrator = Orchestrator(
            MergedWorkSource(sources),
            SessionManager(engine=BrowserEngine(headless=headless)),
            RetryController(FieldExtractor(fields=fields), required_fields=required_fields),
            ResultSink(store, force=force),
            concurrency=concurrency,
            max_runtime_seconds=max_runtime_minutes * 60 if max_runtime_minutes is not None else None,
            summary_path=summary_path,
        )
        summary = await orchestrator.run()
        return summary.to_dict()
    finally:
        await store.close()


@app.command("run")
def run_command(
    workbook: str = typer.Option(
        config.store.workbook,
        "--workbook",
        "-w",
        help="工作簿路径 (.xlsx)",
    ),
    sheets: Optional[list[str]] = typer.Option(
        None,
        "--sheet",
        "-s",
        help="工作表名，可重复指定（默认取配置）",
    ),
    direction: str = typer.Option(
        config.crawl.direction,
        "--direction",
        "-d",
        help="遍历方式: top_to_bottom / bottom_to_top / streaming",
    ),
    fields: str = typer.Option(
        ",".join(config.crawl.fields),
        "--fields",
        help="需要提取的字段（逗号分隔）",
    ),
    required_fields: str = typer.Option(
        ",".join(config.crawl.required_fields),
        "--required",
        help="判定已解析所需的字段（逗号分隔）",
    ),
    concurrency: Optional[int] = typer.Option(
        None,
        "--concurrency",
        "-c",
        help="批内并发数（默认取配置）",
    ),
    max_runtime: Optional[float] = typer.Option(
        None,
        "--max-runtime",
        help="运行时间预算（分钟），0 表示不限",
    ),
    headless: Optional[bool] = typer.Option(
        None,
        "--headless/--no-headless",
        help="是否使用无头模式（默认取配置）",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="允许覆盖已有值",
    ),
    summary: str = typer.Option(
        "",
        "--summary",
        help="运行摘要 JSON 路径（默认输出目录下的 run_summary.json）",
    ),
    log_file: str = typer.Option(
        config.output.log_file or "",
        "--log-file",
        help="附加写入的日志文件",
    ),
):
    """采集工作表中尚未填充的广告详情页。"""
    sheet_names = list(sheets or [config.store.sheet])
    field_names = _check_fields(_split(fields), "--fields")
    required_names = _check_fields(_split(required_fields), "--required")
    summary_path = Path(summary) if summary else Path(config.output.output_dir) / config.output.summary_file

    if log_file:
        setup_file_logging(log_file)

    console.print(
        Panel(
            f"[bold]工作簿:[/bold] {workbook}\n"
            f"[bold]工作表:[/bold] {', '.join(sheet_names)}\n"
            f"[bold]遍历方式:[/bold] {direction}\n"
            f"[bold]字段:[/bold] {', '.join(field_names)} (必填: {', '.join(required_names)})\n"
            f"[bold]并发:[/bold] {concurrency if concurrency is not None else config.crawl.concurrency}\n"
            f"[bold]时间预算:[/bold] {max_runtime if max_runtime is not None else config.crawl.max_runtime_minutes} 分钟\n"
            f"[bold]覆盖已有值:[/bold] {force}",
            title="采集配置",
            style="cyan",
        )
    )

    try:
        result = run_async_safely(
            _run_harvest(
                workbook=workbook,
                sheets=sheet_names,
                direction=direction,
                fields=field_names,
                required_fields=required_names,
                concurrency=concurrency,
                max_runtime_minutes=max_runtime,
                headless=headless,
                force=force,
                summary_path=summary_path,
            )
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]用户中断[/yellow]")
        raise typer.Exit(130)
    except (StorageError, SessionUnavailableError, ConfigError, ValueError) as e:
        console.print(Panel(f"[red]{e}[/red]", title="执行错误", style="red"))
        raise typer.Exit(1)

    console.print(_build_summary_table(result))
    failed = result.get("failed_rows", [])
    style = "yellow" if failed or result.get("status") != "completed" else "green"
    console.print(
        Panel(
            f"状态: {result.get('status')}\n"
            f"处理条目: {result.get('processed', 0)}\n"
            f"写入行数: {result.get('written_rows', 0)}\n"
            f"写入失败: {', '.join(failed) if failed else '无'}\n"
            f"汇总输出: {summary_path}",
            title="执行完成",
            style=style,
        )
    )


async def _run_aggregate(sources_file: str, master_workbook: str, master_sheet: str) -> dict:
    from .storage.aggregator import Aggregator, SourceSheet, load_source_specs
    from .storage.excel_store import ExcelTableStore

    specs = load_source_specs(sources_file)
    master = ExcelTableStore(master_workbook, create=True)
    sources: list[SourceSheet] = []
    try:
        for spec in specs:
            try:
                store = ExcelTableStore(spec["path"], create=False)
            except StorageError as exc:
                logger.error(f"[Aggregator] 跳过来源 {spec['name']}: {exc}")
                continue
            sources.append(SourceSheet(name=spec["name"], store=store, tabs=list(spec["tabs"])))

        stats = await Aggregator(master, master_sheet=master_sheet).run(sources)
        return {
            "total_valid": stats.total_valid,
            "total_new": stats.total_new,
            "duplicates": stats.duplicates,
            "appended": stats.appended,
            "by_source": stats.by_source,
        }
    finally:
        for source in sources:
            await source.store.close()
        await master.close()


@app.command("aggregate")
def aggregate_command(
    sources_file: str = typer.Option(
        ...,
        "--sources",
        help="来源配置 JSON 文件",
    ),
    master_workbook: str = typer.Option(
        config.store.workbook,
        "--master",
        "-m",
        help="主表所在工作簿",
    ),
    master_sheet: str = typer.Option(
        config.store.master_sheet,
        "--master-sheet",
        help="主表工作表名",
    ),
):
    """把多个来源中未处理的行去重后汇总到主表。"""
    try:
        result = run_async_safely(_run_aggregate(sources_file, master_workbook, master_sheet))
    except KeyboardInterrupt:
        console.print("\n[yellow]用户中断[/yellow]")
        raise typer.Exit(130)
    except (StorageError, ConfigError) as e:
        console.print(Panel(f"[red]{e}[/red]", title="执行错误", style="red"))
        raise typer.Exit(1)

    table = Table(title="来源统计")
    table.add_column("来源", style="cyan")
    table.add_column("有效行", justify="right")
    table.add_column("新增", justify="right")
    for name, counts in result["by_source"].items():
        table.add_row(name, str(counts["valid"]), str(counts["new"]))
    console.print(table)
    console.print(
        Panel(
            f"有效行: {result['total_valid']}\n"
            f"重复: {result['duplicates']}\n"
            f"追加到 {master_sheet}: {result['appended']}",
            title="汇总完成",
            style="green",
        )
    )


def main():
    """CLI 入口点

    供 pyproject.toml 中 [project.scripts] 调用。
    """
    app()


if __name__ == "__main__":
    main()
