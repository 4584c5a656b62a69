"""
CLI 진입점

명령줄에서 크롤러를 실행하고 제어합니다.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from philgeps_crawler import __version__
from philgeps_crawler.config import CrawlerConfig
from philgeps_crawler.exceptions import ConfigError, PersistenceError
from philgeps_crawler.models.crawl_history import CrawlStats
from philgeps_crawler.scheduler.cron import run_scheduled
from philgeps_crawler.service import CrawlerService
from philgeps_crawler.storage.control_store import ControlStore
from philgeps_crawler.storage.gateway import create_repository
from philgeps_crawler.storage.repository_interface import SearchFilters
from philgeps_crawler.storage.state_manager import StateManager

console = Console()

# 설정 오류 종료 코드
EXIT_CONFIG_ERROR = 2


def _load_config(config_file: Optional[str]) -> CrawlerConfig:
    """YAML 파일 또는 환경 변수(.env)에서 설정 로드 (오류 시 종료 코드 2)"""
    try:
        if config_file:
            return CrawlerConfig.from_yaml(Path(config_file))
        return CrawlerConfig.from_env()
    except ConfigError as e:
        console.print(f"[red]설정 오류: {e}[/red]")
        sys.exit(EXIT_CONFIG_ERROR)


config_option = click.option(
    "--config", "-c", "config_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML 설정 파일 (없으면 환경 변수/.env 사용)"
)


@click.group()
@click.version_option(version=__version__, prog_name="philgeps-crawler")
def cli():
    """
    PhilGEPS 입찰 공고 크롤러

    ASP.NET postback으로만 이동할 수 있는 PhilGEPS 검색 결과를
    배치 단위로 수집하여 저장합니다.
    """
    pass


@cli.command()
@click.option("--start", "-s", "start_page", type=int, default=None, help="시작 페이지")
@click.option("--end", "-e", "end_page", type=int, default=None, help="종료 페이지 (기본: 전체)")
@click.option("--batch-size", "-b", type=int, default=None, help="배치당 페이지 수")
@click.option(
    "--fetch-details/--no-fetch-details",
    default=None,
    help="상세 페이지 보강 여부"
)
@click.option(
    "--headless/--no-headless",
    default=None,
    help="헤드리스 모드 (브라우저 창 숨김)"
)
@click.option(
    "--resume/--no-resume",
    default=True,
    help="이전 상태에서 재시작"
)
@click.option(
    "--backend",
    type=click.Choice(["json", "sqlite"]),
    default=None,
    help="저장소 종류"
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="상세 로그 출력"
)
@config_option
def crawl(
    start_page: Optional[int],
    end_page: Optional[int],
    batch_size: Optional[int],
    fetch_details: Optional[bool],
    headless: Optional[bool],
    resume: bool,
    backend: Optional[str],
    verbose: bool,
    config_file: Optional[str],
):
    """
    공고 크롤링 실행

    지정한 페이지 범위를 배치 단위로 수집합니다.
    Ctrl+C를 누르면 현재 페이지 이후 중단하고 상태를 저장합니다.
    """
    config = _load_config(config_file)
    if batch_size is not None:
        config.batch.size = batch_size
    if fetch_details is not None:
        config.detail.enabled = fetch_details
    if headless is not None:
        config.browser.headless = headless
    if backend is not None:
        config.storage.backend = backend
    if verbose:
        config.logging.level = "DEBUG"

    try:
        start, end = config.resolve_page_range(start_page, end_page)
    except ConfigError as e:
        console.print(f"[red]설정 오류: {e}[/red]")
        sys.exit(EXIT_CONFIG_ERROR)

    console.print(f"[bold blue]PhilGEPS 크롤러 v{__version__}[/bold blue]")
    console.print(f"페이지 범위: {start}-{end or '마지막'}")
    console.print(f"배치 크기: {config.batch.size}")
    console.print(f"저장소: {config.storage.backend}")
    console.print(f"상세 보강: {'예' if config.detail.enabled else '아니오'}")
    console.print()

    service = CrawlerService(config)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("크롤링 중...", total=None)

        def on_page(page: int, total: Optional[int]) -> None:
            progress.update(task, description=f"페이지 {page} 완료", total=total, completed=page)

        service.on_page_completed(on_page)

        try:
            stats = asyncio.run(_run_with_signals(service, start, end, resume))
        except KeyboardInterrupt:
            console.print("\n[yellow]사용자에 의해 중단됨[/yellow]")
            return

    console.print()
    if stats is None:
        console.print("[yellow]이미 크롤링이 진행 중입니다[/yellow]")
        return
    _print_summary(stats)


async def _run_with_signals(
    service: CrawlerService,
    start_page: int,
    end_page: Optional[int],
    resume: bool,
) -> Optional[CrawlStats]:
    """SIGINT/SIGTERM을 중단 요청으로 연결하여 크롤링 실행"""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.request_stop)
            installed.append(sig)
        except NotImplementedError:
            pass

    try:
        return await service.run_crawl(start_page, end_page, resume=resume)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await service.close()


@cli.command()
@click.option(
    "--limit", "-n",
    type=click.IntRange(min=1),
    default=50,
    help="최대 보강 건수"
)
@click.option(
    "--backend",
    type=click.Choice(["json", "sqlite"]),
    default=None,
    help="저장소 종류"
)
@config_option
def enrich(limit: int, backend: Optional[str], config_file: Optional[str]):
    """
    저장된 공고 상세 보강

    상세 정보(ITB)가 없고 상세 링크가 있는 공고만 골라 상세 페이지를 수집합니다.
    목록 페이지는 다시 방문하지 않습니다.
    """
    config = _load_config(config_file)
    if backend is not None:
        config.storage.backend = backend

    console.print(f"[bold blue]상세 보강 시작[/bold blue] (최대 {limit}건)")
    service = CrawlerService(config)

    try:
        stats = asyncio.run(_run_enrichment(service, limit))
    except PersistenceError as e:
        console.print(f"[red]저장소 오류: {e}[/red]")
        sys.exit(1)

    if stats is None:
        console.print("[yellow]이미 크롤링이 진행 중입니다[/yellow]")
        return

    table = Table(title="상세 보강 결과")
    table.add_column("항목", style="cyan")
    table.add_column("값", style="white")
    table.add_row("대상", f"{stats.found}건")
    table.add_row("보강", f"{stats.updated}건")
    table.add_row("오류", f"{stats.errors}건")
    table.add_row("소요 시간", f"{stats.duration_seconds:.1f}초")
    console.print(table)


async def _run_enrichment(service: CrawlerService, limit: int) -> Optional[CrawlStats]:
    try:
        return await service.run_enrichment(limit)
    finally:
        await service.close()


@cli.command()
@click.option(
    "--mode", "-m",
    type=click.Choice(["interval", "cron"]),
    default=None,
    help="스케줄 모드"
)
@click.option(
    "--interval", "-i",
    type=int,
    default=None,
    help="실행 간격 (분, interval 모드)"
)
@click.option(
    "--cron",
    type=str,
    default=None,
    help="cron 표현식 (cron 모드)"
)
@click.option(
    "--no-immediate",
    is_flag=True,
    help="시작 시 즉시 실행하지 않음"
)
@config_option
def schedule(
    mode: Optional[str],
    interval: Optional[int],
    cron: Optional[str],
    no_immediate: bool,
    config_file: Optional[str],
):
    """
    스케줄된 크롤링 실행

    지정된 주기로 자동으로 크롤링을 실행합니다.
    실행 직전마다 제어 파일의 활성화 여부와 간격을 다시 읽습니다.
    """
    config = _load_config(config_file)
    mode = mode or config.scheduler.mode
    interval = interval or config.scheduler.interval_minutes
    cron = cron or config.scheduler.cron_expression

    console.print("[bold blue]스케줄러 시작[/bold blue]")
    console.print(f"모드: {mode}")
    if mode == "interval":
        console.print(f"간격: {interval}분 (제어 파일 값 우선)")
    else:
        console.print(f"cron: {cron}")
    console.print(f"제어 파일: {config.storage.control_file}")
    console.print()
    console.print("[dim]Ctrl+C로 중지[/dim]")
    console.print()

    try:
        asyncio.run(run_scheduled(
            crawler_config=config,
            mode=mode,
            interval_minutes=interval,
            cron_expression=cron,
            run_immediately=not no_immediate,
        ))
    except ConfigError as e:
        console.print(f"[red]설정 오류: {e}[/red]")
        sys.exit(EXIT_CONFIG_ERROR)
    except KeyboardInterrupt:
        console.print("\n[yellow]스케줄러 중지됨[/yellow]")


@cli.command()
@config_option
def status(config_file: Optional[str]):
    """
    크롤링 상태 확인

    저장된 진행 상태와 제어 설정을 표시합니다.
    """
    config = _load_config(config_file)
    state = StateManager(config.storage.state_file).load()
    settings = ControlStore(config.storage.control_file).load()

    control_table = Table(title="제어 설정")
    control_table.add_column("항목", style="cyan")
    control_table.add_column("값", style="white")
    control_table.add_row("활성화", "예" if settings.enabled else "아니오")
    control_table.add_row("실행 간격", f"{settings.interval_minutes}분")
    console.print(control_table)
    console.print()

    if not state:
        console.print("[yellow]저장된 상태가 없습니다[/yellow]")
        return

    table = Table(title="크롤링 상태")
    table.add_column("항목", style="cyan")
    table.add_column("값", style="white")

    table.add_row("실행 ID", state.run_id)
    table.add_row("시작 시간", str(state.started_at))
    table.add_row("마지막 업데이트", str(state.last_updated_at))
    table.add_row("완료됨", "예" if state.is_completed else "아니오")
    table.add_row("페이지 범위", f"{state.start_page}-{state.end_page or '마지막'}")
    table.add_row("전체 페이지", str(state.total_pages or "알 수 없음"))
    table.add_row("마지막 완료 페이지", str(state.last_completed_page))
    table.add_row("다음 페이지", str(state.next_page))
    table.add_row("누적 레코드", f"{state.total_opportunities}건")
    table.add_row("배치 수", str(len(state.batches)))
    table.add_row("재시도 대기 페이지", ", ".join(map(str, state.failed_pages)) or "-")
    table.add_row("포기한 페이지", ", ".join(map(str, state.abandoned_pages)) or "-")
    if state.last_error:
        table.add_row("마지막 오류", state.last_error)

    console.print(table)


@cli.command()
@config_option
def history(config_file: Optional[str]):
    """
    최근 실행 이력 확인
    """
    config = _load_config(config_file)
    repository = create_repository(config.storage)
    try:
        last = repository.last_crawl_history()
        total = repository.count()
    except PersistenceError as e:
        console.print(f"[red]저장소 오류: {e}[/red]")
        sys.exit(1)
    finally:
        repository.close()

    console.print(f"저장된 공고: {total}건")
    if last is None:
        console.print("[yellow]실행 이력이 없습니다[/yellow]")
        return

    table = Table(title="최근 실행")
    table.add_column("항목", style="cyan")
    table.add_column("값", style="white")
    table.add_row("시각", str(last.timestamp))
    style = "green" if last.status == "completed" else "red"
    table.add_row("결과", f"[{style}]{last.status}[/{style}]")
    table.add_row("페이지 범위", last.page_range or "-")
    table.add_row("발견", f"{last.found}건")
    table.add_row("신규", f"{last.new}건")
    table.add_row("갱신", f"{last.updated}건")
    table.add_row("오류", f"{last.errors}건")
    table.add_row("소요 시간", f"{last.duration_seconds:.1f}초")
    table.add_row("상세 보강", "예" if last.fetch_details else "아니오")
    if last.error_message:
        table.add_row("실패 사유", last.error_message)
    console.print(table)


@cli.command()
@click.option("--keyword", "-k", type=str, default=None, help="제목/기관/참조번호 검색어")
@click.option("--category", type=str, default=None, help="카테고리")
@click.option("--area", type=str, default=None, help="납품 지역")
@click.option("--budget-min", type=float, default=None, help="최소 예산")
@click.option("--budget-max", type=float, default=None, help="최대 예산")
@click.option(
    "--status", "status_filter",
    type=click.Choice(["active", "closed"]),
    default=None,
    help="마감 여부"
)
@click.option("--limit", "-n", type=int, default=20, help="최대 결과 수")
@click.option("--offset", type=int, default=0, help="건너뛸 결과 수")
@config_option
def search(
    keyword: Optional[str],
    category: Optional[str],
    area: Optional[str],
    budget_min: Optional[float],
    budget_max: Optional[float],
    status_filter: Optional[str],
    limit: int,
    offset: int,
    config_file: Optional[str],
):
    """
    저장된 공고 검색 (마감일 내림차순)
    """
    config = _load_config(config_file)
    filters = SearchFilters(
        keyword=keyword,
        category=category,
        area=area,
        budget_min=budget_min,
        budget_max=budget_max,
        status=status_filter,
        limit=limit,
        offset=offset,
    )

    repository = create_repository(config.storage)
    try:
        results = repository.search_with_filters(filters)
    finally:
        repository.close()

    if not results:
        console.print("[yellow]검색 결과가 없습니다[/yellow]")
        return

    table = Table(title=f"검색 결과 ({len(results)}건)")
    table.add_column("참조번호", style="cyan", no_wrap=True)
    table.add_column("제목", style="white")
    table.add_column("기관", style="white")
    table.add_column("예산", justify="right")
    table.add_column("마감일")

    for opportunity in results:
        table.add_row(
            opportunity.reference_number,
            opportunity.title,
            opportunity.procuring_entity or "-",
            f"{opportunity.approved_budget:,.2f}" if opportunity.approved_budget is not None else "-",
            opportunity.closing_date.strftime("%Y-%m-%d %H:%M") if opportunity.closing_date else "-",
        )
    console.print(table)


@cli.command()
@click.option("--interval", "-i", type=click.IntRange(min=1), default=None, help="실행 간격 (분)")
@config_option
def enable(interval: Optional[int], config_file: Optional[str]):
    """
    스케줄 크롤링 활성화
    """
    config = _load_config(config_file)
    store = ControlStore(config.storage.control_file)
    settings = store.set_enabled(True)
    if interval is not None:
        settings = store.set_interval(interval)
    console.print(f"[green]크롤러 활성화됨 (간격: {settings.interval_minutes}분)[/green]")


@cli.command()
@config_option
def disable(config_file: Optional[str]):
    """
    스케줄 크롤링 비활성화

    실행 중인 스케줄러는 다음 실행부터 건너뜁니다.
    """
    config = _load_config(config_file)
    ControlStore(config.storage.control_file).set_enabled(False)
    console.print("[yellow]크롤러 비활성화됨[/yellow]")


@cli.command()
@config_option
@click.confirmation_option(prompt="상태 파일을 삭제하시겠습니까?")
def reset(config_file: Optional[str]):
    """
    크롤링 상태 초기화

    저장된 상태를 삭제하여 처음부터 다시 시작합니다.
    """
    config = _load_config(config_file)
    StateManager(config.storage.state_file).cleanup()
    console.print("[green]상태가 초기화되었습니다[/green]")


def _print_summary(stats: CrawlStats):
    """통계 요약 출력"""
    table = Table(title="크롤링 통계")
    table.add_column("항목", style="cyan")
    table.add_column("값", style="white")

    table.add_row("페이지 범위", stats.page_range or "-")
    table.add_row("발견", f"{stats.found}건")
    table.add_row("신규", f"{stats.new}건")
    table.add_row("갱신", f"{stats.updated}건")
    table.add_row("오류", f"{stats.errors}건")
    table.add_row("수집 페이지", f"{stats.pages_crawled}개")
    table.add_row("실패 페이지", f"{stats.pages_failed}개")
    table.add_row("소요 시간", f"{stats.duration_seconds:.1f}초")
    if stats.circuit_broken:
        table.add_row("중단", "[red]연속 배치 실패 (circuit breaker)[/red]")

    console.print(table)


def main():
    """메인 진입점"""
    cli()


if __name__ == "__main__":
    main()
