"""
Command-line interface for the ledger import reconciliation tool.
"""

from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterator, Optional
import logging
import re
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .accounts import build_account
from .config import ReconConfig, generate_default_config, load_config
from .ledger.engine import LedgerEngine
from .matching.postings import PostingRule
from .matching.rules import Rule
from .models.responses import PeriodReport, ReconciliationSummary
from .reports.excel_generator import ExcelReportGenerator
from .rules_store import RuleStore
from .utils.exceptions import ConfigurationError
from .utils.logging_config import setup_logging
from .workflow import ImportWorkflow

console = Console()

DEFAULT_LIMIT = 50

config_option = click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
account_option = click.option(
    "-a", "--account", "source_id", default=None, help="Source id of the import account"
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")


@click.group()
@click.version_option(version=__version__)
def main():
    """Reconcile bank exports against an hledger journal."""
    pass


def _load(config_path: Optional[Path], verbose: bool) -> ReconConfig:
    """Load configuration and set up logging from it."""
    setup_logging(logging.DEBUG if verbose else logging.INFO)
    recon_config = load_config(config_path)
    log_config = recon_config.logging
    level = logging.DEBUG if verbose else getattr(logging, log_config.level.upper(), logging.INFO)
    setup_logging(
        level,
        Path(log_config.file) if log_config.file else None,
        log_config.format,
    )
    return recon_config


def _rule_store(recon_config: ReconConfig) -> RuleStore:
    path = Path(recon_config.rules.path).expanduser()
    if not path.is_absolute():
        path = recon_config.base_dir() / path
    return RuleStore(path)


@contextmanager
def _workflow(recon_config: ReconConfig, source_id: Optional[str]) -> Iterator[ImportWorkflow]:
    """Workflow for the selected account, with the ledger engine running."""
    settings = recon_config.get_account(source_id)
    account = build_account(recon_config, settings.source_id)
    with LedgerEngine(recon_config.ledger) as engine:
        yield ImportWorkflow(
            account, engine, _rule_store(recon_config), commodity=settings.commodity
        )


def _fail(e: Exception, verbose: bool) -> None:
    console.print(f"[red]Error: {escape(str(e))}[/red]")
    if verbose:
        console.print_exception()
    sys.exit(1)


def _amount(value: Optional[Decimal]) -> str:
    return f"{value:,.2f}" if value is not None else "-"


def _truncate(text: str, width: int = 40) -> str:
    return text[:width] + "..." if len(text) > width else text


def _print_more(total: int, limit: int) -> None:
    if total > limit:
        console.print(f"\n... and {total - limit} more")


@main.command()
@config_option
@account_option
@click.option("-n", "--limit", type=int, default=DEFAULT_LIMIT, help="Rows to display")
@verbose_option
def existing(config: Optional[Path], source_id: Optional[str], limit: int, verbose: bool):
    """Show recorded transactions paired with real ones, newest first."""
    try:
        recon_config = _load(config, verbose)
        with _workflow(recon_config, source_id) as workflow:
            rows = workflow.existing()

        table = Table(title=f"Existing Transactions: {workflow.hledger_account}")
        table.add_column("Id")
        table.add_column("Date")
        table.add_column("Description")
        table.add_column("Recorded", justify="right")
        table.add_column("Real", justify="right")
        table.add_column("Recorded Balance", justify="right")
        table.add_column("Real Balance", justify="right")
        table.add_column("Errors", style="red")

        for row in rows[:limit]:
            table.add_row(
                row.id or "-",
                str(row.recorded_transaction.get_date(workflow.hledger_account)),
                _truncate(row.recorded_transaction.tdescription),
                _amount(row.recorded_amount),
                _amount(row.real_amount),
                _amount(row.recorded_cumulative),
                _amount(row.real_cumulative),
                "; ".join(row.errors),
            )

        console.print(table)
        _print_more(len(rows), limit)
        errors = sum(1 for row in rows if row.has_errors)
        console.print(f"\nTotal rows: {len(rows)}, with errors: {errors}")

    except Exception as e:
        _fail(e, verbose)


@main.command()
@config_option
@account_option
@click.option("-n", "--limit", type=int, default=DEFAULT_LIMIT, help="Rows to display")
@verbose_option
def generated(config: Optional[Path], source_id: Optional[str], limit: int, verbose: bool):
    """Show ledger transactions the rules generate for unrecorded transactions."""
    try:
        recon_config = _load(config, verbose)
        with _workflow(recon_config, source_id) as workflow:
            items = workflow.generated()

        table = Table(title=f"Generated Transactions: {workflow.hledger_account}")
        table.add_column("Id")
        table.add_column("Date")
        table.add_column("Description")
        table.add_column("Postings")
        table.add_column("Rule")

        for item in items[:limit]:
            txn = item.recorded_transaction
            table.add_row(
                item.real_transaction.id,
                str(txn.tdate),
                _truncate(txn.tdescription),
                "\n".join(
                    f"{p.paccount}  {_amount(p.amount)} {p.commodity or ''}"
                    for p in txn.tpostings
                ),
                item.rule.display_name,
            )

        console.print(table)
        _print_more(len(items), limit)
        console.print(f"\nTotal generated: {len(items)}")

    except Exception as e:
        _fail(e, verbose)


@main.command()
@config_option
@account_option
@click.option("-n", "--limit", type=int, default=DEFAULT_LIMIT, help="Rows to display")
@verbose_option
def unmatched(config: Optional[Path], source_id: Optional[str], limit: int, verbose: bool):
    """Show unrecorded transactions no rule could handle."""
    try:
        recon_config = _load(config, verbose)
        with _workflow(recon_config, source_id) as workflow:
            items = workflow.unmatched()

        table = Table(title=f"Unmatched Transactions: {workflow.account.source_id}")
        table.add_column("Id")
        table.add_column("Date")
        table.add_column("Amount", justify="right")
        table.add_column("Currency")

        for item in items[:limit]:
            real = item.real_transaction
            table.add_row(
                real.id,
                str(real.get_date()),
                _amount(real.get_amount()),
                real.get_currency() or "-",
            )

        console.print(table)
        _print_more(len(items), limit)
        console.print(f"\nTotal unmatched: {len(items)}")

    except Exception as e:
        _fail(e, verbose)


@main.command()
@config_option
@account_option
@verbose_option
def check(config: Optional[Path], source_id: Optional[str], verbose: bool):
    """Report correlation ids recorded more than once. Exits 2 if any."""
    try:
        recon_config = _load(config, verbose)
        with _workflow(recon_config, source_id) as workflow:
            duplicates = workflow.check()
    except Exception as e:
        _fail(e, verbose)
        return

    if not duplicates:
        console.print("[green]No duplicate ids[/green]")
        return
    for txn_id in sorted(duplicates):
        console.print(f"[yellow]Duplicate id: {txn_id}[/yellow]")
    sys.exit(2)


@main.command()
@config_option
@account_option
@verbose_option
def write(config: Optional[Path], source_id: Optional[str], verbose: bool):
    """Write all generated transactions to the journal."""
    try:
        recon_config = _load(config, verbose)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Writing generated transactions...", total=None)
            with _workflow(recon_config, source_id) as workflow:
                success = workflow.write_generated()
            progress.update(task, completed=True)
    except Exception as e:
        _fail(e, verbose)
        return

    if not success:
        console.print("[red]Error: writing to the journal failed[/red]")
        sys.exit(1)
    console.print("[green]Generated transactions written[/green]")


@main.command()
@click.argument("transaction_id")
@config_option
@account_option
@click.option("-d", "--description", required=True, help="Description template")
@click.option(
    "-p",
    "--posting",
    "postings",
    multiple=True,
    help="Posting account, prefix with ~ to negate the amount",
)
@click.option("--write", "should_write", is_flag=True, help="Write the transaction")
@verbose_option
def single(
    transaction_id: str,
    config: Optional[Path],
    source_id: Optional[str],
    description: str,
    postings: tuple[str, ...],
    should_write: bool,
    verbose: bool,
):
    """
    Generate a ledger transaction for one real transaction.

    TRANSACTION_ID: Id of the real transaction
    """
    try:
        recon_config = _load(config, verbose)
        with _workflow(recon_config, source_id) as workflow:
            txn = workflow.generate_single(
                transaction_id, description, _parse_postings(postings), should_write
            )
    except Exception as e:
        _fail(e, verbose)
        return

    if txn is None:
        console.print(f"[red]Error: couldn't generate a transaction for {transaction_id}[/red]")
        sys.exit(1)
    console.print(f"[bold]{txn.tdate} {txn.tdescription}[/bold]  ; {txn.tcomment}")
    for p in txn.tpostings:
        console.print(f"    {p.paccount}  {_amount(p.amount)} {p.commodity or ''}")


@main.command()
@config_option
@account_option
@click.option("-f", "--field", "fields", multiple=True, help="Field to report (repeatable)")
@click.option("-n", "--limit", type=int, default=10, help="Values to display per field")
@verbose_option
def stats(
    config: Optional[Path],
    source_id: Optional[str],
    fields: tuple[str, ...],
    limit: int,
    verbose: bool,
):
    """Show the most frequent values of real transaction fields."""
    try:
        recon_config = _load(config, verbose)
        with _workflow(recon_config, source_id) as workflow:
            field_stats = workflow.field_stats(fields or None)

        for field_name, counts in field_stats.items():
            table = Table(title=field_name)
            table.add_column("Value")
            table.add_column("Count", justify="right")
            for value, count in counts[:limit]:
                table.add_row(_truncate(value), str(count))
            console.print(table)

    except Exception as e:
        _fail(e, verbose)


@main.command()
@config_option
@account_option
@verbose_option
def balance(config: Optional[Path], source_id: Optional[str], verbose: bool):
    """Compare the source balance with the ledger balance."""
    try:
        recon_config = _load(config, verbose)
        with _workflow(recon_config, source_id) as workflow:
            real_balance = workflow.account.fetch_balance()
            recorded_balance = workflow.recorded_balance()

        table = Table(title=f"Balance: {workflow.hledger_account}")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Real Balance", _amount(real_balance))
        table.add_row("Recorded Balance", _amount(recorded_balance))
        difference = real_balance - recorded_balance
        style = "green" if difference == 0 else "red"
        table.add_row("Difference", f"[{style}]{_amount(difference)}[/{style}]")
        console.print(table)

    except Exception as e:
        _fail(e, verbose)


def _period_table(title: str, report: PeriodReport) -> Table:
    table = Table(title=title)
    table.add_column("Month")
    for name in report.sections:
        table.add_column(name, justify="right")
    table.add_column("Net", justify="right")

    for index, month_end in enumerate(report.dates):
        cells = [
            _amount(values[index]) if index < len(values) else "-"
            for values in [*report.sections.values(), report.net]
        ]
        table.add_row(month_end.strftime("%Y-%m"), *cells)
    return table


def _day(value: Optional[datetime]) -> Optional[date]:
    return value.date() if value is not None else None


from_option = click.option(
    "--from", "from_", type=click.DateTime(formats=["%Y-%m-%d"]), help="First day (YYYY-MM-DD)"
)
to_option = click.option(
    "--to", type=click.DateTime(formats=["%Y-%m-%d"]), help="End day, exclusive (YYYY-MM-DD)"
)


@main.command("income-statement")
@config_option
@from_option
@to_option
@click.option("--top/--no-top", default=False, help="Show the largest transactions per month")
@verbose_option
def income_statement(
    config: Optional[Path],
    from_: Optional[datetime],
    to: Optional[datetime],
    top: bool,
    verbose: bool,
):
    """Show monthly revenues, expenses and net income of the whole ledger."""
    try:
        recon_config = _load(config, verbose)
        with LedgerEngine(recon_config.ledger) as engine:
            statement = engine.income_statement(_day(from_), _day(to))

        console.print(_period_table("Income Statement", statement.report))
        if top:
            for kind, per_month in (
                ("Revenues", statement.top_revenues),
                ("Expenses", statement.top_expenses),
            ):
                table = Table(title=f"Top {kind}")
                table.add_column("Month")
                table.add_column("Date")
                table.add_column("Description")
                for month_end, transactions in zip(statement.report.dates, per_month):
                    for txn in transactions:
                        table.add_row(
                            month_end.strftime("%Y-%m"),
                            str(txn.tdate),
                            _truncate(txn.tdescription),
                        )
                console.print(table)

    except Exception as e:
        _fail(e, verbose)


@main.command("net-worth")
@config_option
@from_option
@to_option
@verbose_option
def net_worth(
    config: Optional[Path], from_: Optional[datetime], to: Optional[datetime], verbose: bool
):
    """Show monthly assets, liabilities and net worth of the whole ledger."""
    try:
        recon_config = _load(config, verbose)
        with LedgerEngine(recon_config.ledger) as engine:
            report_data = engine.net_worth(_day(from_), _day(to))

        console.print(_period_table("Net Worth", report_data))

    except Exception as e:
        _fail(e, verbose)


@main.command()
@config_option
@account_option
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Output Excel file path")
@click.option(
    "--statements", is_flag=True, help="Add income statement and net worth sheets"
)
@verbose_option
def report(
    config: Optional[Path],
    source_id: Optional[str],
    output: Optional[Path],
    statements: bool,
    verbose: bool,
):
    """Reconcile an account and write an Excel report."""
    try:
        recon_config = _load(config, verbose)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Running reconciliation...", total=None)
            with _workflow(recon_config, source_id) as workflow:
                summary, rows, items, unmatched_items = workflow.reconcile(
                    recon_config.config_file_path
                )
                statement = worth = None
                if statements:
                    statement = workflow.engine.income_statement()
                    worth = workflow.engine.net_worth()
            progress.update(task, completed=True)

        _display_summary(summary)

        if output is None:
            now = datetime.now()
            output = Path(
                recon_config.output.excel.filename_template.format(
                    source_id=summary.source_id,
                    date=now.strftime("%Y%m%d"),
                    time=now.strftime("%H%M%S"),
                )
            )

        report_generator = ExcelReportGenerator(recon_config)
        report_path = report_generator.generate_report(
            summary=summary,
            existing=rows,
            generated=items,
            unmatched=unmatched_items,
            output_path=output,
            income_statement=statement,
            net_worth=worth,
        )
        console.print(f"\n[green]Report generated: {report_path}[/green]")

    except Exception as e:
        _fail(e, verbose)


@main.group()
def rules():
    """Manage import rules."""
    pass


@rules.command("list")
@config_option
@account_option
def rules_list(config: Optional[Path], source_id: Optional[str]):
    """List rules in evaluation order."""
    try:
        recon_config = _load(config, False)
        rule_set = _rule_store(recon_config).get_rules(source_id)
    except Exception as e:
        _fail(e, False)
        return

    table = Table(title="Rules")
    table.add_column("Id", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Name")
    table.add_column("Account")
    table.add_column("Match")
    table.add_column("Description")
    table.add_column("Postings")

    for rule in rule_set:
        table.add_row(
            str(rule.id),
            str(rule.priority),
            rule.rule_name or "-",
            rule.import_account,
            f"{rule.match_field_name} ~ /{rule.match_field_regex.pattern}/",
            rule.description_template,
            ", ".join(("~" if p.negate else "") + p.account for p in rule.postings),
        )

    console.print(table)
    console.print(f"\nTotal rules: {len(rule_set)}")


@rules.command("add")
@config_option
@account_option
@click.option("--id", "rule_id", type=int, default=0, help="Id of a rule to replace")
@click.option("--name", default="", help="Rule name")
@click.option("--priority", type=int, default=0, help="Lower runs first")
@click.option("--field", "match_field", required=True, help="Field the regex is matched on")
@click.option("--regex", "match_regex", required=True, help="Regex searched in the field")
@click.option("-d", "--description", required=True, help="Description template")
@click.option(
    "-p",
    "--posting",
    "postings",
    multiple=True,
    help="Posting account, prefix with ~ to negate the amount",
)
def rules_add(
    config: Optional[Path],
    source_id: Optional[str],
    rule_id: int,
    name: str,
    priority: int,
    match_field: str,
    match_regex: str,
    description: str,
    postings: tuple[str, ...],
):
    """Add or replace a rule."""
    try:
        recon_config = _load(config, False)
        settings = recon_config.get_account(source_id)
        try:
            pattern = re.compile(match_regex)
        except re.error as e:
            raise ConfigurationError(f"Invalid regex {match_regex!r}: {e}") from e

        rule = Rule(
            id=rule_id,
            priority=priority,
            rule_name=name,
            import_account=settings.source_id,
            match_field_name=match_field,
            match_field_regex=pattern,
            description_template=description,
            postings=_parse_postings(postings),
        )
        stored = _rule_store(recon_config).create_or_update(
            rule, default_account=settings.hledger_account
        )
    except Exception as e:
        _fail(e, False)
        return

    console.print(f"[green]Stored rule {stored.display_name} with id {stored.id}[/green]")


@rules.command("delete")
@click.argument("rule_id", type=int)
@config_option
def rules_delete(rule_id: int, config: Optional[Path]):
    """Delete a rule by id."""
    try:
        recon_config = _load(config, False)
        deleted = _rule_store(recon_config).delete(rule_id)
    except Exception as e:
        _fail(e, False)
        return

    if not deleted:
        console.print(f"[red]Error: no rule with id {rule_id}[/red]")
        sys.exit(1)
    console.print(f"[green]Deleted rule {rule_id}[/green]")


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


def _parse_postings(values: tuple[str, ...]) -> list[PostingRule]:
    postings = []
    for value in values:
        negate = value.startswith("~")
        postings.append(PostingRule(account=value.lstrip("~"), negate=negate))
    return postings


def _display_summary(summary: ReconciliationSummary) -> None:
    """Display reconciliation summary in console."""
    table = Table(title="Reconciliation Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Import Account", summary.source_id)
    table.add_row("Ledger Account", summary.hledger_account)
    table.add_row("Real Transactions", str(summary.total_real_transactions))
    table.add_row("Recorded Transactions", str(summary.total_recorded_transactions))
    table.add_row("Existing Rows", str(summary.existing_count))
    table.add_row("Rows With Errors", str(summary.error_row_count))
    table.add_row("Generated", str(summary.generated_count))
    table.add_row("Unmatched", str(summary.unmatched_count))
    table.add_row("Duplicate Ids", str(len(summary.duplicate_ids)))
    table.add_row("Recorded Rate", f"{summary.match_rate:.1f}%")
    table.add_row("Balance Difference", _amount(summary.balance_difference))

    console.print(table)


if __name__ == "__main__":
    main()
