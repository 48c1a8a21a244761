# ruff: noqa: I001
"""CLI for the ``bank_import`` package.

Command handlers (``cmd_import``, ``cmd_apply_rule``, ``cmd_classify``) are
plain functions returning a process exit code; the Typer commands below wrap
them. Environment variables (``DATABASE_URL``, ``OPENAI_API_KEY``, ...) are
loaded from a local ``.env`` with ``python-dotenv`` before any command runs.
Errors are printed to stderr as one line; no tracebacks.
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path

import typer
from dotenv import load_dotenv

from .logging_setup import configure_logging


def _err(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)


def _make_extractor(paths: Sequence[Path]):
    """Build the PDF extractor only when a PDF is present and a key is configured."""

    if not any(p.suffix.lower() == ".pdf" for p in paths):
        return None
    if not os.getenv("OPENAI_API_KEY"):
        print(
            "Warning: OPENAI_API_KEY is not set; PDF statements will not be imported.",
            file=sys.stderr,
        )
        return None
    from .extract_client import OpenAIStatementExtractor

    return OpenAIStatementExtractor()


def _write_back(session, transactions, matches: Iterable[tuple[str, str]], rules) -> int:
    """Persist classified transactions and add their counts to each rule."""

    from .persistence import record_rule_matches, save_classifications

    matched_ids = {tx_id for tx_id, _ in matches}
    save_classifications(session, [tx for tx in transactions if tx.id in matched_ids])
    counts: dict[str, int] = {}
    for _, rule_id in matches:
        counts[rule_id] = counts.get(rule_id, 0) + 1
    by_id = {r.id: r for r in rules}
    for rule_id, n in counts.items():
        record_rule_matches(session, rule_id, n, by_id[rule_id].last_match_at)
    return len(matched_ids)


def cmd_import(
    paths: Sequence[Path],
    *,
    account_id: str = "default",
    persist: bool = False,
    database_url: str | None = None,
    as_json: bool = False,
) -> int:
    """Import statement files and print one line per candidate.

    Output is TSV (``booking_date, amount_cents, counterpart_name, purpose``)
    or, with ``as_json``, one JSON object per line. Files that could not be
    imported are reported on stderr and make the exit code non-zero; the
    other files are still printed (and persisted with ``persist``).
    """

    from .importer import import_files

    report = import_files(paths, extractor=_make_extractor(paths))

    for f in report.files:
        if f.status in ("failed", "unsupported"):
            print(f"{f.path}: {f.status}: {f.error}", file=sys.stderr)
        elif f.status == "empty":
            print(f"{f.path}: no transactions found", file=sys.stderr)
        if f.dropped_headers:
            print(f"{f.path}: unmapped columns: {', '.join(f.dropped_headers)}", file=sys.stderr)

    for c in report.candidates:
        if as_json:
            print(json.dumps(c.as_dict(), ensure_ascii=False))
        else:
            print(
                f"{c.booking_date}\t{c.amount_cents}\t{c.counterpart_name or ''}\t{c.purpose or ''}"
            )

    if persist and report.candidates:
        try:
            from db.client import session_scope
            from .persistence import insert_candidates, load_active_rules, load_transactions
            from .rules import RuleEngine

            with session_scope(database_url=database_url) as session:
                new_ids: list[str] = []
                duplicates = 0
                for f in report.files:
                    if not f.candidates:
                        continue
                    outcome = insert_candidates(
                        session, account_id, f.candidates, source_file=f.path
                    )
                    new_ids.extend(outcome.ids)
                    duplicates += outcome.duplicates

                rules = load_active_rules(session)
                classified = 0
                if new_ids and rules:
                    txs = load_transactions(session, ids=new_ids)
                    result = RuleEngine(rules).classify(txs)
                    classified = _write_back(session, txs, result.matches, rules)
        except Exception as e:
            _err(f"persistence failed: {e}")
            return 1
        print(
            f"Persisted {len(new_ids)} new transactions ({duplicates} duplicates skipped), "
            f"{classified} classified by rules",
            file=sys.stderr,
        )

    print(report.summary(), file=sys.stderr)
    return 1 if report.failed else 0


def cmd_apply_rule(
    rule_id: str,
    *,
    account_id: str | None = None,
    force: bool = False,
    dry_run: bool = False,
    database_url: str | None = None,
) -> int:
    """Backfill one stored rule over stored transactions."""

    from db.client import session_scope
    from .persistence import load_rule, load_transactions
    from .rules import RuleEngine

    try:
        with session_scope(database_url=database_url) as session:
            rule = load_rule(session, rule_id)
            if rule is None:
                _err(f"rule not found: {rule_id}")
                return 1
            txs = load_transactions(session, account_id=account_id)
            report = RuleEngine([rule]).backfill(rule, txs, force=force, dry_run=dry_run)
            if not dry_run:
                _write_back(session, txs, [(i, rule.id) for i in report.matched_ids], [rule])
    except Exception as e:
        _err(f"apply-rule failed: {e}")
        return 1

    if dry_run:
        for tx_id in report.matched_ids:
            print(tx_id)
        print(f"{len(report.matched_ids)} transactions would match rule {rule_id}", file=sys.stderr)
    else:
        print(
            f"Applied rule {rule_id} to {report.applied} transactions "
            f"({report.skipped} already classified, skipped)",
            file=sys.stderr,
        )
    return 0


def cmd_classify(*, account_id: str | None = None, database_url: str | None = None) -> int:
    """Run all active rules over stored, still-unclassified transactions."""

    from db.client import session_scope
    from .persistence import load_active_rules, load_transactions
    from .rules import RuleEngine

    try:
        with session_scope(database_url=database_url) as session:
            rules = load_active_rules(session)
            txs = load_transactions(session, account_id=account_id, only_unclassified=True)
            result = RuleEngine(rules).classify(txs)
            classified = _write_back(session, txs, result.matches, rules)
    except Exception as e:
        _err(f"classify failed: {e}")
        return 1

    print(f"Classified {classified} of {len(txs)} unclassified transactions", file=sys.stderr)
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank statements (CSV/XLSX/PDF) and classify transactions with rules. "
        "Loads DATABASE_URL and OPENAI_API_KEY from a local .env before running."
    ),
)

DATABASE_URL_OPTION = typer.Option(None, help="Override DATABASE_URL (falls back to env var).")


@app.command("import")
def import_cmd(
    paths: list[Path] = typer.Argument(..., help="Statement files to import."),  # noqa: B008
    *,
    account_id: str = typer.Option("default", help="Account the statements belong to."),
    persist: bool = typer.Option(
        False, help="Insert new transactions and classify them with active rules."
    ),
    database_url: str | None = DATABASE_URL_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print candidates as JSON lines."),
) -> None:
    """Parse statement files into canonical transactions."""

    code = cmd_import(
        paths, account_id=account_id, persist=persist, database_url=database_url, as_json=as_json
    )
    raise typer.Exit(code)


@app.command("apply-rule")
def apply_rule_cmd(
    rule_id: str = typer.Argument(..., help="Id of the stored rule to backfill."),
    *,
    account_id: str | None = typer.Option(None, help="Restrict to one account."),
    force: bool = typer.Option(
        False, help="Also overwrite transactions classified manually or by other rules."
    ),
    dry_run: bool = typer.Option(False, help="List matching transactions without changing them."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Apply one rule retroactively to stored transactions."""

    code = cmd_apply_rule(
        rule_id, account_id=account_id, force=force, dry_run=dry_run, database_url=database_url
    )
    raise typer.Exit(code)


@app.command("classify")
def classify_cmd(
    *,
    account_id: str | None = typer.Option(None, help="Restrict to one account."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Classify stored transactions that no rule or user has classified yet."""

    raise typer.Exit(cmd_classify(account_id=account_id, database_url=database_url))


@app.callback()
def _root() -> None:
    """Load ``.env`` (without overriding the environment) and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
