#!/usr/bin/env python3
"""
Sale Ledger Audit

Recomputes amount_paid, balance and payment_status of every open sale from its
payment rows and reports the sales whose stored values drifted.

Usage:
    python -m cli.ledger_audit
    python -m cli.ledger_audit --fix --actor-id 1
"""

from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from models import SessionLocal, get_staff
from models.model_enums import Role
from repository.payments import open_sales, sum_payments
from services.sales import derive_ledger, resync_sale
from utils.auth import Actor
from utils.money import money2

console = Console()
app = typer.Typer(help="Sale ledger audit")

def find_drifted_sales(db) -> list[dict]:
    drifted = []
    for sale in open_sales(db):
        amount_paid = sum_payments(db, sale.id)
        balance, payment_status = derive_ledger(sale.total, amount_paid)
        if money2(sale.amount_paid) != amount_paid or money2(sale.balance) != balance or sale.payment_status != payment_status:
            drifted.append({
                "sale_id": sale.id,
                "sale_number": sale.sale_number,
                "stored": (money2(sale.amount_paid), money2(sale.balance), sale.payment_status),
                "expected": (amount_paid, balance, payment_status),
            })
    return drifted

def render(drifted: list[dict]):
    table = Table(title="Drifted sales")
    table.add_column("Sale", style="cyan")
    table.add_column("Stored paid / balance / status")
    table.add_column("Expected paid / balance / status", style="green")
    for row in drifted:
        stored_paid, stored_balance, stored_status = row["stored"]
        paid, balance, status = row["expected"]
        table.add_row(
            row["sale_number"],
            f"{stored_paid} / {stored_balance} / {stored_status.value}",
            f"{paid} / {balance} / {status.value}",
        )
    console.print(table)

@app.command()
def audit(
    fix: Annotated[bool, typer.Option("--fix", help="Re-apply the ledger and billing propagation to drifted sales")] = False,
    actor_id: Annotated[Optional[int], typer.Option(help="Administrator account recorded as the actor when fixing")] = None,
):
    """Compare stored sale balances with their payment rows"""
    db = SessionLocal()
    try:
        drifted = find_drifted_sales(db)
        if not drifted:
            console.print("[green]All open sales are consistent with their payments[/green]")
            return
        render(drifted)

        if not fix:
            console.print(f"[yellow]{len(drifted)} sale(s) drifted. Run again with --fix to repair them.[/yellow]")
            raise typer.Exit(1)

        staff = get_staff(db, actor_id) if actor_id else None
        if not staff or staff.role != Role.ADMIN:
            console.print("[red]--fix requires --actor-id of an administrator account[/red]")
            raise typer.Exit(2)

        actor = Actor(id=staff.id, role=staff.role)
        for row in drifted:
            resync_sale(db, row["sale_id"], actor)
            console.print(f"✅ [green]{row['sale_number']} repaired[/green]")
    finally:
        db.close()

if __name__ == "__main__":
    app()
