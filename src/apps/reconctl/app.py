import typer

from apps.reconctl.reconcile import reconcile
from apps.reconctl.stream import stream


app = typer.Typer(help="Reconcile tabular datasets and run reconciliation streams")

app.command("reconcile")(reconcile)
app.command("stream")(stream)
