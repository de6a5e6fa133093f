"""
exam_ai_core/console_report.py
-----------------------------------
Rich console views of the core's outputs: pattern report, exam plan,
composed exam and composition failures.
"""

from typing import Mapping, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from exam_core.errors import ExamCompositionFailed
from exam_core.schema import ComposedExam, ExamPlan, MarkingScheme, PatternReport, Trend

TREND_ICON = {Trend.UP: "📈", Trend.DOWN: "📉", Trend.STABLE: "➖"}


def print_pattern_report(report: PatternReport, console: Optional[Console] = None, limit: int = 20) -> None:
    console = console or Console()

    if report.reduced_confidence:
        console.print(
            f"[yellow]⚠️ Reduced confidence: only {len(report.distinct_years)} year(s) of history.[/yellow]"
        )

    table = Table(title=f"📊 Module forecast for {report.current_year}")
    table.add_column("Module", style="cyan")
    table.add_column("Likelihood", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Last seen", justify="right")
    table.add_column("Avg marks", justify="right")
    table.add_column("Trend", justify="center")
    for s in report.ranked_modules()[:limit]:
        md = report.mark_distribution.get(s.module)
        overdue = " ⏰" if s.overdue_bonus_applied else ""
        table.add_row(
            escape(s.module),
            f"{s.predicted_likelihood:.2f}",
            f"{s.confidence:.2f}",
            f"{s.last_seen_year}{overdue}",
            f"{s.average_marks:.1f}",
            f"{TREND_ICON[md.trend]} {md.trend.value}" if md else "-",
        )
    console.print(table)

    if report.type_distribution:
        types = Table(title="Question types")
        types.add_column("Type", style="magenta")
        types.add_column("Share", justify="right")
        for t, pct in sorted(report.type_distribution.items(), key=lambda kv: -kv[1]):
            types.add_row(t.value, f"{pct:.1f}%")
        console.print(types)


def print_plan(plan: ExamPlan, console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title=f"🗂️ Exam plan ({plan.total_marks} marks, {plan.spec.duration_minutes} min)")
    table.add_column("Slot")
    table.add_column("Module", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Marks", justify="right")
    for s in plan.slots:
        table.add_row(escape(s.slot_id), escape(s.module), s.question_type.value, str(s.target_marks))
    console.print(table)
    for w in plan.warnings:
        console.print(f"[yellow]⚠️ {escape(w)}[/yellow]")


def print_exam(
    exam: ComposedExam,
    console: Optional[Console] = None,
    schemes: Optional[Mapping[str, MarkingScheme]] = None,
) -> None:
    console = console or Console()
    console.print(f"\n📘 [bold]Exam {escape(exam.exam_id)}[/bold] · {exam.total_marks} marks\n")
    for n, q in enumerate(exam.slots, 1):
        console.print(
            f"[bold]{n}.[/bold] [cyan]{escape(q.module)}[/cyan] · {q.question_type.value} · "
            f"[green]{q.marks} marks[/green] (alignment {q.alignment_score:.2f})"
        )
        console.print(q.text, markup=False)
        scheme = (schemes or {}).get(q.slot_id)
        if scheme:
            for step in scheme.steps:
                console.print(f"   • {escape(step.description)} [dim]({step.marks})[/dim]")
        console.print()


def print_failure(error: ExamCompositionFailed, console: Optional[Console] = None) -> None:
    console = console or Console()
    console.print(f"[red]❌ {escape(error.summary())}[/red]")
