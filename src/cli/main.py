"""
Typer CLI for the study planner.

Commands:
    planner goals list              - Show goals with topic decay levels
    planner goals add               - Create a goal (with optional topics)
    planner goals topic             - Add a topic to a goal
    planner goals delete            - Delete a goal, its sessions and planned tasks
    planner log                     - Record a study session
    planner review                  - Show topics due for review, most urgent first
    planner plan show               - Show the plan for a date
    planner plan generate           - Generate and store the plan for a date
    planner plan delete             - Delete the plan for a date
    planner db init                 - Initialize database tables
    planner serve                   - Run the HTTP API
    planner info                    - Show configuration

Usage:
    planner --help
    planner goals add "Networking Exam" --type exam --deadline 2026-12-01 --priority 5 -t Subnetting -t VLANs
    planner log <goal-id> <topic-id> --minutes 45
    planner plan generate --date 2026-10-20
"""

from __future__ import annotations

import sys
from contextlib import closing
from datetime import datetime

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import get_settings
from src.planner import PlannerError, StudyPlannerService
from src.planner.decay import get_days_until_review
from src.planner.models import DailyPlan, DecayLevel, UserState

app = typer.Typer(
    help="Study planner CLI: goals, topics, sessions and daily plans",
    no_args_is_help=True,
)

console = Console()

DECAY_STYLES = {
    DecayLevel.GREEN: "green",
    DecayLevel.YELLOW: "yellow",
    DecayLevel.ORANGE: "dark_orange",
    DecayLevel.RED: "red",
}


def _user_option():
    return typer.Option(None, "--user", "-u", help="User key (defaults to DEFAULT_USER_ID)")


def _service() -> StudyPlannerService:
    settings = get_settings()
    generator = None
    if settings.has_plan_generator():
        from src.planner.plan_client import RemotePlanGenerator

        generator = RemotePlanGenerator(
            api_url=settings.plan_generator_url,
            timeout_ms=settings.plan_generator_timeout_ms,
            retry_attempts=settings.plan_generator_retry_attempts,
        )
    return StudyPlannerService(plan_generator=generator, settings=settings)


def _resolve_user(user: str | None) -> str:
    return user or get_settings().default_user_id


def _fail(error: PlannerError) -> None:
    rprint(f"[red]✗[/red] {error.message}")
    raise typer.Exit(code=1)


# ========================================
# Goal Commands
# ========================================

goals_app = typer.Typer(help="Goal and topic management")
app.add_typer(goals_app, name="goals")


@goals_app.command("list")
def goals_list(user: str | None = _user_option()) -> None:
    """Show all goals with each topic's decay level and next review."""
    user_key = _resolve_user(user)
    try:
        with closing(_service()) as service:
            goals = service.get_goals_with_decay(user_key)
    except PlannerError as e:
        _fail(e)

    if not goals:
        rprint("[yellow]No goals yet.[/yellow] Add one with [cyan]planner goals add[/cyan]")
        return

    for goal in goals:
        table = Table(
            title=f"{goal.title} [dim]({goal.type.value}, P{goal.priority}, {goal.status.value})[/dim]",
            caption=f"id {goal.id} · deadline {goal.deadline:%Y-%m-%d}",
            show_header=True,
        )
        table.add_column("Topic", style="cyan")
        table.add_column("Decay", justify="center")
        table.add_column("Mastery", justify="right")
        table.add_column("Reviews", justify="right", style="dim")
        table.add_column("Next Review", justify="right")
        table.add_column("ID", style="dim", overflow="fold")

        for topic in goal.topics_with_decay:
            style = DECAY_STYLES[topic.decay_level]
            days = get_days_until_review(topic.last_reviewed, topic.review_count, service.clock())
            if days is None:
                next_review = "now"
            elif days <= 0:
                next_review = "[red]due[/red]"
            else:
                next_review = f"in {days}d"
            table.add_row(
                topic.name,
                f"[{style}]●[/{style}] {topic.decay_level.value}",
                f"{topic.mastery_level}%",
                str(topic.review_count),
                next_review,
                topic.id,
            )
        console.print(table)


@goals_app.command("add")
def goals_add(
    title: str = typer.Argument(..., help="Goal title"),
    goal_type: str = typer.Option("exam", "--type", help="exam, project or commitment"),
    deadline: str = typer.Option(..., "--deadline", "-d", help="Deadline (ISO 8601 date or datetime)"),
    priority: int = typer.Option(3, "--priority", "-p", min=1, max=5, help="Priority 1-5"),
    topics: list[str] | None = typer.Option(None, "--topic", "-t", help="Topic name (repeatable)"),
    user: str | None = _user_option(),
) -> None:
    """Create a goal."""
    payload = {
        "title": title,
        "type": goal_type,
        "deadline": deadline,
        "priority": priority,
        "topics": topics or [],
    }
    try:
        with closing(_service()) as service:
            goal = service.add_goal(_resolve_user(user), payload)
    except PlannerError as e:
        _fail(e)

    rprint(f"[green]✓[/green] Created goal [bold]{goal.title}[/bold] ({goal.id})")
    for topic in goal.topics:
        rprint(f"  • {topic.name} [dim]({topic.id})[/dim]")


@goals_app.command("topic")
def goals_topic(
    goal_id: str = typer.Argument(..., help="Goal id"),
    name: str = typer.Argument(..., help="Topic name"),
    notes: str = typer.Option("", "--notes", "-n", help="Free-text notes"),
    user: str | None = _user_option(),
) -> None:
    """Add a topic to a goal."""
    try:
        with closing(_service()) as service:
            topic = service.add_topic(_resolve_user(user), goal_id, {"name": name, "notes": notes})
    except PlannerError as e:
        _fail(e)
    rprint(f"[green]✓[/green] Added topic [bold]{topic.name}[/bold] ({topic.id})")


@goals_app.command("delete")
def goals_delete(
    goal_id: str = typer.Argument(..., help="Goal id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    user: str | None = _user_option(),
) -> None:
    """Delete a goal together with its sessions and planned tasks."""
    if not yes:
        typer.confirm(f"Delete goal {goal_id} and its study history?", abort=True)
    try:
        with closing(_service()) as service:
            service.delete_goal(_resolve_user(user), goal_id)
    except PlannerError as e:
        _fail(e)
    rprint(f"[green]✓[/green] Deleted goal {goal_id}")


# ========================================
# Session & Review Commands
# ========================================


@app.command("log")
def log_session(
    goal_id: str = typer.Argument(..., help="Goal id"),
    topic_id: str = typer.Argument(..., help="Topic id"),
    minutes: float = typer.Option(..., "--minutes", "-m", min=0, help="Session length in minutes"),
    notes: str = typer.Option("", "--notes", "-n", help="Session notes"),
    user: str | None = _user_option(),
) -> None:
    """Record a study session on a topic."""
    user_key = _resolve_user(user)
    try:
        with closing(_service()) as service:
            session = service.record_session(
                user_key,
                {"goalId": goal_id, "topicId": topic_id, "durationMinutes": minutes, "notes": notes},
            )
            topic = service.get_state(user_key).find_goal(goal_id).find_topic(topic_id)
    except PlannerError as e:
        _fail(e)

    rprint(
        f"[green]✓[/green] Logged {session.duration_minutes:g}min on [bold]{topic.name}[/bold]: "
        f"mastery {topic.mastery_level}%, {topic.review_count} reviews"
    )


@app.command("review")
def review_queue(
    as_of: str | None = typer.Option(None, "--as-of", help="Evaluate as of this ISO 8601 time"),
    user: str | None = _user_option(),
) -> None:
    """Show topics due for review, most urgent first."""
    try:
        when = datetime.fromisoformat(as_of) if as_of else None
    except ValueError:
        rprint(f"[red]✗[/red] Invalid --as-of value: {as_of}")
        raise typer.Exit(code=1) from None

    user_key = _resolve_user(user)
    try:
        with closing(_service()) as service:
            topics = service.get_topics_needing_review(user_key, when)
            state = service.get_state(user_key)
    except PlannerError as e:
        _fail(e)

    if not topics:
        rprint("[green]Nothing to review.[/green]")
        return

    table = Table(title=f"Review Queue ({len(topics)})", show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Topic", style="cyan")
    table.add_column("Goal")
    table.add_column("Mastery", justify="right")
    table.add_column("Last Reviewed", justify="right")

    for rank, topic in enumerate(topics, start=1):
        goal = state.find_goal(topic.goal_id)
        last = f"{topic.last_reviewed:%Y-%m-%d}" if topic.last_reviewed else "[red]never[/red]"
        table.add_row(str(rank), topic.name, goal.title if goal else "?", f"{topic.mastery_level}%", last)

    console.print(table)


# ========================================
# Plan Commands
# ========================================

plan_app = typer.Typer(help="Daily plans")
app.add_typer(plan_app, name="plan")


def _print_plan(state: UserState, plan: DailyPlan) -> None:
    table = Table(show_header=True)
    table.add_column("Type", style="magenta")
    table.add_column("Topic", style="cyan")
    table.add_column("Minutes", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Why", style="dim")

    total = 0
    for task in plan.tasks:
        goal = state.find_goal(task.goal_id)
        topic = goal.find_topic(task.topic_id) if goal else None
        total += task.estimated_minutes
        table.add_row(
            task.type.value,
            topic.name if topic else task.topic_id,
            str(task.estimated_minutes),
            str(task.priority),
            task.reasoning,
        )

    console.print(Panel(plan.reasoning or "-", title=f"Plan for {plan.date}", border_style="cyan"))
    console.print(table)
    rprint(f"  Total: [bold]{total}[/bold] minutes across {len(plan.tasks)} tasks")


@plan_app.command("show")
def plan_show(
    date: str | None = typer.Option(None, "--date", help="YYYY-MM-DD (defaults to today, UTC)"),
    user: str | None = _user_option(),
) -> None:
    """Show the plan for a date."""
    user_key = _resolve_user(user)
    try:
        with closing(_service()) as service:
            day = date or service.clock().date().isoformat()
            plan = service.get_daily_plan(user_key, day)
            state = service.get_state(user_key)
    except PlannerError as e:
        _fail(e)

    if plan is None:
        rprint(f"[yellow]No plan for {day}.[/yellow] Create one with [cyan]planner plan generate[/cyan]")
        return
    _print_plan(state, plan)


@plan_app.command("generate")
def plan_generate(
    date: str | None = typer.Option(None, "--date", help="YYYY-MM-DD (defaults to today, UTC)"),
    user: str | None = _user_option(),
) -> None:
    """Generate and store the plan for a date (replaces any existing plan)."""
    user_key = _resolve_user(user)
    try:
        with closing(_service()) as service:
            plan = service.plan_for_date(user_key, date)
            state = service.get_state(user_key)
    except PlannerError as e:
        _fail(e)

    rprint("[green]✓[/green] Plan generated")
    _print_plan(state, plan)


@plan_app.command("delete")
def plan_delete(
    date: str = typer.Argument(..., help="YYYY-MM-DD"),
    user: str | None = _user_option(),
) -> None:
    """Delete the plan for a date."""
    try:
        with closing(_service()) as service:
            deleted = service.delete_daily_plan(_resolve_user(user), date)
    except PlannerError as e:
        _fail(e)

    if deleted:
        rprint(f"[green]✓[/green] Deleted plan for {date}")
    else:
        rprint(f"[dim]No plan for {date}[/dim]")


# ========================================
# Service Commands
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from src.db.database import init_db

    logger.info("Initializing database tables...")
    init_db()
    rprint("[green]✓[/green] Database initialized!")


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address"),
    port: int | None = typer.Option(None, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command("info")
def show_info() -> None:
    """Show configuration."""
    settings = get_settings()

    table = Table(title="Study Planner Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Database URL", settings.database_url)
    table.add_row("Default User", settings.default_user_id)
    table.add_row("Plan Generator", settings.plan_generator_url or "Not set (fallback plans only)")
    table.add_row("Fallback Tasks", str(settings.fallback_plan_max_tasks))
    table.add_row("API", f"{settings.api_host}:{settings.api_port}")
    table.add_row("Log Level", settings.log_level)

    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    settings = get_settings()
    logger.remove()
    # Keep INFO chatter out of table output
    logger.add(sys.stderr, level="WARNING" if settings.log_level == "INFO" else settings.log_level)
    app()


if __name__ == "__main__":
    main()
