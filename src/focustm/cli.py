"""
Command Line Interface for focustm.
"""

import asyncio
from datetime import datetime
from pathlib import Path

import click

from .audit import HistoryQuery, filter_entries, group_entries_by_date
from .config import load_settings
from .data import FocusContext, YAMLStorage
from .filters import TIMEFRAMES, completed_view_range, group_by_quadrant, resolve_visible
from .hierarchy import TaskIndex, children_of
from .models import (
    QUADRANT_TITLES,
    FilterConfig,
    HistoryActionType,
    QuadrantType,
    RecurrenceConfig,
    RecurrencePattern,
    RecurringInstance,
    RecurringTemplate,
    ViewMode,
)
from .recovery import FocusError
from .version import VERSION

QUADRANT_ALIASES = {
    "do": QuadrantType.URGENT_IMPORTANT,
    "schedule": QuadrantType.NOT_URGENT_IMPORTANT,
    "delegate": QuadrantType.URGENT_NOT_IMPORTANT,
    "eliminate": QuadrantType.NOT_URGENT_NOT_IMPORTANT,
}
QUADRANT_ALIASES.update({q.value: q for q in QuadrantType})

QUADRANT = click.Choice(list(QUADRANT_ALIASES), case_sensitive=False)

def _fail(message: str):
    click.echo(f"❌ {message}")
    click.get_current_context().exit(1)

def run_session(settings, action):
    """Run ``action(focus)`` inside a FocusContext and return its result."""
    async def session():
        async with FocusContext(settings) as focus:
            return action(focus)

    try:
        return asyncio.run(session())
    except FocusError as e:
        _fail(str(e))

def _task_id(focus, prefix: str) -> str:
    """Resolve a full id or a unique id prefix."""
    matches = [t.id for t in focus.store.tasks if t.id.startswith(prefix)]
    if prefix in matches:
        return prefix
    if not matches:
        _fail(f"No task matches '{prefix}'")
    if len(matches) > 1:
        _fail(f"'{prefix}' is ambiguous ({len(matches)} tasks match)")
    return matches[0]

def _label_ids(labels, names):
    """Map tag or person names (or ids) to ids."""
    ids = set()
    for name in names:
        match = next((l for l in labels if l.id == name or l.name.lower() == name.lower()), None)
        if match is None:
            _fail(f"Unknown label '{name}'")
        ids.add(match.id)
    return frozenset(ids)

def _format_task(task, indent: int = 1) -> str:
    box = "[x]" if task.completed else "[ ]"
    line = f"{'  ' * indent}{box} {task.title}  ({task.id})"
    if task.is_starred:
        line += " ★"
    if task.due_date:
        line += f"  due {task.due_date:%Y-%m-%d}"
    if isinstance(task, RecurringInstance):
        line += "  ↻"
    return line

@click.group()
@click.version_option(version=VERSION, prog_name="focus")
@click.option('--data-dir', type=click.Path(file_okay=False, path_type=Path), help='Override the data directory')
@click.pass_context
def main(ctx, data_dir):
    """
    focustm - Prioritize tasks on an urgent/important matrix.
    """
    try:
        settings = load_settings()
    except FocusError as e:
        _fail(f"Error loading settings: {e}")
    if data_dir is not None:
        settings = settings.model_copy(update={"data_dir": data_dir})
    ctx.obj = settings

@main.command()
@click.pass_obj
def init(settings):
    """Create an empty task file in the data directory."""
    storage = YAMLStorage(settings.data_dir)
    try:
        created = storage.init()
    except FocusError as e:
        _fail(f"Error initializing data directory: {e}")
    if not created:
        click.echo(f"❌ Already initialized ({storage.tasks_path} exists)")
        return
    click.echo(f"✅ Initialized {storage.tasks_path}")

@main.command()
@click.pass_obj
def status(settings):
    """Show where data lives and how much of it there is."""
    click.echo("🔧 focustm")
    click.echo(f"📦 Version: {VERSION}")
    click.echo(f"📁 Data: {settings.data_dir}")

    storage = YAMLStorage(settings.data_dir)
    if not storage.exists():
        click.echo("❌ No task file yet")
        click.echo("💡 Run 'focus init' to create one")
        return

    def report(focus):
        click.echo(f"📋 Schema: {storage.schema_version()}")
        grouped = group_by_quadrant(focus.store.tasks)
        for quadrant, tasks in grouped.items():
            done = sum(1 for t in tasks if t.completed)
            click.echo(f"   {QUADRANT_TITLES[quadrant]}: {len(tasks)} tasks, {done} completed")
        click.echo(f"🏷️  Tags: {len(focus.store.tags)}  👤 People: {len(focus.store.people)}")

    run_session(settings, report)

@main.command()
@click.argument('title')
@click.option('-q', '--quadrant', type=QUADRANT, default='do', show_default=True, help='Target quadrant')
@click.option('-d', '--description', help='Longer notes')
@click.option('--due', type=click.DateTime(), help='Due date')
@click.option('-t', '--tag', 'tags', multiple=True, help='Tag name (repeatable)')
@click.option('-p', '--person', 'people', multiple=True, help='Person name (repeatable)')
@click.option('--star', is_flag=True, help='Star the task')
@click.option('--recur', type=click.Choice([p.value for p in RecurrencePattern]), help='Make this a recurring template')
@click.option('--interval', type=int, default=1, show_default=True, help='Recurrence interval')
@click.pass_obj
def add(settings, title, quadrant, description, due, tags, people, star, recur, interval):
    """Add a task."""
    def action(focus):
        data = {
            "title": title,
            "quadrant": QUADRANT_ALIASES[quadrant.lower()],
            "description": description,
            "due_date": due,
            "is_starred": star,
            "tags": _label_ids(focus.store.tags, tags),
            "people": _label_ids(focus.store.people, people),
        }
        if recur:
            data["recurrence"] = RecurrenceConfig(pattern=RecurrencePattern(recur), interval=interval)
        return focus.store.add_task(data)

    task = run_session(settings, action)
    click.echo(f"✅ Added {task.kind} task {task.id} to {QUADRANT_TITLES[task.quadrant]}")

@main.command(name='list')
@click.option('-s', '--search', default='', help='Search title, description, tag and person names')
@click.option('-t', '--tag', 'tags', multiple=True, help='Only tasks with this tag (repeatable)')
@click.option('-p', '--person', 'people', multiple=True, help='Only tasks with this person (repeatable)')
@click.option('--hide-completed', is_flag=True, help='Hide completed tasks')
@click.option('--all', 'show_all', is_flag=True, help='Show completed tasks regardless of age')
@click.option('--starred-in', type=QUADRANT, multiple=True, help='Only starred tasks in this quadrant (repeatable)')
@click.option('--today', is_flag=True, help='Overdue, due soon and starred tasks')
@click.option('--completed', type=click.Choice(TIMEFRAMES), help='Tasks completed in a timeframe')
@click.option('--templates', is_flag=True, help='List recurring templates instead')
@click.pass_obj
def list_tasks(settings, search, tags, people, hide_completed, show_all, starred_in, today, completed, templates):
    """List visible tasks by quadrant."""
    if today and completed:
        _fail("--today and --completed are mutually exclusive")

    def action(focus):
        store = focus.store
        if templates:
            return [t for t in store.tasks if isinstance(t, RecurringTemplate)], None

        view_mode = ViewMode.TODAY if today else ViewMode.COMPLETED if completed else None
        config = FilterConfig(
            search_query=search,
            selected_tags=_label_ids(store.tags, tags),
            selected_people=_label_ids(store.people, people),
            show_completed=not hide_completed,
            starred_only_quadrants=frozenset(QUADRANT_ALIASES[q.lower()] for q in starred_in),
            view_mode=view_mode,
            completed_date_range=completed_view_range(completed) if completed else None,
            today_days_ahead=settings.today_days_ahead,
        )
        if not show_all and not completed:
            config = config.with_lookback(settings.completed_lookback_days)
        visible = resolve_visible(store.tasks, config, store.tags, store.people, datetime.now())
        return visible, TaskIndex(visible)

    visible, index = run_session(settings, action)

    if index is None:
        if not visible:
            click.echo("📭 No recurring templates")
        for template in visible:
            paused = " (paused)" if template.is_paused else ""
            click.echo(f"↻ {template.title}  ({template.id}) {template.recurrence.pattern.value}{paused}")
        return

    if not visible:
        click.echo("📭 No matching tasks")
        return

    for quadrant, tasks in group_by_quadrant(visible).items():
        if not tasks:
            continue
        click.echo(f"{QUADRANT_TITLES[quadrant]} ({quadrant.value})")
        for task in tasks:
            click.echo(_format_task(task))
            for child in children_of(task.id, index):
                click.echo(_format_task(child, indent=3))

@main.command()
@click.argument('task_id')
@click.pass_obj
def show(settings, task_id):
    """Show one task and its subtasks."""
    def action(focus):
        task = focus.store.get(_task_id(focus, task_id))
        return task, focus.store.get_subtasks(task.id), focus.store.tags, focus.store.people

    task, children, tags, people = run_session(settings, action)
    click.echo(f"📝 {task.title}")
    click.echo(f"   🆔 {task.id} ({task.kind})")
    click.echo(f"   📍 {QUADRANT_TITLES[task.quadrant]}")
    click.echo(f"   {'✅ Completed ' + format(task.completed_at, '%Y-%m-%d %H:%M') if task.completed else '⬜ Open'}")
    if task.description:
        click.echo(f"   📄 {task.description}")
    if task.due_date:
        click.echo(f"   📅 Due {task.due_date:%Y-%m-%d}")
    if task.tags:
        click.echo(f"   🏷️  {', '.join(t.name for t in tags if t.id in task.tags)}")
    if task.people:
        click.echo(f"   👤 {', '.join(p.name for p in people if p.id in task.people)}")
    if isinstance(task, RecurringTemplate):
        click.echo(f"   ↻ every {task.recurrence.interval} {task.recurrence.pattern.value}"
                   f"{' (paused)' if task.is_paused else ''}")
    for child in children:
        click.echo(_format_task(child, indent=2))

@main.command()
@click.argument('task_id')
@click.pass_obj
def complete(settings, task_id):
    """Toggle completion of a task."""
    task = run_session(settings, lambda focus: focus.store.toggle_complete(_task_id(focus, task_id)))
    click.echo(f"{'✅ Completed' if task.completed else '⬜ Reopened'} {task.title}")

@main.command()
@click.argument('task_id')
@click.pass_obj
def star(settings, task_id):
    """Toggle the star on a task."""
    task = run_session(settings, lambda focus: focus.store.toggle_star(_task_id(focus, task_id)))
    click.echo(f"{'★ Starred' if task.is_starred else '☆ Unstarred'} {task.title}")

@main.command()
@click.argument('task_id')
@click.option('-f', '--force', is_flag=True, help='Delete subtasks without asking')
@click.pass_obj
def delete(settings, task_id, force):
    """Delete a task (and its subtasks)."""
    def action(focus):
        resolved = _task_id(focus, task_id)
        if force:
            return len(focus.store.delete_task(resolved)) - 1
        has_subtasks, count = focus.store.delete_task_with_subtasks(resolved)
        if has_subtasks:
            if not click.confirm(f"Task has {count} subtask(s). Delete them too?", default=False):
                return None
            return len(focus.store.delete_task(resolved)) - 1
        return 0

    removed = run_session(settings, action)
    if removed is None:
        click.echo("🚫 Nothing deleted")
    else:
        click.echo(f"🗑️  Deleted task{f' and {removed} subtask(s)' if removed else ''}")

@main.command()
@click.argument('task_id')
@click.argument('quadrant', type=QUADRANT)
@click.option('--order', type=int, help='Position within the quadrant (default: end)')
@click.option('--with-subtasks', is_flag=True, help='Take subtasks along to the new quadrant')
@click.pass_obj
def move(settings, task_id, quadrant, order, with_subtasks):
    """Move a task to another quadrant or position."""
    target = QUADRANT_ALIASES[quadrant.lower()]

    def action(focus):
        resolved = _task_id(focus, task_id)
        position = order if order is not None else len(focus.store.tasks)
        mover = focus.store.move_task_with_subtasks if with_subtasks else focus.store.move_task
        return mover(resolved, target, position)

    task = run_session(settings, action)
    click.echo(f"📍 Moved {task.title} to {QUADRANT_TITLES[task.quadrant]} at position {task.order}")

@main.group()
def subtask():
    """Manage subtasks."""
    pass

@subtask.command(name='add')
@click.argument('parent_id')
@click.argument('title')
@click.option('-d', '--description', help='Longer notes')
@click.pass_obj
def subtask_add(settings, parent_id, title, description):
    """Add a subtask to a task."""
    task = run_session(settings, lambda focus: focus.store.add_subtask(
        _task_id(focus, parent_id), {"title": title, "description": description}))
    click.echo(f"✅ Added subtask {task.id}")

@subtask.command(name='move')
@click.argument('subtask_id')
@click.argument('parent_id')
@click.pass_obj
def subtask_move(settings, subtask_id, parent_id):
    """Move a subtask under another task."""
    task = run_session(settings, lambda focus: focus.store.move_subtask_to_parent(
        _task_id(focus, subtask_id), _task_id(focus, parent_id)))
    click.echo(f"📍 Moved {task.title} under {task.parent_id}")

@subtask.command(name='detach')
@click.argument('subtask_id')
@click.pass_obj
def subtask_detach(settings, subtask_id):
    """Turn a subtask into a standalone task."""
    task = run_session(settings, lambda focus: focus.store.detach_subtask(_task_id(focus, subtask_id)))
    click.echo(f"✂️  {task.title} is now a standalone task in {QUADRANT_TITLES[task.quadrant]}")

@subtask.command(name='reorder')
@click.argument('parent_id')
@click.argument('subtask_ids', nargs=-1, required=True)
@click.pass_obj
def subtask_reorder(settings, parent_id, subtask_ids):
    """Reorder the subtasks of a task (list every subtask id in the new order)."""
    run_session(settings, lambda focus: focus.store.reorder_subtasks(
        _task_id(focus, parent_id), [_task_id(focus, s) for s in subtask_ids]))
    click.echo("✅ Subtasks reordered")

def _label_group(kind: str, collection: str, add_method: str, delete_method: str):
    """Build the add/list/delete group shared by tags and people."""
    @click.group(name=kind, help=f"Manage {collection}.")
    def group():
        pass

    @group.command(name='add')
    @click.argument('name')
    @click.option('--color', help='Display color, e.g. #3B82F6')
    @click.pass_obj
    def add_label(settings, name, color):
        label = run_session(settings, lambda focus: getattr(focus.store, add_method)(name, color))
        click.echo(f"✅ Added {kind} {label.name} ({label.id})")

    @group.command(name='list')
    @click.pass_obj
    def list_labels(settings):
        labels = run_session(settings, lambda focus: getattr(focus.store, collection))
        if not labels:
            click.echo(f"📭 No {collection}")
        for label in labels:
            click.echo(f"{label.name}  ({label.id}) {label.color}")

    @group.command(name='delete')
    @click.argument('name')
    @click.pass_obj
    def delete_label(settings, name):
        def action(focus):
            (label_id,) = _label_ids(getattr(focus.store, collection), [name])
            getattr(focus.store, delete_method)(label_id)

        run_session(settings, action)
        click.echo(f"🗑️  Deleted {kind} {name}")

    return group

main.add_command(_label_group('tag', 'tags', 'add_tag', 'delete_tag'))
main.add_command(_label_group('person', 'people', 'add_person', 'delete_person'))

@main.command()
@click.option('-s', '--search', default='', help='Search task titles')
@click.option('-a', '--action', 'actions', type=click.Choice([a.value for a in HistoryActionType]), multiple=True,
              help='Only this action (repeatable)')
@click.option('-r', '--range', 'date_range', type=click.Choice(['today', '7days', '30days', 'all']), default='7days',
              show_default=True)
@click.option('-n', '--limit', type=int, default=50, show_default=True)
@click.pass_obj
def history(settings, search, actions, date_range, limit):
    """Show recent task events."""
    async def session():
        async with FocusContext(settings) as focus:
            return await focus.trail.log.query()

    try:
        entries = asyncio.run(session())
    except FocusError as e:
        _fail(str(e))

    query = HistoryQuery(search_query=search, action_types=[HistoryActionType(a) for a in actions],
                         date_range=date_range)
    entries = filter_entries(entries, query)[:limit]
    if not entries:
        click.echo("📭 No history")
        return

    for day, day_entries in group_entries_by_date(entries).items():
        click.echo(f"📅 {day:%A, %Y-%m-%d}")
        for entry in day_entries:
            deleted = " (deleted)" if entry.is_deleted else ""
            click.echo(f"   {entry.timestamp:%H:%M}  {entry.action.value:<24} {entry.task_title}{deleted}")

if __name__ == "__main__":
    main()
