"""
Visible-task resolution.

``resolve_visible`` is a pure function of the task set, the filter
configuration and today's date. It works in phases: a base completion filter,
direct matching against every active predicate, then hierarchy expansion so a
matching subtask never appears without its parent and a matching parent
brings its subtasks along.
"""
from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .models import (
    DateRange,
    FilterConfig,
    Person,
    QuadrantType,
    RecurringTemplate,
    Subtask,
    Tag,
    TaskBase,
    ViewMode,
)

TIMEFRAMES = ('today', 'yesterday', 'thisweek', 'lastweek', '2weeksago', 'thismonth', 'lastmonth')

def _completed_within(task: TaskBase, window: DateRange) -> bool:
    return task.completed and task.completed_at is not None and window.contains(task.completed_at)

def _matches_today_view(task: TaskBase, config: FilterConfig, today: date) -> bool:
    components = config.today_components
    due = task.due_date.date() if task.due_date is not None else None

    if components.show_overdue and due is not None and due < today:
        return True
    if components.show_due_soon and due is not None and due >= today:
        if config.today_days_ahead is None or due <= today + timedelta(days=config.today_days_ahead):
            return True
    if components.show_starred and task.is_starred:
        return True
    return False

def _matches_search(task: TaskBase, query: str, tag_names: Dict[str, str], person_names: Dict[str, str]) -> bool:
    if query in task.title.lower():
        return True
    if task.description and query in task.description.lower():
        return True
    if any(query in tag_names.get(tag_id, "") for tag_id in task.tags):
        return True
    return any(query in person_names.get(person_id, "") for person_id in task.people)

def is_direct_match(task: TaskBase, config: FilterConfig, today: date,
                    tag_names: Optional[Dict[str, str]] = None,
                    person_names: Optional[Dict[str, str]] = None) -> bool:
    """True if ``task`` passes every active predicate of ``config`` on its own."""
    if config.date_range_active and not _completed_within(task, config.completed_date_range):
        return False

    if config.view_mode == ViewMode.TODAY and not _matches_today_view(task, config, today):
        return False

    if config.completed_view_active and not _completed_within(task, config.completed_date_range):
        return False

    query = config.search_query.strip().lower()
    if query and not _matches_search(task, query, tag_names or {}, person_names or {}):
        return False

    if config.selected_tags and not task.tags & config.selected_tags:
        return False

    if config.selected_people and not task.people & config.selected_people:
        return False

    if task.quadrant in config.starred_only_quadrants and not task.is_starred:
        return False

    return True

def _base_candidates(tasks: Sequence[TaskBase], config: FilterConfig) -> List[TaskBase]:
    if not config.show_completed:
        return [t for t in tasks if not t.completed]

    if config.completed_cutoff is not None and not config.show_completed_only:
        cutoff = datetime.combine(config.completed_cutoff, time.min)
        return [t for t in tasks
                if not t.completed or (t.completed_at is not None and t.completed_at >= cutoff)]

    return list(tasks)

def resolve_visible(tasks: Sequence[TaskBase], config: FilterConfig,
                    tags: Iterable[Tag] = (), people: Iterable[Person] = (),
                    now: Optional[datetime] = None) -> List[TaskBase]:
    """
    Return the tasks visible under ``config``, in their original relative order.

    Args:
        tasks: The full task set.
        config: Active filters.
        tags: Known tags, used to search by tag name.
        people: Known people, used to search by person name.
        now: Reference time for the Today view; defaults to the current time.
    """
    today = (now or datetime.now()).date()
    tag_names = {tag.id: tag.name.lower() for tag in tags}
    person_names = {person.id: person.name.lower() for person in people}

    candidates = _base_candidates(tasks, config)
    matched: Set[str] = {t.id for t in candidates if is_direct_match(t, config, today, tag_names, person_names)}
    subtasks = [t for t in candidates if isinstance(t, Subtask)]

    # Subtasks of matching parents
    for task in subtasks:
        if task.parent_id in matched:
            if config.completed_view_active:
                if _completed_within(task, config.completed_date_range):
                    matched.add(task.id)
            else:
                matched.add(task.id)

    # Parents of matching subtasks
    for task in subtasks:
        if task.id in matched:
            matched.add(task.parent_id)

    # Parents pulled in above bring all of their subtasks
    if config.view_mode != ViewMode.COMPLETED and not config.date_range_active:
        for task in subtasks:
            if task.parent_id in matched:
                matched.add(task.id)

    return [t for t in candidates if t.id in matched and not isinstance(t, RecurringTemplate)]

class FilterResolver:
    """
    Memoizing front for ``resolve_visible``.

    Inputs are frozen models, so equal inputs hash equally and repeated
    resolution of an unchanged task set is a cache hit.
    """

    def __init__(self, maxsize: int = 32):
        self._resolve = lru_cache(maxsize=maxsize)(self._compute)

    @staticmethod
    def _compute(tasks: Tuple[TaskBase, ...], config: FilterConfig,
                 tags: Tuple[Tag, ...], people: Tuple[Person, ...], today: date) -> Tuple[TaskBase, ...]:
        now = datetime.combine(today, time.min)
        return tuple(resolve_visible(tasks, config, tags, people, now))

    def resolve(self, tasks: Iterable[TaskBase], config: FilterConfig,
                tags: Iterable[Tag] = (), people: Iterable[Person] = (),
                now: Optional[datetime] = None) -> Tuple[TaskBase, ...]:
        today = (now or datetime.now()).date()
        return self._resolve(tuple(tasks), config, tuple(tags), tuple(people), today)

    def cache_info(self):
        return self._resolve.cache_info()

    def clear(self) -> None:
        self._resolve.cache_clear()

def completed_view_range(timeframe: str, today: Optional[date] = None) -> DateRange:
    """
    Date range for one of the Completed view's preset timeframes.

    Weeks start on Monday; ``thisweek`` and ``thismonth`` end today.
    """
    today = today or date.today()
    monday = today - timedelta(days=today.weekday())

    if timeframe == 'today':
        return DateRange(start=today, end=today)
    if timeframe == 'yesterday':
        yesterday = today - timedelta(days=1)
        return DateRange(start=yesterday, end=yesterday)
    if timeframe == 'thisweek':
        return DateRange(start=monday, end=today)
    if timeframe == 'lastweek':
        return DateRange(start=monday - timedelta(weeks=1), end=monday - timedelta(days=1))
    if timeframe == '2weeksago':
        return DateRange(start=monday - timedelta(weeks=2), end=monday - timedelta(weeks=1, days=1))
    if timeframe == 'thismonth':
        return DateRange(start=today.replace(day=1), end=today)
    if timeframe == 'lastmonth':
        last_day = today.replace(day=1) - timedelta(days=1)
        return DateRange(start=last_day.replace(day=1), end=last_day)

    raise ValueError(f"Unknown timeframe '{timeframe}', expected one of {', '.join(TIMEFRAMES)}")

def group_by_quadrant(tasks: Iterable[TaskBase]) -> "OrderedDict[QuadrantType, List[TaskBase]]":
    """
    Top-level tasks per quadrant, sorted by order. Every quadrant is present,
    possibly empty; subtasks are reached through their parents.
    """
    grouped: "OrderedDict[QuadrantType, List[TaskBase]]" = OrderedDict((q, []) for q in QuadrantType)
    for task in tasks:
        if not isinstance(task, Subtask):
            grouped[task.quadrant].append(task)
    for quadrant in grouped:
        grouped[quadrant].sort(key=lambda t: t.order)
    return grouped
