"""Build-order resolution over the dependency graph.

Dependencies form a directed graph where an entry ``A`` listing ``B`` in its
``deps`` means ``B`` must be built before ``A``. Skipped entries are removed
from the graph entirely, which is why an active entry may never depend on a
skipped one. Ordering uses Kahn's algorithm with a FIFO queue so that entries
that become ready at the same time keep their declaration order; builds and
logs are therefore reproducible run to run.
"""
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple
import logging

from .config_loader import BuildConfig
from .errors import CircularDependencyError, ConfigurationError

logger = logging.getLogger(__name__)


def partition_skipped(config: BuildConfig) -> Tuple[List[str], List[str]]:
    """Split dependency keys into ``(active, skipped)`` in declaration order."""

    active: List[str] = []
    skipped: List[str] = []
    for key, dep in config.deps.items():
        if dep.skip:
            skipped.append(key)
        else:
            active.append(key)
    return active, skipped


def _skip_violations(config: BuildConfig, active: Sequence[str], skipped: Iterable[str]) -> List[str]:
    skipped_set = set(skipped)
    violations: List[str] = []
    for key in active:
        hits = [dep for dep in config.deps[key].dep_keys if dep in skipped_set]
        if hits:
            violations.append(f'"{key}" depends on skipped: [{", ".join(hits)}]')
    return violations


def resolve_build_order(config: BuildConfig) -> List[str]:
    """Return active dependency keys ordered so prerequisites come first.

    Raises :class:`ConfigurationError` when an active dependency lists a
    skipped one and :class:`CircularDependencyError` naming every cycle when
    the active graph is not acyclic.
    """

    active, skipped = partition_skipped(config)
    for key in skipped:
        logger.info("dependency '%s' is marked as skipped", key)

    violations = _skip_violations(config, active, skipped)
    if violations:
        logger.error("active dependencies depend on skipped dependencies: %s", violations)
        raise ConfigurationError(
            violations,
            header=(
                "Non-skipped dependencies cannot depend on skipped dependencies "
                "(mark the dependent as skip, drop the entry from its deps, or unskip it)"
            ),
        )

    dependents: Dict[str, List[str]] = {key: [] for key in active}
    indegree: Dict[str, int] = {}
    for key in active:
        prerequisites = config.deps[key].dep_keys
        indegree[key] = len(prerequisites)
        for dep in prerequisites:
            dependents.setdefault(dep, []).append(key)

    queue = deque(key for key in active if indegree[key] == 0)
    order: List[str] = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for dependent in dependents.get(current, ()):
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                queue.append(dependent)

    if len(order) < len(active):
        ordered = set(order)
        unvisited = [key for key in active if key not in ordered]
        deps_map = {key: config.deps[key].dep_keys for key in active}
        cycles = find_cycles(deps_map, unvisited)
        if cycles:
            logger.error("circular dependencies detected: %s", cycles)
            raise CircularDependencyError(cycles)
        # Only reachable when a prerequisite is neither active nor skipped.
        raise ConfigurationError(
            [f'"{key}" has unresolvable prerequisites: {deps_map[key]}' for key in unvisited],
            header="Dependencies reference entries outside the build graph",
        )

    logger.info("build order resolved: %s", order)
    return order


def find_cycles(deps_map: Mapping[str, Sequence[str]], nodes: Iterable[str]) -> List[List[str]]:
    """Enumerate every elementary cycle among ``nodes`` following ``deps_map`` edges.

    Each cycle is returned as a closed path, e.g. ``["a", "b", "a"]``, that
    starts at whichever of its members comes first in ``nodes``. Edges leaving
    ``nodes`` are ignored and every cycle is reported exactly once.
    """

    candidates = list(dict.fromkeys(nodes))
    remaining = set(candidates)
    cycles: List[List[str]] = []

    def walk(start: str, node: str, path: List[str]) -> None:
        for dep in dict.fromkeys(deps_map.get(node, ())):
            if dep == start:
                cycles.append(path + [start])
            elif dep in remaining and dep not in path:
                path.append(dep)
                walk(start, dep, path)
                path.pop()

    # Cycles through an earlier start node were already reported from it.
    for start in candidates:
        walk(start, start, [start])
        remaining.discard(start)
    return cycles


def dependencies_of(config: BuildConfig, key: str) -> List[str]:
    dep = config.get_dependency(key)
    return dep.dep_keys if dep is not None else []


def select_targets(order: Sequence[str], only: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Filter ``order`` down to ``only``.

    Returns ``(selected, missing)`` where ``selected`` keeps the resolved
    relative order and ``missing`` lists requested keys absent from ``order``.
    """

    requested = list(dict.fromkeys(only))
    wanted = set(requested)
    selected = [key for key in order if key in wanted]
    present = set(order)
    missing = [key for key in requested if key not in present]
    return selected, missing


def expand_with_prerequisites(config: BuildConfig, only: Iterable[str]) -> List[str]:
    """Return ``only`` plus every transitive prerequisite, requested keys first."""

    expanded: List[str] = []
    seen: set[str] = set()
    stack = list(reversed(list(only)))
    while stack:
        key = stack.pop()
        if key in seen:
            continue
        seen.add(key)
        expanded.append(key)
        stack.extend(reversed(dependencies_of(config, key)))
    return expanded
