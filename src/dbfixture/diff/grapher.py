"""
Foreign key dependency graph over the tables of a snapshot.

An edge A -> B means table A declares a foreign key referencing table B, so
B's rows must exist before A's are inserted and A's rows must be gone before
B's are deleted.
"""

import heapq
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Set

from ..core.models import Snapshot

logger = logging.getLogger(__name__)


@dataclass
class DependencyGraph:
    """
    Table ordering derived from declared foreign keys.

    Attributes:
        tables: Tables in declared (snapshot) order
        edges: ``{table: tables it references}``, restricted to ``tables``
        insert_order: Parents before dependents
        delete_order: Dependents before parents (reverse of insert_order)
        cycles: Cyclic components (mutual references or self-references)
        diagnostics: One message per cyclic component
    """
    tables: List[str]
    edges: Dict[str, List[str]]
    insert_order: List[str] = field(default_factory=list)
    delete_order: List[str] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "DependencyGraph":
        """Build the graph for every table of a snapshot."""
        tables = snapshot.table_names
        known = set(tables)
        edges: Dict[str, List[str]] = {}

        for name in tables:
            targets = []
            for ref in snapshot[name].referenced_tables:
                if ref in known:
                    targets.append(ref)
                else:
                    logger.debug(
                        f"Ignoring foreign key {name} -> {ref}: table not in snapshot"
                    )
            edges[name] = targets

        graph = cls(tables=tables, edges=edges)
        graph._compute_order()
        return graph

    def dependencies(self, table: str) -> List[str]:
        """Tables that ``table`` references."""
        return list(self.edges.get(table, []))

    def dependents(self, table: str) -> List[str]:
        """Tables that reference ``table``."""
        return [t for t in self.tables if table in self.edges.get(t, [])]

    @property
    def has_cycles(self) -> bool:
        return bool(self.cycles)

    def _compute_order(self) -> None:
        """Topologically sort strongly connected components, parents first."""
        position = {name: i for i, name in enumerate(self.tables)}
        components = self._strongly_connected_components()

        component_of: Dict[str, int] = {}
        for index, members in enumerate(components):
            for name in members:
                component_of[name] = index

        # Condensation: component -> components it depends on
        depends_on: Dict[int, Set[int]] = {i: set() for i in range(len(components))}
        for name, targets in self.edges.items():
            for target in targets:
                src, dst = component_of[name], component_of[target]
                if src != dst:
                    depends_on[src].add(dst)

        waiting = {i: len(deps) for i, deps in depends_on.items()}
        unlocks: Dict[int, List[int]] = {i: [] for i in range(len(components))}
        for src, deps in depends_on.items():
            for dst in deps:
                unlocks[dst].append(src)

        # Ties broken by the earliest declared table of each component
        def rank(index: int) -> int:
            return min(position[name] for name in components[index])

        ready = [(rank(i), i) for i, count in waiting.items() if count == 0]
        heapq.heapify(ready)

        order: List[str] = []
        while ready:
            _, index = heapq.heappop(ready)
            order.extend(sorted(components[index], key=position.__getitem__))
            for dependent in unlocks[index]:
                waiting[dependent] -= 1
                if waiting[dependent] == 0:
                    heapq.heappush(ready, (rank(dependent), dependent))

        self.insert_order = order
        self.delete_order = list(reversed(order))

        for members in components:
            if len(members) > 1 or members[0] in self.edges.get(members[0], []):
                cycle = sorted(members, key=position.__getitem__)
                self.cycles.append(cycle)
                message = (
                    f"Foreign key cycle between tables {cycle}; using declared table "
                    f"order for this group (replay needs deferred constraint checking)"
                )
                self.diagnostics.append(message)
                logger.warning(message)

    def _strongly_connected_components(self) -> List[List[str]]:
        """Tarjan's algorithm, iterative to avoid recursion limits on wide schemas."""
        index_of: Dict[str, int] = {}
        lowlink: Dict[str, int] = {}
        on_stack: Set[str] = set()
        stack: List[str] = []
        components: List[List[str]] = []
        counter = 0

        for root in self.tables:
            if root in index_of:
                continue

            work = [(root, 0)]
            while work:
                node, child_i = work.pop()
                if child_i == 0:
                    index_of[node] = lowlink[node] = counter
                    counter += 1
                    stack.append(node)
                    on_stack.add(node)

                children = self.edges.get(node, [])
                recurse = False
                while child_i < len(children):
                    child = children[child_i]
                    child_i += 1
                    if child not in index_of:
                        work.append((node, child_i))
                        work.append((child, 0))
                        recurse = True
                        break
                    if child in on_stack:
                        lowlink[node] = min(lowlink[node], index_of[child])
                if recurse:
                    continue

                if lowlink[node] == index_of[node]:
                    members = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        members.append(member)
                        if member == node:
                            break
                    components.append(members)

                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[node])

        return components
