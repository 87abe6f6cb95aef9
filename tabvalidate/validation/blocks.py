"""Dependency analysis: grouping rules into blocks.

Rules and variables form an undirected bipartite graph, with an edge between
a rule and every variable it depends on after substitution. Two rules are in
the same block iff they are connected through shared variables. Blocks show
which rules are logically entangled, e.g. a derive rule and every check rule
that uses its output.
"""

from collections.abc import Mapping, Sequence


class _UnionFind:
    """Disjoint-set forest with path compression and union by size."""

    def __init__(self) -> None:
        self._parent: dict[str, str] = {}
        self._size: dict[str, int] = {}

    def add(self, item: str) -> None:
        if item not in self._parent:
            self._parent[item] = item
            self._size[item] = 1

    def find(self, item: str) -> str:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: str, b: str) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        if self._size[root_a] < self._size[root_b]:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        self._size[root_a] += self._size[root_b]


def compute_blocks(variables: Mapping[str, Sequence[str]]) -> list[list[str]]:
    """Partition rules into connected components.

    Args:
        variables: Rule name -> variables it depends on (after substitution),
                   in rule order

    Returns:
        List of blocks. Each block lists rule names in rule order; blocks are
        ordered by their first rule. Every rule appears in exactly one block.

    Example:
        >>> compute_blocks({"r1": ["x"], "r2": ["y"], "r3": ["x", "z"]})
        [['r1', 'r3'], ['r2']]
    """
    forest = _UnionFind()
    # Rule and variable namespaces may overlap; tag the nodes
    for rule, names in variables.items():
        rule_node = f"rule:{rule}"
        forest.add(rule_node)
        for name in names:
            var_node = f"var:{name}"
            forest.add(var_node)
            forest.union(rule_node, var_node)

    blocks: dict[str, list[str]] = {}
    for rule in variables:
        blocks.setdefault(forest.find(f"rule:{rule}"), []).append(rule)
    return list(blocks.values())
