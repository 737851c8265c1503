import logging
from typing import Dict, List, Optional

import numpy as np

from trik import events
from trik.actions import local_rotation
from trik.error import position_error
from trik.ik_chain import Joint, Target
from trik.ik_solver import IKSolver
from trik.qcp import fit_rotation, rmsd
from trik.trik import ChainSolver
from trik.utils import rot_point

logger = logging.getLogger(__name__)

CHAIN_TIMES_PER_FRAME = 5


class TreeNode:
    def __init__(self, solver: Optional[ChainSolver] = None, parent: Optional["TreeNode"] = None):
        self.parent = parent
        self.solver = solver
        self.children: List["TreeNode"] = []
        if parent is not None:
            parent.children.append(self)

    def __repr__(self):
        return f"TreeNode({self.solver!r})"

    def is_leaf(self) -> bool:
        return not self.children

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


class TreeSolver(IKSolver):
    """
    Solves a branching skeleton as a tree of chains split at the root, at branch points and at leaves.
    Leaf chains are solved first, then every parent chain tip is rigidly re-oriented to best fit the
    displacement requested by its children and the parent chain is solved towards the resulting pose.
    """

    def __init__(self, root: Joint, max_iter: int = 50, tolerance: float = 0.01, times_per_frame: float = 5,
                 listeners=(), **chain_options):
        super().__init__(max_iter, tolerance, times_per_frame, listeners)
        chain_options.setdefault("tolerance", tolerance)
        self.chain_options = chain_options
        self.end_effector_map: Dict[Joint, object] = {}
        dummy = TreeNode()
        self._setup(dummy, root, [])
        # the dummy node always ends with a single child
        self.root = dummy.children[0]
        self.root.parent = None

    def _create_solver(self, chain: List[Joint]) -> ChainSolver:
        solver = ChainSolver(chain, **self.chain_options)
        solver.set_times_per_frame(CHAIN_TIMES_PER_FRAME)
        return solver

    def _setup(self, parent: TreeNode, node: Joint, chain: List[Joint]):
        # extend the chain through single child joints
        while True:
            chain.append(node)
            if len(node.children) != 1:
                break
            node = node.children[0]
        tree_node = TreeNode(self._create_solver(chain), parent)
        for child in node.children:
            self._setup(tree_node, child, [])

    def chains(self) -> List[ChainSolver]:
        return [tree_node.solver for tree_node in self.root.walk()]

    def head(self) -> Joint:
        return self.root.solver.original[0]

    def _find(self, end_effector: Joint) -> Optional[TreeNode]:
        for tree_node in self.root.walk():
            if any(node is end_effector for node in tree_node.solver.original):
                return tree_node
        return None

    def add_target(self, end_effector: Joint, target) -> bool:
        """
        bind target to the chain that contains end_effector
        :return: False when end_effector is not part of the skeleton
        """
        tree_node = self._find(end_effector)
        if tree_node is None:
            return False
        tree_node.solver.set_target(target)
        self.end_effector_map[end_effector] = target
        return True

    def set_target(self, end_effector: Joint, target) -> bool:
        return self.add_target(end_effector, target)

    def set_direction(self, direction: bool):
        for tree_node in self.root.walk():
            if tree_node.is_leaf():
                tree_node.solver.enable_direction(direction)

    def set_max_error(self, tolerance: float):
        super().set_max_error(tolerance)
        for solver in self.chains():
            solver.set_max_error(tolerance)

    def set_chain_max_iterations(self, max_iter: int):
        for solver in self.chains():
            solver.set_max_iterations(max_iter)

    def set_chain_times_per_frame(self, times_per_frame: float):
        for solver in self.chains():
            solver.set_times_per_frame(times_per_frame)

    def error(self) -> float:
        return sum(position_error(eff.position, target.position) for eff, target in self.end_effector_map.items())

    def _solve(self, tree_node: TreeNode) -> bool:
        """
        :return: whether the chain of tree_node was moved
        """
        solver = tree_node.solver
        if tree_node.is_leaf():
            if solver.target is None:
                return False
            solver.reset()
            solver.solve()
            return True

        tip = solver.original[-1]
        current, desired = [], []
        for child in tree_node.children:
            if not self._solve(child):
                continue
            child_root, child_eff = child.solver.original[0], child.solver.original[-1]
            attachment = tip.location(child_root.position)
            displacement = tip.location(child.solver.target.position) - tip.location(child_eff.position)
            current.append(attachment)
            desired.append(attachment + displacement)
        if not current:
            return False

        rotation = fit_rotation(desired, current)
        orientation = tip.orientation
        before = tip.rotation.copy()
        tip.rotate(rotation)
        # the tip constraint may have reduced the rotation
        rotation = local_rotation(before, tip.rotation)
        translation = np.mean([d - rot_point(rotation, c) for d, c in zip(desired, current)], axis=0)
        logger.debug("%r tip fit rmsd %.6f", solver, rmsd(desired, current, rotation))

        position = tip.position + rot_point(orientation, translation * tip.magnitude)
        solver.set_target(Target(position, tip.orientation))
        if len(solver.original) >= 2:
            logger.info("re-solving %r towards %s", solver, np.round(position, 4).tolist())
            solver.reset()
            solver.solve()
        return True

    def _iterate(self) -> bool:
        self._solve(self.root)
        self._emit(events.ITERATION, iteration=self.iterations, error=self.error())
        return bool(self.end_effector_map) and self.error() < self.tolerance

    def _update(self):
        pass

    def _changed(self) -> bool:
        return any(tree_node.solver.changed() for tree_node in self.root.walk() if tree_node.is_leaf())

    def _reset(self):
        for tree_node in self.root.walk():
            if tree_node.solver.changed():
                tree_node.solver.reset()
