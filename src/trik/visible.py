import random

import numpy as np
import pyvista as pv

from trik import events
from trik.ik_chain import Joint
from trik.ik_solver import IKSolver

REFRESH_EVENTS = (events.RESET, events.UPDATE, events.ITERATION)


class ChainViewer:
    """
    pyvista view of the joints driven by a solver. The viewer listens to the solver events and
    refreshes its meshes when the solved pose changes, number keys move the first target.
    """

    def __init__(self, ik_solver: IKSolver, target_radius: float = None):
        self.ik_solver = ik_solver
        self.joints = self._joints_of(ik_solver)
        self.bones = []
        self.targets = []
        self.plotter = None
        self.refreshes = 0
        self.target_radius = target_radius or self._default_radius()
        self.init_meshes()
        ik_solver.add_listener(self)

    @staticmethod
    def _joints_of(ik_solver):
        solvers = ik_solver.chains() if hasattr(ik_solver, "chains") else [ik_solver]
        joints = []
        for solver in solvers:
            for joint in solver.original:
                if not any(joint is j for j in joints):
                    joints.append(joint)
        return joints

    def _target_list(self):
        if hasattr(self.ik_solver, "end_effector_map"):
            return list(self.ik_solver.end_effector_map.values())
        return [] if self.ik_solver.target is None else [self.ik_solver.target]

    def _default_radius(self):
        lengths = [np.linalg.norm(j.position - j.parent.position) for j in self.joints
                   if any(j.parent is p for p in self.joints)]
        return 0.1 * max(lengths) if lengths else 0.1

    def _bone_pairs(self):
        return [(joint.parent, joint) for joint in self.joints
                if joint.parent is not None and any(joint.parent is j for j in self.joints)]

    @staticmethod
    def _arrow(parent, joint):
        start = parent.position
        direction = joint.position - start
        length = np.linalg.norm(direction)
        if length < 1e-9:
            return pv.Sphere(radius=1e-3, center=start)
        return pv.Arrow(start, direction, scale=length)

    def init_meshes(self):
        self.bones = [self._arrow(parent, joint) for parent, joint in self._bone_pairs()]
        self.targets = [pv.Sphere(radius=self.target_radius, center=target.position)
                        for target in self._target_list()]

    def refresh(self):
        for bone, (parent, joint) in zip(self.bones, self._bone_pairs()):
            bone.copy_from(self._arrow(parent, joint))
        for mesh, target in zip(self.targets, self._target_list()):
            mesh.copy_from(pv.Sphere(radius=self.target_radius, center=target.position))
        self.refreshes += 1
        if self.plotter is not None:
            self.plotter.render()

    def notify(self, event: events.SolverEvent):
        if event.name in REFRESH_EVENTS:
            self.refresh()

    def init_vista(self):
        plotter = pv.Plotter()
        self.plotter = plotter
        for bone in self.bones:
            plotter.add_mesh(bone, show_edges=True, color=self.random_color())
        for target in self.targets:
            plotter.add_mesh(target, color="tan")
        self.set_shortcuts()

    def set_shortcuts(self):
        self.plotter.add_key_event("1", self.move_target("z"))
        self.plotter.add_key_event("2", self.move_target("z", reverse=True))
        self.plotter.add_key_event("4", self.move_target("x"))
        self.plotter.add_key_event("5", self.move_target("x", reverse=True))
        self.plotter.add_key_event("7", self.move_target("y"))
        self.plotter.add_key_event("8", self.move_target("y", reverse=True))

    def move_target(self, axis="x", step=None, reverse=False):
        xyz = ["x", "y", "z"]
        step = self.target_radius if step is None else step
        step = step * -1 if reverse else step

        def handle():
            targets = self._target_list()
            if not targets:
                return
            move_step = np.zeros(3)
            move_step[xyz.index(axis)] = step
            target = targets[0]
            if isinstance(target, Joint):
                target.set_position(target.position + move_step)
            else:
                target.position = target.position + move_step
            self.ik_solver.solve()
            self.refresh()

        return handle

    def visible(self):
        if self.plotter is None:
            self.init_vista()
        self.plotter.show_grid()
        self.plotter.show(auto_close=True)

    def random_color(self):
        color = [random.random(), random.random(), random.random()]
        return color
