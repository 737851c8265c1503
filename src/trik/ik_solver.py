import math

from tqdm import tqdm

from trik.events import SolverEvent, SolverListener


class IKSolver:
    """
    Per tick driver shared by the chain and tree solvers. A host calls solve() once per frame,
    each call performs times_per_frame iterations until the iteration budget is spent
    or the solver reports convergence.
    """

    def __init__(self, max_iter: int = 50, tolerance: float = 0.01, times_per_frame: float = 5,
                 listeners=()):
        self.max_iter = max_iter  # iteration budget per target
        self.tolerance = tolerance  # max position error considered as reached
        self.times_per_frame = 0.0
        self.set_times_per_frame(times_per_frame)
        self.iterations = 0
        self.last_iteration = 0
        self.converged = False
        self._frame_counter = 0.0
        self._force_reset = False
        self.listeners = list(listeners)

    def _iterate(self) -> bool:
        raise NotImplementedError

    def _update(self):
        raise NotImplementedError

    def _changed(self) -> bool:
        raise NotImplementedError

    def _reset(self):
        raise NotImplementedError

    def error(self) -> float:
        raise NotImplementedError

    def set_max_error(self, tolerance: float):
        self.tolerance = tolerance

    def set_max_iterations(self, max_iter: int):
        self.max_iter = max_iter

    def set_times_per_frame(self, times_per_frame: float):
        if times_per_frame <= 0:
            raise ValueError("times_per_frame must be positive")
        self.times_per_frame = float(times_per_frame)

    def add_listener(self, listener: SolverListener):
        self.listeners.append(listener)

    def remove_listener(self, listener: SolverListener):
        self.listeners.remove(listener)

    def _emit(self, name: str, **payload):
        if not self.listeners:
            return
        event = SolverEvent(name, payload)
        for listener in self.listeners:
            listener.notify(event)

    def changed(self) -> bool:
        return self._changed()

    def change(self, value: bool = True):
        """
        force a reset on the next solve call
        """
        self._force_reset = value

    def reset(self):
        self.iterations = 0
        self.last_iteration = 0
        self.converged = False
        self._frame_counter = 0.0
        self._reset()

    def solve(self) -> bool:
        """
        one tick of work
        :return: True once there is nothing left to do for the current target
        """
        if self._changed() or self._force_reset:
            self.reset()
            self._force_reset = False
        if self.iterations >= self.max_iter:
            return True
        self._frame_counter += self.times_per_frame
        while math.floor(self._frame_counter) > 0 and self.iterations < self.max_iter:
            self._frame_counter -= 1
            self.last_iteration = self.iterations
            if self._iterate():
                self.converged = True
                self.iterations = self.max_iter
                break
            self.iterations += 1
        self._update()
        return False

    def solve_until_done(self, progress: bool = False) -> bool:
        """
        call solve until the budget is spent
        :param progress: show a progress bar with the current error
        :return: whether the solver converged
        """
        with tqdm(total=self.max_iter, ncols=80, disable=not progress) as it:
            while not self.solve():
                it.update(max(0, min(self.iterations, self.max_iter) - it.n))
                it.set_postfix(epoch=self.iterations, loss=self.error())
        return self.converged
